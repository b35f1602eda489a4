"""Unit tests for the critical page selector rule engine."""

import pytest

from conftest import make_classification
from contract_ai.models.page_models import ContentCategory, PageRole
from contract_ai.services.classification.critical_page_selector import (
    build_page_label,
    evaluate_page,
    extract_package_metadata,
    select_critical_page_numbers,
    select_critical_pages,
    summarize_roles,
)


class TestEvaluatePage:
    """Per-page decision rules."""

    def test_addendum_with_disclosures_is_excluded(self):
        page = make_classification(
            7, role=PageRole.ADDENDUM, category=ContentCategory.DISCLOSURES, filled=True
        )

        keep, reason = evaluate_page(page)

        assert keep is False
        assert "disclosures" in reason

    @pytest.mark.parametrize(
        "category", [ContentCategory.TRANSACTION_TERMS, ContentCategory.BOILERPLATE]
    )
    def test_filled_addendum_with_terms_is_selected(self, category):
        for role in (PageRole.ADDENDUM, PageRole.LOCAL_ADDENDUM):
            assert evaluate_page(make_classification(4, role=role, category=category))[0] is True

    @pytest.mark.parametrize("role", [PageRole.COUNTER_OFFER, PageRole.CONTINGENCY_RELEASE])
    def test_filled_counter_and_release_always_selected(self, role):
        page = make_classification(9, role=role, category=ContentCategory.SIGNATURES)

        assert evaluate_page(page)[0] is True

    @pytest.mark.parametrize(
        "role",
        [PageRole.COUNTER_OFFER, PageRole.ADDENDUM, PageRole.LOCAL_ADDENDUM, PageRole.CONTINGENCY_RELEASE],
    )
    def test_unfilled_override_pages_are_excluded(self, role):
        assert evaluate_page(make_classification(2, role=role, filled=False))[0] is False

    @pytest.mark.parametrize("category", [ContentCategory.SIGNATURES, ContentCategory.BROKER_INFO])
    def test_main_signature_and_broker_pages_always_selected(self, category):
        page = make_classification(16, category=category, filled=False)

        assert evaluate_page(page)[0] is True

    @pytest.mark.parametrize(
        "category",
        [ContentCategory.DISCLOSURES, ContentCategory.BOILERPLATE, ContentCategory.OTHER],
    )
    def test_main_boilerplate_pages_excluded_even_when_filled(self, category):
        assert evaluate_page(make_classification(5, category=category, filled=True))[0] is False

    def test_main_terms_require_filled_fields(self):
        assert evaluate_page(make_classification(1, filled=True))[0] is True
        assert evaluate_page(make_classification(1, filled=False))[0] is False

    @pytest.mark.parametrize(
        "role",
        [PageRole.DISCLOSURE, PageRole.FINANCING, PageRole.BROKER_INFO, PageRole.TITLE_PAGE, PageRole.OTHER],
    )
    def test_other_roles_excluded(self, role):
        assert evaluate_page(make_classification(3, role=role))[0] is False


class TestSelectCriticalPages:
    """Whole-packet selection."""

    @pytest.fixture
    def packet(self):
        """A 10-page packet: 3 extractable pages among disclosures."""
        return [
            make_classification(1),
            make_classification(2, category=ContentCategory.BOILERPLATE),
            None,
            make_classification(4, role=PageRole.DISCLOSURE, category=ContentCategory.DISCLOSURES),
            make_classification(5, role=PageRole.DISCLOSURE, category=ContentCategory.DISCLOSURES),
            make_classification(6, category=ContentCategory.SIGNATURES, filled=False),
            make_classification(
                7, role=PageRole.ADDENDUM, category=ContentCategory.DISCLOSURES, form_code="ADM"
            ),
            make_classification(8, role=PageRole.COUNTER_OFFER, form_code="SCO", form_page=1),
            None,
            make_classification(10, role=PageRole.OTHER, category=ContentCategory.OTHER),
        ]

    def test_selects_sorted_page_numbers(self, packet):
        assert select_critical_page_numbers(packet) == [1, 6, 8]

    def test_labels_combine_form_page_and_category(self, packet):
        critical = select_critical_pages(packet)

        assert [c.page_number for c in critical] == [1, 6, 8]
        assert critical[0].label == "RPA PAGE 1 – TRANSACTION TERMS (FILLED)"
        assert critical[1].label == "RPA PAGE 6 – SIGNATURES"
        assert critical[2].label == "SCO PAGE 1 – TRANSACTION TERMS (FILLED)"
        assert critical[2].role == PageRole.COUNTER_OFFER

    def test_force_included_page_without_classification_gets_generic_label(self, packet):
        critical = select_critical_pages(packet, force_include=[3, 8, 42])

        assert [c.page_number for c in critical] == [1, 3, 6, 8]
        assert critical[1].label == "PAGE 3 – KEY CONTRACT PAGE"
        assert critical[1].classification is None

    def test_empty_packet(self):
        assert select_critical_pages([]) == []

    def test_generic_label_helper(self):
        assert build_page_label(12, None) == "PAGE 12 – KEY CONTRACT PAGE"


class TestPackageMetadata:

    def test_summarizes_detected_forms(self):
        classifications = [
            make_classification(1, footer="RPA REVISED 6/24 (PAGE 1 OF 17)"),
            None,
            make_classification(3, role=PageRole.COUNTER_OFFER, form_code="SCO", footer="SCO 12/23"),
            make_classification(4, form_code="RPA"),
        ]

        metadata = extract_package_metadata(classifications)

        assert metadata.detected_form_codes == ["RPA", "SCO"]
        assert metadata.sample_footers == ["RPA REVISED 6/24 (PAGE 1 OF 17)", "SCO 12/23"]
        assert metadata.total_detected_pages == 3
        assert metadata.has_multiple_forms is True

    def test_role_counts(self):
        counts = summarize_roles([
            make_classification(1),
            make_classification(2),
            make_classification(3, role=PageRole.DISCLOSURE),
            None,
        ])

        assert counts == {"main_contract": 2, "disclosure": 1}
