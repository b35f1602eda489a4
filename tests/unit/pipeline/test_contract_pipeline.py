"""Tests for the end-to-end contract pipeline with mocked model calls."""

import copy
import json

import httpx
import pytest
from unittest.mock import AsyncMock

from conftest import make_classification, make_pages, make_record
from contract_ai.config import Settings
from contract_ai.core.exceptions import (
    ClassificationError,
    ConfigurationError,
    ExtractionError,
    PipelineError,
)
from contract_ai.core.vision_client import OpenAICompatibleVisionClient
from contract_ai.models.page_models import ContentCategory, Page, PageRole
from contract_ai.pipeline.contract_pipeline import ContractExtractionPipeline
from contract_ai.services.classification.batch_classifier import ClassificationRun
from contract_ai.services.extraction.page_extractor import PageExtractor
from contract_ai.services.extraction.validator import INVALID_PRICE

RPA_TERMS_PAGE = """CALIFORNIA RESIDENTIAL PURCHASE AGREEMENT AND JOINT ESCROW INSTRUCTIONS
Date Prepared: 03/10/2024
1. OFFER: Purchase price of $1,250,000 for the property at 123 Main Street.
Initial deposit: $37,500
[x] Conventional financing
RPA REVISED 6/24 (PAGE 1 OF 17)"""


def run_of(classifications):
    return ClassificationRun(classifications=classifications, batches=[])


@pytest.fixture
def packet_classifications():
    """Main contract terms on 1, counter offer on 3, noise elsewhere."""
    return [
        make_classification(1),
        make_classification(2, category=ContentCategory.BOILERPLATE),
        make_classification(3, role=PageRole.COUNTER_OFFER, form_code="SCO", form_page=1),
        make_classification(4, role=PageRole.DISCLOSURE, category=ContentCategory.DISCLOSURES),
        None,
    ]


@pytest.fixture
def classifier(packet_classifications):
    classifier = AsyncMock()
    classifier.classify = AsyncMock(return_value=run_of(packet_classifications))
    return classifier


@pytest.fixture
def extractor():
    extractor = AsyncMock()
    extractor.extract = AsyncMock()
    return extractor


@pytest.fixture
def zero_price_records(main_and_counter_records):
    """First-turn output where the price was misread as zero and the counter left it blank."""
    records = copy.deepcopy(main_and_counter_records)
    records[0]["purchasePrice"] = 0
    del records[1]["purchasePrice"]
    return records


class TestContractPipeline:

    @pytest.mark.asyncio
    async def test_counter_offer_price_wins_end_to_end(
        self, classifier, extractor, pages, main_and_counter_records
    ):
        extractor.extract.return_value = main_and_counter_records
        pipeline = ContractExtractionPipeline(classifier, extractor)

        outcome = await pipeline.extract(pages)

        terms = outcome.final_terms
        assert terms.purchase_price == 510000
        assert terms.buyer_names == ["Jane Buyer"]
        assert terms.effective_date == "2024-03-15"
        assert outcome.needs_review is False
        assert outcome.second_turn.attempted is False

        details = outcome.details
        assert details.provenance["purchasePrice"] == 3
        assert details.provenance["buyerNames"] == 1
        assert details.provenance["effectiveDate"] == 3
        assert [(c.page_number, c.label) for c in details.critical_pages] == [
            (1, "RPA PAGE 1 – TRANSACTION TERMS (FILLED)"),
            (3, "SCO PAGE 1 – TRANSACTION TERMS (FILLED)"),
        ]
        assert details.package_metadata.detected_form_codes == ["RPA", "SCO"]
        assert any(line.startswith("[merge]") for line in details.merge_log)
        assert any(line.startswith("[temporal]") for line in details.merge_log)

        critical, page_map = extractor.extract.await_args.args
        assert [c.page_number for c in critical] == [1, 3]
        assert sorted(page_map) == [1, 2, 3, 4, 5]

    @pytest.mark.asyncio
    async def test_wire_shape(self, classifier, extractor, pages, main_and_counter_records):
        extractor.extract.return_value = main_and_counter_records

        outcome = await ContractExtractionPipeline(classifier, extractor).extract(pages)
        wire = outcome.model_dump(by_alias=True)

        assert wire["finalTerms"]["purchasePrice"] == 510000
        assert wire["needsReview"] is False
        assert set(wire["details"]) >= {
            "provenance", "pageExtractions", "mergeLog", "criticalPages", "packageMetadata"
        }

    @pytest.mark.asyncio
    async def test_pages_are_reordered(self, classifier, extractor, pages, main_and_counter_records):
        extractor.extract.return_value = main_and_counter_records

        await ContractExtractionPipeline(classifier, extractor).extract(list(reversed(pages)))

        classified = classifier.classify.await_args.args[0]
        assert [p.page_number for p in classified] == [1, 2, 3, 4, 5]

    @pytest.mark.asyncio
    async def test_second_turn_fixes_price(self, classifier, extractor, pages, zero_price_records):
        fixed_page = dict(zero_price_records[0], purchasePrice=505000)
        extractor.extract.side_effect = [zero_price_records, [fixed_page]]

        outcome = await ContractExtractionPipeline(classifier, extractor).extract(pages)

        assert outcome.final_terms.purchase_price == 505000
        assert outcome.needs_review is False
        report = outcome.second_turn
        assert report.attempted is True
        assert report.succeeded is True
        assert report.passes == 1
        assert report.problem_fields == ["purchasePrice"]
        assert report.fixed_fields == ["purchasePrice"]
        assert extractor.extract.await_count == 2
        assert "PROBLEM FIELDS TO FIX" in extractor.extract.await_args.kwargs["prompt"]
        assert [r["pageNumber"] for r in outcome.details.page_extractions] == [1, 3]

    @pytest.mark.asyncio
    async def test_second_turn_failure_keeps_first_turn_result(
        self, classifier, extractor, pages, zero_price_records
    ):
        extractor.extract.side_effect = [zero_price_records, ExtractionError("vision down")]

        outcome = await ContractExtractionPipeline(classifier, extractor).extract(pages)

        assert outcome.final_terms.purchase_price == 0
        assert outcome.final_terms.buyer_names == ["Jane Buyer"]
        assert outcome.needs_review is True
        assert outcome.validation.errors == [INVALID_PRICE]
        report = outcome.second_turn
        assert report.attempted is True
        assert report.succeeded is False
        assert report.error == "vision down"
        assert any("keeping previous result" in line for line in outcome.details.merge_log)

    @pytest.mark.asyncio
    async def test_second_turn_passes_are_bounded(self, classifier, extractor, pages, zero_price_records):
        extractor.extract.return_value = zero_price_records

        outcome = await ContractExtractionPipeline(
            classifier, extractor, max_second_turn_passes=2
        ).extract(pages)

        assert outcome.second_turn.passes == 2
        assert outcome.second_turn.fixed_fields == []
        assert outcome.needs_review is True
        assert extractor.extract.await_count == 3

    @pytest.mark.asyncio
    async def test_second_turn_disabled(self, classifier, extractor, pages, zero_price_records):
        extractor.extract.return_value = zero_price_records

        outcome = await ContractExtractionPipeline(
            classifier, extractor, max_second_turn_passes=0
        ).extract(pages)

        assert outcome.second_turn.attempted is False
        assert outcome.validation.needs_second_turn is True
        assert extractor.extract.await_count == 1

    @pytest.mark.asyncio
    async def test_first_turn_failure_propagates(self, classifier, extractor, pages):
        extractor.extract.side_effect = ExtractionError("bad json")

        with pytest.raises(ExtractionError):
            await ContractExtractionPipeline(classifier, extractor).extract(pages)


class TestPipelineFailures:

    @pytest.mark.asyncio
    async def test_no_critical_pages(self, classifier, extractor, pages):
        classifier.classify.return_value = run_of(
            [make_classification(n, role=PageRole.DISCLOSURE) for n in range(1, 6)]
        )

        with pytest.raises(PipelineError, match="No critical pages"):
            await ContractExtractionPipeline(classifier, extractor).extract(pages)

        extractor.extract.assert_not_awaited()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("numbers", [[], [2, 3], [1, 1, 2]])
    async def test_rejects_bad_page_numbering(self, classifier, extractor, numbers):
        bad_pages = [Page(page_number=n, image=b"img") for n in numbers]

        with pytest.raises(PipelineError):
            await ContractExtractionPipeline(classifier, extractor).extract(bad_pages)

        classifier.classify.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_text_fallback_when_vision_classification_fails(self, classifier, extractor):
        classifier.classify.side_effect = ClassificationError("all batches failed")
        extractor.extract.return_value = [
            make_record(1, purchasePrice=1250000, buyerSignatureDates=["03/10/2024"])
        ]

        outcome = await ContractExtractionPipeline(classifier, extractor).extract(
            make_pages(2), page_texts=[RPA_TERMS_PAGE, ""]
        )

        critical = extractor.extract.await_args.args[0]
        assert [c.page_number for c in critical] == [1]
        assert outcome.final_terms.purchase_price == 1250000

    @pytest.mark.asyncio
    @pytest.mark.parametrize("page_texts", [None, [RPA_TERMS_PAGE]])
    async def test_classification_failure_without_usable_text(self, classifier, extractor, page_texts):
        classifier.classify.side_effect = ClassificationError("all batches failed")

        with pytest.raises(ClassificationError):
            await ContractExtractionPipeline(classifier, extractor).extract(
                make_pages(2), page_texts=page_texts
            )

    @pytest.mark.asyncio
    async def test_text_fallback_finding_nothing(self, classifier, extractor):
        classifier.classify.side_effect = ClassificationError("all batches failed")

        with pytest.raises(ClassificationError, match="page text"):
            await ContractExtractionPipeline(classifier, extractor).extract(
                make_pages(2), page_texts=["", "Thank you."]
            )


class TestFromSettings:

    def test_annotation_backend_requires_key(self, monkeypatch, mock_vision_client):
        monkeypatch.setenv("EXTRACTION_BACKEND", "annotation")
        monkeypatch.setenv("MISTRAL_API_KEY", "")

        with pytest.raises(ConfigurationError, match="MISTRAL_API_KEY"):
            ContractExtractionPipeline.from_settings(Settings(), vision_client=mock_vision_client)

    def test_vision_backend_wiring(self, monkeypatch, mock_vision_client):
        monkeypatch.setenv("EXTRACTION_BACKEND", "vision")
        monkeypatch.setenv("CLASSIFIER_BATCH_SIZE", "10")
        monkeypatch.setenv("MAX_SECOND_TURN_PASSES", "2")

        pipeline = ContractExtractionPipeline.from_settings(Settings(), vision_client=mock_vision_client)

        assert isinstance(pipeline.extractor, PageExtractor)
        assert pipeline.extractor.vision_client is mock_vision_client
        assert pipeline.classifier.batch_size == 10
        assert pipeline.max_second_turn_passes == 2


class TestSecondTurnThroughPageExtractor:
    """Second-turn failures raised below PageExtractor still fall back to the first turn."""

    @staticmethod
    def assert_first_turn_kept(outcome):
        assert outcome.final_terms.purchase_price == 0
        assert outcome.final_terms.buyer_names == ["Jane Buyer"]
        assert outcome.needs_review is True
        assert outcome.validation.errors == [INVALID_PRICE]
        report = outcome.second_turn
        assert report.attempted is True
        assert report.succeeded is False
        assert report.error.startswith("Per-page extraction failed")
        assert any("keeping previous result" in line for line in outcome.details.merge_log)

    @pytest.mark.asyncio
    async def test_unexpected_vision_model_error(
        self, classifier, mock_vision_client, pages, zero_price_records
    ):
        mock_vision_client.generate.side_effect = [
            json.dumps(zero_price_records),
            RuntimeError("sdk blew up"),
        ]
        pipeline = ContractExtractionPipeline(classifier, PageExtractor(mock_vision_client))

        outcome = await pipeline.extract(pages)

        self.assert_first_turn_kept(outcome)
        assert "RuntimeError" in outcome.second_turn.error
        assert mock_vision_client.generate.await_count == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "second_reply",
        [
            {"choices": [{"message": None}]},
            {"choices": []},
            {"choices": [{"message": {"content": "I could not read the price."}}]},
            {"choices": [{"message": {"content": '[{"purchasePrice": 505000}]'}}]},
        ],
    )
    async def test_malformed_provider_reply(self, classifier, pages, zero_price_records, second_reply):
        replies = [
            httpx.Response(200, json={"choices": [{"message": {"content": json.dumps(zero_price_records)}}]}),
            httpx.Response(200, json=second_reply),
        ]
        transport = httpx.MockTransport(lambda request: replies.pop(0))
        vision = OpenAICompatibleVisionClient("key", "m", "https://vision.test/v1/chat", transport=transport)
        pipeline = ContractExtractionPipeline(classifier, PageExtractor(vision))

        outcome = await pipeline.extract(pages)

        self.assert_first_turn_kept(outcome)
        assert replies == []


class TestMalformedDayOffsets:

    @pytest.mark.asyncio
    async def test_out_of_range_offsets_and_supplied_deadlines(
        self, classifier, mock_vision_client, pages, main_and_counter_records
    ):
        main_and_counter_records[0]["closing"] = {"daysAfterAcceptance": 99999999}
        main_and_counter_records[0]["contingencies"] = {
            "inspectionDays": float("inf"),
            "appraisalDays": 17,
            "inspectionDeadline": 17,
            "loanDeadline": "whenever",
        }
        # Serialized with a bare Infinity token, as a model reply would carry it
        reply = json.dumps(main_and_counter_records)
        assert "Infinity" in reply
        mock_vision_client.generate.return_value = reply
        pipeline = ContractExtractionPipeline(classifier, PageExtractor(mock_vision_client))

        outcome = await pipeline.extract(pages)

        terms = outcome.final_terms
        assert terms.purchase_price == 510000
        assert terms.effective_date == "2024-03-15"
        assert terms.close_of_escrow_date is None
        assert terms.closing.days_after_acceptance is None
        assert terms.contingencies.inspection_days is None
        assert terms.contingencies.inspection_deadline is None
        assert terms.contingencies.appraisal_deadline == "2024-04-01"
        assert terms.contingencies.loan_deadline is None
        log = "\n".join(outcome.details.merge_log)
        assert "Discarded model-supplied inspectionDeadline 17" in log
        assert "not a usable day count" in log
