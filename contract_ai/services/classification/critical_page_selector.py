"""Rule engine deciding which classified pages are worth extracting.

Pure functions over the classification array; no I/O. Disclosure-heavy
packets typically lose 80-95% of their pages here.
"""

from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from contract_ai.models.page_models import (
    OVERRIDE_ROLES,
    ContentCategory,
    CriticalPage,
    PackageMetadata,
    PageClassification,
    PageRole,
)
from contract_ai.utils.logging import get_logger

LOGGER = get_logger(__name__)

# Addenda are only worth extracting when they carry negotiable terms
ADDENDUM_CATEGORIES = frozenset({ContentCategory.TRANSACTION_TERMS, ContentCategory.BOILERPLATE})

MAIN_ALWAYS_CATEGORIES = frozenset({ContentCategory.SIGNATURES, ContentCategory.BROKER_INFO})
MAIN_EXCLUDED_CATEGORIES = frozenset({
    ContentCategory.DISCLOSURES,
    ContentCategory.BOILERPLATE,
    ContentCategory.OTHER,
})

ALWAYS_SELECTED_OVERRIDES = frozenset({PageRole.COUNTER_OFFER, PageRole.CONTINGENCY_RELEASE})


def evaluate_page(page: PageClassification) -> Tuple[bool, str]:
    """Apply the selection rules to one page.

    Returns:
        Tuple of (selected, reason)
    """
    role = page.role
    category = page.content_category

    if role in OVERRIDE_ROLES:
        if not page.has_filled_fields:
            return False, f"{role.value} without filled fields"
        if role in ALWAYS_SELECTED_OVERRIDES:
            return True, f"filled {role.value}"
        if category in ADDENDUM_CATEGORIES:
            return True, f"filled {role.value} with {category.value}"
        return False, f"{role.value} with {category.value} content"

    if role == PageRole.MAIN_CONTRACT:
        if category in MAIN_ALWAYS_CATEGORIES:
            return True, f"main contract {category.value}"
        if category in MAIN_EXCLUDED_CATEGORIES:
            return False, f"main contract {category.value}"
        if page.has_filled_fields:
            return True, "main contract terms (filled)"
        return False, "main contract terms without filled fields"

    return False, f"role {role.value} not extracted"


def select_critical_page_numbers(
    classifications: Sequence[Optional[PageClassification]],
) -> List[int]:
    """Return the sorted, de-duplicated page numbers that pass the rules.

    Args:
        classifications: One entry per page (index 0 is page 1); None means
            no form was detected on that page
    """
    selected = set()
    for index, page in enumerate(classifications):
        if page is None:
            continue
        keep, reason = evaluate_page(page)
        LOGGER.debug(
            f"Page {index + 1}: {'keep' if keep else 'skip'} ({reason})",
            extra={"page_number": index + 1, "selected": keep},
        )
        if keep:
            selected.add(index + 1)
    return sorted(selected)


def build_page_label(page_number: int, page: Optional[PageClassification]) -> str:
    """Human-readable provenance label, e.g. ``RPA PAGE 1 – TRANSACTION TERMS (FILLED)``."""
    if page is None:
        return f"PAGE {page_number} – KEY CONTRACT PAGE"

    code = page.form_code or "FORM"
    form_page = page.form_page if page.form_page is not None else "?"
    category = page.content_category.value.replace("_", " ").upper()
    label = f"{code} PAGE {form_page} – {category}"
    if page.has_filled_fields:
        label += " (FILLED)"
    return label


def select_critical_pages(
    classifications: Sequence[Optional[PageClassification]],
    force_include: Iterable[int] = (),
) -> List[CriticalPage]:
    """Build the ordered CriticalPageSet.

    Args:
        classifications: Page-indexed classification array
        force_include: Page numbers to keep regardless of the rules

    Returns:
        Critical pages in ascending page order, each with its label
    """
    total = len(classifications)
    numbers = set(select_critical_page_numbers(classifications))
    for page_number in force_include:
        if 1 <= page_number <= total:
            numbers.add(page_number)
        else:
            LOGGER.warning(f"Ignoring forced page {page_number}: packet has {total} pages")

    critical = [
        CriticalPage(
            page_number=number,
            label=build_page_label(number, classifications[number - 1]),
            classification=classifications[number - 1],
        )
        for number in sorted(numbers)
    ]

    if total:
        discarded = 100 * (total - len(critical)) / total
        LOGGER.info(
            f"Selected {len(critical)}/{total} critical pages ({discarded:.0f}% discarded)",
            extra={"critical_pages": [c.page_number for c in critical]},
        )
    return critical


def extract_package_metadata(
    classifications: Sequence[Optional[PageClassification]],
) -> PackageMetadata:
    """Summarize detected forms for routing and logging."""
    detected = [page for page in classifications if page is not None]

    form_codes: List[str] = []
    for page in detected:
        if page.form_code and page.form_code not in form_codes:
            form_codes.append(page.form_code)

    return PackageMetadata(
        detected_form_codes=form_codes,
        sample_footers=[page.footer_text for page in detected[:5] if page.footer_text],
        total_detected_pages=len(detected),
        has_multiple_forms=len(form_codes) > 1,
    )


def summarize_roles(classifications: Sequence[Optional[PageClassification]]) -> Dict[str, int]:
    """Count detected pages per role."""
    counts: Dict[str, int] = {}
    for page in classifications:
        if page is not None:
            counts[page.role.value] = counts.get(page.role.value, 0) + 1
    return counts
