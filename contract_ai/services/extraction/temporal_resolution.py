"""Temporal resolution: effective date, closing date and contingency deadlines.

Runs on the merged term set. The effective (acceptance) date is the latest
signature date on any page; closing and contingency deadlines are derived
from explicit dates or from day offsets counted from it.
"""

import copy
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from contract_ai.utils.audit import AuditLog
from contract_ai.utils.dates import add_days, normalize_date_string, parse_day_count

STAGE = "temporal"

SIGNATURE_FIELDS = (("buyerSignatureDates", "Buyer"), ("sellerSignatureDates", "Seller"))

CONTINGENCY_DEADLINES = (
    ("inspectionDays", "inspectionDeadline"),
    ("appraisalDays", "appraisalDeadline"),
    ("loanDays", "loanDeadline"),
)


@dataclass
class SignatureDate:
    raw: str
    normalized: str
    party: str
    page_number: Optional[int]
    page_label: str


def collect_signature_dates(
    page_extractions: Sequence[Dict[str, Any]], audit: AuditLog
) -> List[SignatureDate]:
    """Gather and normalize every buyer/seller signature date on every page."""
    found: List[SignatureDate] = []
    unparsed = 0

    for record in page_extractions:
        if not isinstance(record, dict):
            continue
        label = record.get("pageLabel") or f"page {record.get('pageNumber')}"
        for field_name, party in SIGNATURE_FIELDS:
            values = record.get(field_name)
            if isinstance(values, str):
                values = [values]
            if not isinstance(values, list):
                continue
            for raw in values:
                if not isinstance(raw, str) or not raw.strip():
                    continue
                normalized = normalize_date_string(raw)
                if normalized is None:
                    unparsed += 1
                    audit.warning(STAGE, f"{party} signature date {raw!r} on {label} is not a date")
                    continue
                found.append(SignatureDate(raw, normalized, party, record.get("pageNumber"), label))
                audit.info(STAGE, f"{party} signed {raw} on {label} -> {normalized}")

    if unparsed and not found:
        audit.warning(STAGE, "No valid dates could be normalized")
    return found


def calculate_effective_date(
    page_extractions: Sequence[Dict[str, Any]], audit: Optional[AuditLog] = None
) -> Tuple[Optional[str], Optional[int]]:
    """Latest normalized signature date across all pages.

    Returns:
        Tuple of (effective date or None, page number it came from)
    """
    audit = audit or AuditLog()
    dates = collect_signature_dates(page_extractions, audit)
    if not dates:
        audit.warning(STAGE, "No signature dates found on any page")
        return None, None

    # ISO strings sort chronologically; max keeps the first of equal dates
    latest = max(dates, key=lambda d: d.normalized)
    audit.info(
        STAGE,
        f"Effective date {latest.normalized}: latest of {len(dates)} signature date(s), "
        f"{latest.party} on {latest.page_label}",
    )
    return latest.normalized, latest.page_number


def _offset_date(effective_date: Optional[str], days: int, what: str, audit: AuditLog) -> Optional[str]:
    if effective_date is None:
        audit.warning(STAGE, f"{what}: {days} day(s) after acceptance but no effective date")
        return None
    resolved = add_days(effective_date, days)
    if resolved is None:
        audit.warning(STAGE, f"{what}: {effective_date} + {days} day(s) is out of range, left empty")
        return None
    audit.info(STAGE, f"{what}: {effective_date} + {days} day(s) = {resolved}")
    return resolved


def resolve_closing_date(
    terms: Dict[str, Any], effective_date: Optional[str], audit: AuditLog
) -> Optional[str]:
    """Closing date by priority: specific date, day offset, legacy field, else None."""
    closing = terms.get("closing") if isinstance(terms.get("closing"), dict) else {}

    specific = closing.get("specificDate")
    if isinstance(specific, str) and specific.strip():
        normalized = normalize_date_string(specific)
        if normalized:
            audit.info(STAGE, f"Closing date {normalized} from explicit closing date")
            return normalized
        audit.warning(STAGE, f"Closing specificDate {specific!r} is not a date, ignored")

    days = parse_day_count(closing.get("daysAfterAcceptance"))
    if days is not None:
        resolved = _offset_date(effective_date, days, "Closing", audit)
        if resolved:
            return resolved

    legacy = terms.get("closingDate")
    if legacy is not None and legacy != "":
        if isinstance(legacy, str):
            normalized = normalize_date_string(legacy)
            if normalized:
                audit.info(STAGE, f"Closing date {normalized} from legacy closingDate")
                return normalized
        legacy_days = parse_day_count(legacy)
        if legacy_days is not None:
            resolved = _offset_date(effective_date, legacy_days, "Closing (legacy closingDate)", audit)
            if resolved:
                return resolved
        else:
            audit.warning(STAGE, f"Legacy closingDate {legacy!r} is neither a date nor a day count")

    audit.info(STAGE, "No closing date could be resolved")
    return None


def resolve_contingency_deadlines(
    contingencies: Dict[str, Any], effective_date: Optional[str], audit: AuditLog
) -> None:
    """Fill the ``*Deadline`` fields of ``contingencies`` in place.

    Deadlines are computed only; values the model put there are discarded.
    """
    for days_field, deadline_field in CONTINGENCY_DEADLINES:
        supplied = contingencies.pop(deadline_field, None)
        if supplied not in (None, ""):
            audit.warning(STAGE, f"Discarded model-supplied {deadline_field} {supplied!r}")

        value = contingencies.get(days_field)
        if value is None or value == "":
            continue

        if isinstance(value, str):
            as_date = normalize_date_string(value)
            if as_date:
                contingencies[deadline_field] = as_date
                audit.info(STAGE, f"{deadline_field} {as_date} given as a date in {days_field}")
                continue

        days = parse_day_count(value)
        if days is None:
            audit.warning(STAGE, f"{days_field} {value!r} is not a usable day count")
            continue
        contingencies[deadline_field] = _offset_date(effective_date, days, deadline_field, audit)


def apply_temporal_resolution(
    terms: Dict[str, Any],
    page_extractions: Sequence[Dict[str, Any]],
    audit: Optional[AuditLog] = None,
) -> Tuple[Dict[str, Any], Optional[int]]:
    """Return a copy of ``terms`` with effective, closing and deadline dates resolved.

    Returns:
        Tuple of (resolved terms, page number the effective date came from)
    """
    audit = audit or AuditLog()
    resolved = copy.deepcopy(terms)

    effective_date, source_page = calculate_effective_date(page_extractions, audit)
    resolved["effectiveDate"] = effective_date
    resolved["closeOfEscrowDate"] = resolve_closing_date(resolved, effective_date, audit)

    contingencies = resolved.get("contingencies")
    if isinstance(contingencies, dict):
        resolve_contingency_deadlines(contingencies, effective_date, audit)

    return resolved, source_page
