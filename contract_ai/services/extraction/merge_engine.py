"""Merge engine: reconciles per-page extractions into one term set.

Records are grouped by role and processed in ``ROLE_PRIORITY`` merge order
(main contract, counter offers, addenda, broker pages), pages ascending
within a role. Each field passes the role allow-list, then its merge
strategy decides how the value combines with what is already merged.

Provenance maps each merged field to the page that supplied its current
value. It only moves when the value itself is replaced.
"""

import copy
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from contract_ai.models.page_models import ROLE_PRIORITY, PageRole, parse_role
from contract_ai.services.extraction.field_sources import (
    FIELD_RULES,
    METADATA_FIELDS,
    MergeStrategy,
    is_allowed,
)
from contract_ai.utils.audit import AuditLog
from contract_ai.utils.logging import get_logger

LOGGER = get_logger(__name__)

STAGE = "merge"


def is_empty(value: Any) -> bool:
    """Null, blank, empty, or an object whose every sub-field is empty."""
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple)):
        return all(is_empty(item) for item in value)
    if isinstance(value, dict):
        return all(is_empty(item) for item in value.values())
    if isinstance(value, float):
        return value != value  # NaN
    return False


def completeness(value: Any) -> int:
    """Count of populated sub-fields of an object value."""
    if not isinstance(value, dict):
        return 0
    return sum(1 for item in value.values() if not is_empty(item))


@dataclass
class MergeResult:
    """Merged camelCase term dict plus field provenance."""

    terms: Dict[str, Any] = field(default_factory=dict)
    provenance: Dict[str, int] = field(default_factory=dict)
    dropped: List[str] = field(default_factory=list)


@dataclass
class _OrderedRecord:
    page_number: int
    role: PageRole
    data: Dict[str, Any]


class MergeEngine:
    """Reconciles per-page extraction records by role priority and allow-list."""

    def __init__(self, audit: Optional[AuditLog] = None):
        self.audit = audit or AuditLog()

    def merge(self, page_extractions: Sequence[Dict[str, Any]]) -> MergeResult:
        """Merge per-page records into one term set.

        The input is never mutated; running twice on the same records gives
        identical output.

        Args:
            page_extractions: Per-page records as returned by the extractor

        Returns:
            MergeResult with camelCase terms and provenance
        """
        result = MergeResult()
        authority: Dict[str, int] = {}

        ordered = self._order_records(page_extractions, result)
        self.audit.info(
            STAGE,
            f"Merging {len(ordered)} page(s): "
            + ", ".join(f"p{r.page_number}:{r.role.value}" for r in ordered),
        )

        for record in ordered:
            for key, value in record.data.items():
                if key in METADATA_FIELDS:
                    continue
                rule = FIELD_RULES.get(key)
                if rule is None:
                    self.audit.info(STAGE, f"{key} on page {record.page_number} is not a merge field, ignored")
                    continue
                if is_empty(value):
                    continue
                if not is_allowed(key, record.role):
                    message = (
                        f"{key} from {record.role.value} page {record.page_number} dropped "
                        f"(role not permitted)"
                    )
                    result.dropped.append(message)
                    self.audit.warning(STAGE, message)
                    continue

                if rule.strategy == MergeStrategy.SIMPLE:
                    self._merge_simple(key, value, record, result, authority)
                elif rule.strategy == MergeStrategy.ACCUMULATE:
                    self._merge_accumulate(key, value, record, result)
                elif rule.strategy == MergeStrategy.SUB_FIELD_FIRST:
                    self._merge_sub_fields(key, value, record, result)
                else:
                    self._merge_most_complete(key, value, record, result)

        self.audit.info(STAGE, f"Merged {len(result.terms)} field(s) from {len(ordered)} page(s)")
        return result

    def _order_records(
        self, page_extractions: Sequence[Dict[str, Any]], result: MergeResult
    ) -> List[_OrderedRecord]:
        ordered: List[_OrderedRecord] = []
        for index, raw in enumerate(page_extractions):
            if not isinstance(raw, dict):
                self.audit.warning(STAGE, f"Record {index + 1} is not an object, skipped")
                continue

            page_number = raw.get("pageNumber")
            if isinstance(page_number, bool) or not isinstance(page_number, int):
                try:
                    page_number = int(str(page_number).strip())
                except ValueError:
                    self.audit.warning(STAGE, f"Record {index + 1} has no usable pageNumber, skipped")
                    continue

            role = parse_role(raw.get("pageRole"))
            if role is None or role not in ROLE_PRIORITY:
                message = f"Page {page_number} with role {raw.get('pageRole')!r} excluded from merge"
                result.dropped.append(message)
                self.audit.info(STAGE, message)
                continue

            ordered.append(_OrderedRecord(page_number, role, copy.deepcopy(raw)))

        ordered.sort(key=lambda r: (ROLE_PRIORITY[r.role].merge_order, r.page_number))
        return ordered

    def _merge_simple(
        self,
        key: str,
        value: Any,
        record: _OrderedRecord,
        result: MergeResult,
        authority: Dict[str, int],
    ) -> None:
        incoming = ROLE_PRIORITY[record.role].authority
        source = f"{record.role.value} page {record.page_number}"

        if key not in result.terms:
            self._assign(key, value, record, result)
            authority[key] = incoming
            self.audit.info(STAGE, f"{key} from {source}")
            return

        if incoming < authority[key]:
            self.audit.info(
                STAGE,
                f"{key} on {source} ignored; kept value from page {result.provenance[key]}",
            )
            return

        if value == result.terms[key]:
            return

        previous_page = result.provenance[key]
        self._assign(key, value, record, result)
        authority[key] = incoming
        self.audit.info(STAGE, f"{key} overridden by {source} (was page {previous_page})")

    def _merge_accumulate(
        self, key: str, value: Any, record: _OrderedRecord, result: MergeResult
    ) -> None:
        items = value if isinstance(value, list) else [value]
        current: List[str] = result.terms.get(key, [])
        seen = {item.casefold() for item in current}

        added = []
        for item in items:
            if not isinstance(item, str) or not item.strip():
                continue
            text = item.strip()
            if text.casefold() in seen:
                continue
            seen.add(text.casefold())
            added.append(text)

        if not added:
            return

        if key not in result.terms:
            result.terms[key] = added
            result.provenance[key] = record.page_number
        else:
            result.terms[key] = current + added
        self.audit.info(
            STAGE, f"{key} +{len(added)} item(s) from {record.role.value} page {record.page_number}"
        )

    def _merge_sub_fields(
        self, key: str, value: Any, record: _OrderedRecord, result: MergeResult
    ) -> None:
        if not isinstance(value, dict):
            self.audit.warning(STAGE, f"{key} on page {record.page_number} is not an object, ignored")
            return

        merged: Dict[str, Any] = result.terms.setdefault(key, {})
        filled = []
        for sub_key, sub_value in value.items():
            if is_empty(sub_value):
                continue
            if not is_empty(merged.get(sub_key)):
                if merged[sub_key] != sub_value:
                    self.audit.info(
                        STAGE,
                        f"{key}.{sub_key} on page {record.page_number} ignored; "
                        f"already set by page {result.provenance.get(f'{key}.{sub_key}')}",
                    )
                continue
            merged[sub_key] = sub_value
            result.provenance[f"{key}.{sub_key}"] = record.page_number
            filled.append(sub_key)

        if filled:
            result.provenance.setdefault(key, record.page_number)
            self.audit.info(
                STAGE,
                f"{key} filled {', '.join(filled)} from {record.role.value} page {record.page_number}",
            )
        elif not merged:
            del result.terms[key]

    def _merge_most_complete(
        self, key: str, value: Any, record: _OrderedRecord, result: MergeResult
    ) -> None:
        if not isinstance(value, dict):
            self.audit.warning(STAGE, f"{key} on page {record.page_number} is not an object, ignored")
            return

        source = f"{record.role.value} page {record.page_number}"
        current = result.terms.get(key)
        if current is None:
            self._assign(key, value, record, result)
            self.audit.info(STAGE, f"{key} from {source} ({completeness(value)} populated)")
            return

        current_count, candidate_count = completeness(current), completeness(value)
        if candidate_count > current_count:
            previous_page = result.provenance[key]
            self._assign(key, value, record, result)
            self.audit.info(
                STAGE,
                f"{key} replaced by more complete {source} "
                f"({candidate_count} vs {current_count} populated, was page {previous_page})",
            )
            return

        backfilled = []
        for sub_key, sub_value in value.items():
            if is_empty(sub_value) or not is_empty(current.get(sub_key)):
                continue
            current[sub_key] = copy.deepcopy(sub_value)
            backfilled.append(sub_key)
        if backfilled:
            self.audit.info(STAGE, f"{key} backfilled {', '.join(backfilled)} from {source}")

    @staticmethod
    def _assign(key: str, value: Any, record: _OrderedRecord, result: MergeResult) -> None:
        result.terms[key] = copy.deepcopy(value)
        result.provenance[key] = record.page_number


def merge_page_extractions(
    page_extractions: Sequence[Dict[str, Any]], audit: Optional[AuditLog] = None
) -> Tuple[Dict[str, Any], Dict[str, int]]:
    """Convenience wrapper returning ``(terms, provenance)``."""
    merged = MergeEngine(audit).merge(page_extractions)
    return merged.terms, merged.provenance
