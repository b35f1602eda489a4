"""Second-turn extraction for fields that failed validation.

Re-runs the per-page extractor over the same critical pages with a prompt
that names the problem fields and shows the first-turn result as context.
The new records are spliced into the first-turn array by page number; the
caller re-merges and re-validates the spliced array.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from contract_ai.models.page_models import CriticalPage, Page
from contract_ai.prompts.system_prompts import build_second_turn_prompt
from contract_ai.services.extraction.merge_engine import is_empty
from contract_ai.services.extraction.page_extractor import RecordExtractor, page_refs
from contract_ai.utils.logging import get_logger

LOGGER = get_logger(__name__)

# Lower-cased validator phrases -> field path to re-extract
PROBLEM_FIELD_PATTERNS: Tuple[Tuple[str, str], ...] = (
    ("purchase price", "purchasePrice"),
    ("property address", "propertyAddress"),
    ("buyer names", "buyerNames"),
    ("seller names", "sellerNames"),
    ("earnest money", "earnestMoneyDeposit"),
    ("closing date", "closing"),
    ("loan type", "financing.loanType"),
)


def extract_problem_fields(errors: Sequence[str]) -> List[str]:
    """Map validator error strings to field names, in first-seen order."""
    fields: List[str] = []
    for error in errors:
        lowered = error.lower()
        for phrase, field_name in PROBLEM_FIELD_PATTERNS:
            if phrase in lowered and field_name not in fields:
                fields.append(field_name)
    return fields


def _page_number(record: Any) -> Optional[int]:
    value = record.get("pageNumber") if isinstance(record, dict) else None
    if isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return None


def splice_page_extractions(
    first_turn: Sequence[Dict[str, Any]],
    second_turn: Sequence[Dict[str, Any]],
) -> List[Dict[str, Any]]:
    """Replace first-turn records with second-turn ones of the same page.

    Second-turn records for pages the first turn did not cover are appended
    in the order they arrived.
    """
    replacements: Dict[int, Dict[str, Any]] = {}
    unmatched: List[Dict[str, Any]] = []
    for record in second_turn:
        number = _page_number(record)
        if number is None:
            unmatched.append(record)
        else:
            replacements[number] = record

    spliced: List[Dict[str, Any]] = []
    used = set()
    for record in first_turn:
        number = _page_number(record)
        if number is not None and number in replacements:
            spliced.append(replacements[number])
            used.add(number)
        else:
            spliced.append(record)

    for number, record in replacements.items():
        if number not in used:
            spliced.append(record)
    spliced.extend(unmatched)
    return spliced


def field_value(records: Sequence[Dict[str, Any]], path: str) -> Any:
    """First non-empty value of a (dotted) field across page records."""
    for record in records:
        value: Any = record
        for part in path.split("."):
            value = value.get(part) if isinstance(value, dict) else None
        if not is_empty(value):
            return value
    return None


def find_fixed_fields(
    problem_fields: Sequence[str],
    first_turn: Sequence[Dict[str, Any]],
    second_turn: Sequence[Dict[str, Any]],
) -> List[str]:
    """Problem fields for which the second turn supplied a new, usable value."""
    fixed = []
    for path in problem_fields:
        after = field_value(second_turn, path)
        if after is None or after == field_value(first_turn, path):
            continue
        if path == "purchasePrice" and (
            isinstance(after, bool) or not isinstance(after, (int, float)) or after <= 0
        ):
            continue
        fixed.append(path)
    return fixed


@dataclass
class SecondTurnResult:
    page_extractions: List[Dict[str, Any]]
    problem_fields: List[str] = field(default_factory=list)
    fixed_fields: List[str] = field(default_factory=list)


class SecondTurnRunner:
    """Targeted re-extraction over the first turn's critical pages."""

    def __init__(self, extractor: RecordExtractor):
        self.extractor = extractor

    async def run(
        self,
        critical_pages: Sequence[CriticalPage],
        pages: Mapping[int, Page],
        first_turn: Sequence[Dict[str, Any]],
        errors: Sequence[str],
        previous_result: Dict[str, Any],
    ) -> SecondTurnResult:
        """Re-extract and splice.

        Args:
            critical_pages: Same critical pages as the first turn
            pages: All packet pages keyed by page number
            first_turn: First-turn per-page records
            errors: Validator errors that triggered the retry
            previous_result: First-turn merged terms, shown as context

        Returns:
            SecondTurnResult with the spliced record array

        Raises:
            ExtractionError: If the re-extraction call fails
        """
        problem_fields = extract_problem_fields(errors)
        LOGGER.info(
            f"Second turn for {len(errors)} error(s); problem fields: "
            f"{', '.join(problem_fields) or 'none'}",
            extra={"errors": list(errors)},
        )

        prompt = build_second_turn_prompt(previous_result, problem_fields, page_refs(critical_pages))
        second_turn = await self.extractor.extract(critical_pages, pages, prompt=prompt)

        fixed_fields = find_fixed_fields(problem_fields, first_turn, second_turn)
        LOGGER.info(f"Second turn fixed {len(fixed_fields)}/{len(problem_fields)} problem field(s)")

        return SecondTurnResult(
            page_extractions=splice_page_extractions(first_turn, second_turn),
            problem_fields=problem_fields,
            fixed_fields=fixed_fields,
        )
