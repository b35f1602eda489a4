"""Type coercion of the merged term set into the TransactionTerms schema.

The coercion table is a fixed list of (field path, coercer) pairs. Paths are
tuples of TransactionTerms wire names and are checked against the model when
this module is imported, so a misspelled path fails at startup instead of
silently coercing nothing.
"""

import copy
from typing import Any, Callable, Dict, List, NamedTuple, Optional, Tuple, Type

from pydantic import BaseModel
from pydantic.alias_generators import to_camel

from contract_ai.core.exceptions import ConfigurationError
from contract_ai.models.extraction_models import TransactionTerms
from contract_ai.services.extraction.loan_type import normalize_loan_type
from contract_ai.utils.audit import AuditLog
from contract_ai.utils.coercion import (
    coerce_boolean,
    coerce_number,
    coerce_string,
    coerce_string_array,
)
from contract_ai.utils.dates import normalize_date_string, parse_day_count

STAGE = "coercion"


def coerce_days(value: Any) -> Optional[int]:
    """Whole number of days, from ints, floats or '30 days' style strings."""
    days = parse_day_count(value)
    if days is not None:
        return days
    number = coerce_number(value)
    return parse_day_count(int(round(number))) if number is not None else None


def coerce_date(value: Any) -> Optional[str]:
    text = coerce_string(value)
    if text is None:
        return None
    return normalize_date_string(text) or text


def coerce_closing_date(value: Any) -> Optional[Any]:
    """Legacy closingDate: keep a day count as int, anything else as a string."""
    if value is None:
        return None
    days = parse_day_count(value)
    if days is not None:
        return days
    return coerce_date(value)


def coerce_string_list(value: Any) -> List[str]:
    """List of strings without comma splitting (dates and free-text terms contain commas)."""
    if value is None:
        return []
    items = value if isinstance(value, (list, tuple)) else [value]
    return [text for text in (coerce_string(item) for item in items if item is not None) if text]


class Coercion(NamedTuple):
    path: Tuple[str, ...]
    coercer: Callable[[Any], Any]


COERCIONS: List[Coercion] = [
    # Parties and core economics
    Coercion(("buyerNames",), coerce_string_array),
    Coercion(("sellerNames",), coerce_string_array),
    Coercion(("propertyAddress",), coerce_string),
    Coercion(("purchasePrice",), coerce_number),
    Coercion(("personalPropertyIncluded",), coerce_string_array),
    Coercion(("additionalTerms",), coerce_string_list),
    Coercion(("escrowHolder",), coerce_string),
    Coercion(("buyerSignatureDates",), coerce_string_list),
    Coercion(("sellerSignatureDates",), coerce_string_list),
    Coercion(("closingDate",), coerce_closing_date),
    # Earnest money
    Coercion(("earnestMoneyDeposit", "amount"), coerce_number),
    Coercion(("earnestMoneyDeposit", "holder"), coerce_string),
    # Closing
    Coercion(("closing", "specificDate"), coerce_date),
    Coercion(("closing", "daysAfterAcceptance"), coerce_days),
    # Financing
    Coercion(("financing", "isAllCash"), coerce_boolean),
    Coercion(("financing", "loanType"), normalize_loan_type),
    Coercion(("financing", "loanAmount"), coerce_number),
    # Contingencies
    Coercion(("contingencies", "inspectionDays"), coerce_days),
    Coercion(("contingencies", "appraisalDays"), coerce_days),
    Coercion(("contingencies", "loanDays"), coerce_days),
    Coercion(("contingencies", "saleOfBuyerProperty"), coerce_boolean),
    Coercion(("contingencies", "inspectionDeadline"), coerce_date),
    Coercion(("contingencies", "appraisalDeadline"), coerce_date),
    Coercion(("contingencies", "loanDeadline"), coerce_date),
    # Closing costs
    Coercion(("closingCosts", "buyerPays"), coerce_string_array),
    Coercion(("closingCosts", "sellerPays"), coerce_string_array),
    Coercion(("closingCosts", "sellerCreditAmount"), coerce_number),
    # Brokers
    Coercion(("brokers", "listingBrokerage"), coerce_string),
    Coercion(("brokers", "listingAgent"), coerce_string),
    Coercion(("brokers", "sellingBrokerage"), coerce_string),
    Coercion(("brokers", "sellingAgent"), coerce_string),
]


def _nested_model(annotation: Any) -> Optional[Type[BaseModel]]:
    """The BaseModel inside ``Optional[Model]`` / ``Model``, if any."""
    candidates = getattr(annotation, "__args__", None) or (annotation,)
    for candidate in candidates:
        if isinstance(candidate, type) and issubclass(candidate, BaseModel):
            return candidate
    return None


def _aliases(model: Type[BaseModel]) -> Dict[str, Any]:
    return {(info.alias or to_camel(name)): info for name, info in model.model_fields.items()}


# Wire names of TransactionTerms fields that hold nested objects
OBJECT_FIELDS = tuple(
    alias for alias, info in _aliases(TransactionTerms).items()
    if _nested_model(info.annotation) is not None
)


def _repair_object_fields(terms: Dict[str, Any], audit: AuditLog) -> None:
    """Objects given as scalars: a bare deposit amount is wrapped, anything else dropped."""
    for name in OBJECT_FIELDS:
        value = terms.get(name)
        if value is None or isinstance(value, dict):
            continue
        if name == "earnestMoneyDeposit" and coerce_number(value) is not None:
            terms[name] = {"amount": value}
            audit.info(STAGE, f"{name}: bare amount {_describe(value)} wrapped as {{amount}}")
            continue
        audit.warning(STAGE, f"{name}: expected an object, got {_describe(value)}; dropped")
        terms[name] = None


def verify_paths(coercions: List[Coercion], model: Type[BaseModel] = TransactionTerms) -> None:
    """Fail fast if any coercion path does not exist on the model.

    Raises:
        ConfigurationError: On the first unknown path segment
    """
    for coercion in coercions:
        current: Optional[Type[BaseModel]] = model
        for depth, segment in enumerate(coercion.path):
            fields = _aliases(current)
            if segment not in fields:
                raise ConfigurationError(
                    f"Coercion path {'.'.join(coercion.path)} does not exist on {model.__name__}"
                )
            if depth < len(coercion.path) - 1:
                current = _nested_model(fields[segment].annotation)
                if current is None:
                    raise ConfigurationError(
                        f"Coercion path {'.'.join(coercion.path)} descends into a non-object field"
                    )


verify_paths(COERCIONS)


def _describe(value: Any) -> str:
    text = repr(value)
    return text if len(text) <= 80 else text[:77] + "..."


def _changed(before: Any, after: Any) -> bool:
    return type(before) is not type(after) or before != after


def coerce_terms(terms: Dict[str, Any], audit: Optional[AuditLog] = None) -> Dict[str, Any]:
    """Apply the coercion table to a copy of ``terms``.

    Parents that are missing or not objects are skipped, so an absent
    ``financing`` never turns into an empty one.
    """
    audit = audit or AuditLog()
    coerced = copy.deepcopy(terms)
    _repair_object_fields(coerced, audit)
    changes = 0

    for coercion in COERCIONS:
        target: Any = coerced
        for segment in coercion.path[:-1]:
            target = target.get(segment) if isinstance(target, dict) else None
            if target is None:
                break
        if not isinstance(target, dict):
            continue

        leaf = coercion.path[-1]
        before = target.get(leaf)
        after = coercion.coercer(before)
        if leaf not in target and after in (None, []):
            continue
        if _changed(before, after):
            changes += 1
            audit.info(
                STAGE,
                f"{'.'.join(coercion.path)}: {_describe(before)} -> {_describe(after)}",
            )
        target[leaf] = after

    audit.info(STAGE, f"Applied {changes} type coercion(s)")
    return coerced


def to_transaction_terms(terms: Dict[str, Any], audit: Optional[AuditLog] = None) -> TransactionTerms:
    """Coerce the merged dict and build the typed term set."""
    return TransactionTerms.model_validate(coerce_terms(terms, audit))
