"""Per-field allow-list and merge strategy.

Every mergeable field names the page roles permitted to set it and the
strategy the merge engine applies to it. A value from any other role is
dropped before it can reach the merged term set.
"""

from enum import Enum
from typing import Dict, FrozenSet, NamedTuple, Optional

from contract_ai.models.page_models import ROLE_PRIORITY, PageRole


class MergeStrategy(str, Enum):
    """How successive page values of one field combine."""

    SIMPLE = "simple"                  # first non-null wins, higher/equal authority overrides
    ACCUMULATE = "accumulate"          # case-insensitive union, first-appearance order
    SUB_FIELD_FIRST = "sub_field_first"  # first writer wins per sub-field
    MOST_COMPLETE = "most_complete"    # more populated object replaces, otherwise backfill


class FieldRule(NamedTuple):
    roles: FrozenSet[PageRole]
    strategy: MergeStrategy


_MAIN_COUNTER = frozenset({PageRole.MAIN_CONTRACT, PageRole.COUNTER_OFFER})
_ALL_MERGEABLE = frozenset(ROLE_PRIORITY)

FIELD_RULES: Dict[str, FieldRule] = {
    # Parties and core economics
    "buyerNames": FieldRule(_MAIN_COUNTER, MergeStrategy.SIMPLE),
    "sellerNames": FieldRule(_MAIN_COUNTER, MergeStrategy.SIMPLE),
    "propertyAddress": FieldRule(_MAIN_COUNTER, MergeStrategy.SIMPLE),
    "purchasePrice": FieldRule(_MAIN_COUNTER, MergeStrategy.SIMPLE),
    "earnestMoneyDeposit": FieldRule(_MAIN_COUNTER, MergeStrategy.SIMPLE),
    "closingDate": FieldRule(_MAIN_COUNTER, MergeStrategy.SIMPLE),
    "closing": FieldRule(_MAIN_COUNTER, MergeStrategy.MOST_COMPLETE),
    "financing": FieldRule(_MAIN_COUNTER, MergeStrategy.MOST_COMPLETE),
    "contingencies": FieldRule(_MAIN_COUNTER, MergeStrategy.SUB_FIELD_FIRST),
    # Supplemental terms
    "closingCosts": FieldRule(
        frozenset({PageRole.MAIN_CONTRACT, PageRole.COUNTER_OFFER, PageRole.ADDENDUM}),
        MergeStrategy.MOST_COMPLETE,
    ),
    "additionalTerms": FieldRule(
        frozenset({
            PageRole.MAIN_CONTRACT,
            PageRole.COUNTER_OFFER,
            PageRole.ADDENDUM,
            PageRole.CONTINGENCY_RELEASE,
        }),
        MergeStrategy.ACCUMULATE,
    ),
    "personalPropertyIncluded": FieldRule(
        frozenset({PageRole.MAIN_CONTRACT, PageRole.ADDENDUM}),
        MergeStrategy.ACCUMULATE,
    ),
    "escrowHolder": FieldRule(
        frozenset({PageRole.MAIN_CONTRACT, PageRole.ADDENDUM}),
        MergeStrategy.SIMPLE,
    ),
    # Broker pages first, main contract as fallback
    "brokers": FieldRule(
        frozenset({PageRole.BROKER_INFO, PageRole.MAIN_CONTRACT}),
        MergeStrategy.MOST_COMPLETE,
    ),
    # Acceptance can be signed on any document
    "buyerSignatureDates": FieldRule(_ALL_MERGEABLE, MergeStrategy.SIMPLE),
    "sellerSignatureDates": FieldRule(_ALL_MERGEABLE, MergeStrategy.SIMPLE),
}

# Per-page bookkeeping keys that are never merged as terms
METADATA_FIELDS = frozenset({
    "pageNumber", "pageLabel", "formCode", "formPage", "pageRole", "confidence", "sources",
})


def allow_list_role(role: PageRole) -> PageRole:
    """Role used for allow-list lookups; local addenda count as addenda."""
    if role == PageRole.LOCAL_ADDENDUM:
        return PageRole.ADDENDUM
    return role


def field_rule(field_name: str) -> Optional[FieldRule]:
    return FIELD_RULES.get(field_name)


def is_allowed(field_name: str, role: PageRole) -> bool:
    """Whether pages of ``role`` may set ``field_name``."""
    rule = FIELD_RULES.get(field_name)
    if rule is None:
        return False
    if role in rule.roles:
        return True
    return allow_list_role(role) in rule.roles
