"""Loan type normalization.

Maps free-text loan types onto Conventional | FHA | VA | USDA | Other.
Combined types (FHA/VA) and seller financing are Other, as is anything
unrecognized. Blank input stays None.
"""

import re
from typing import Any, Optional

from contract_ai.utils.logging import get_logger

LOGGER = get_logger(__name__)

LOAN_TYPES = ("Conventional", "FHA", "VA", "USDA", "Other")

_EXACT = {loan_type.upper(): loan_type for loan_type in LOAN_TYPES}

_MISSPELLED_CONVENTIONAL = ("CONVENTIAL", "CONVENTONAL", "CONVENTINAL", "CONVENTIONL", "CONV.")


def normalize_loan_type(raw: Any) -> Optional[str]:
    if raw is None:
        return None
    text = str(raw).strip()
    if not text:
        return None

    upper = text.upper()
    if upper in _EXACT:
        return _EXACT[upper]

    if "/" in upper or " OR " in upper:
        LOGGER.info(f"Combined loan type {text!r} -> Other")
        return "Other"

    if ("SELLER" in upper and "FINANC" in upper) or "OWNER FINANC" in upper:
        LOGGER.info(f"Seller financing {text!r} -> Other")
        return "Other"

    if "CONVENTIONAL" in upper or any(m in upper for m in _MISSPELLED_CONVENTIONAL) or upper == "CONV":
        return "Conventional"
    if re.search(r"\bFHA\b", upper):
        return "FHA"
    if re.search(r"\bVA\b", upper):
        return "VA"
    if re.search(r"\bUSDA\b", upper):
        return "USDA"

    LOGGER.info(f"Unrecognized loan type {text!r} -> Other")
    return "Other"
