"""Validation of the typed term set.

Content problems are data, not exceptions: missing parties, address or
effective date are warnings for human review; a missing or non-positive
purchase price is an error and asks for a second turn.
"""

from typing import Optional

from contract_ai.models.extraction_models import TransactionTerms, ValidationResult
from contract_ai.utils.audit import AuditLog

STAGE = "validation"

MIN_ADDRESS_LENGTH = 10

MISSING_BUYERS = "Missing buyer names"
MISSING_SELLERS = "Missing seller names"
INVALID_ADDRESS = "Missing or invalid property address"
INVALID_PRICE = "Missing or invalid purchase price"
MISSING_EFFECTIVE_DATE = "No effective date (no valid signature dates found)"


def validate_terms(terms: TransactionTerms, audit: Optional[AuditLog] = None) -> ValidationResult:
    audit = audit or AuditLog()
    errors = []
    warnings = []

    if not terms.buyer_names:
        warnings.append(MISSING_BUYERS)
    if not terms.seller_names:
        warnings.append(MISSING_SELLERS)

    address = (terms.property_address or "").strip()
    if len(address) < MIN_ADDRESS_LENGTH:
        warnings.append(INVALID_ADDRESS)

    # Zero is never a real price; it means extraction failed
    if terms.purchase_price is None or terms.purchase_price <= 0:
        errors.append(INVALID_PRICE)

    if not terms.effective_date:
        warnings.append(MISSING_EFFECTIVE_DATE)

    result = ValidationResult(
        needs_review=bool(errors or warnings),
        needs_second_turn=bool(errors),
        errors=errors,
        warnings=warnings,
    )

    for error in errors:
        audit.warning(STAGE, f"Error: {error}")
    for warning in warnings:
        audit.info(STAGE, f"Warning: {warning}")
    audit.info(
        STAGE,
        f"{len(errors)} error(s), {len(warnings)} warning(s); "
        f"needsReview={result.needs_review}, needsSecondTurn={result.needs_second_turn}",
    )
    return result
