"""Data models for the reconciled transaction terms and the pipeline result."""

from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from contract_ai.models.page_models import PackageMetadata

Number = Union[int, float]

# Keys every per-page extraction record must carry
MANDATORY_PAGE_KEYS = ("pageNumber", "pageLabel", "formCode", "pageRole")


class CamelModel(BaseModel):
    """Base model exposing camelCase aliases alongside snake_case attributes."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class EarnestMoneyDeposit(CamelModel):
    amount: Optional[Number] = None
    holder: Optional[str] = None


class ClosingTerms(CamelModel):
    """Closing as stated by the contract: a calendar date or a day offset."""

    specific_date: Optional[str] = Field(None, description="Explicit closing date (YYYY-MM-DD)")
    days_after_acceptance: Optional[int] = Field(None, description="Days after the effective date")


class Financing(CamelModel):
    is_all_cash: Optional[bool] = None
    loan_type: Optional[str] = Field(None, description="Conventional | FHA | VA | USDA | Other")
    loan_amount: Optional[Number] = None


class Contingencies(CamelModel):
    inspection_days: Optional[int] = None
    appraisal_days: Optional[int] = None
    loan_days: Optional[int] = None
    sale_of_buyer_property: Optional[bool] = None
    inspection_deadline: Optional[str] = Field(None, description="Computed from inspection_days")
    appraisal_deadline: Optional[str] = Field(None, description="Computed from appraisal_days")
    loan_deadline: Optional[str] = Field(None, description="Computed from loan_days")


class ClosingCosts(CamelModel):
    buyer_pays: List[str] = Field(default_factory=list)
    seller_pays: List[str] = Field(default_factory=list)
    seller_credit_amount: Optional[Number] = None


class Brokers(CamelModel):
    listing_brokerage: Optional[str] = None
    listing_agent: Optional[str] = None
    selling_brokerage: Optional[str] = None
    selling_agent: Optional[str] = None


class TransactionTerms(CamelModel):
    """The reconciled term set for one contract packet."""

    buyer_names: List[str] = Field(default_factory=list)
    seller_names: List[str] = Field(default_factory=list)
    property_address: Optional[str] = None
    purchase_price: Optional[Number] = None
    earnest_money_deposit: Optional[EarnestMoneyDeposit] = None
    closing_date: Optional[Union[int, str]] = Field(
        None, description="Legacy flat closing field: a date or a day count"
    )
    closing: Optional[ClosingTerms] = None
    close_of_escrow_date: Optional[str] = Field(None, description="Resolved closing date")
    financing: Optional[Financing] = None
    contingencies: Optional[Contingencies] = None
    closing_costs: Optional[ClosingCosts] = None
    brokers: Optional[Brokers] = None
    personal_property_included: List[str] = Field(default_factory=list)
    additional_terms: List[str] = Field(default_factory=list)
    escrow_holder: Optional[str] = None
    buyer_signature_dates: List[str] = Field(default_factory=list)
    seller_signature_dates: List[str] = Field(default_factory=list)
    effective_date: Optional[str] = Field(None, description="Latest signature date")

    def to_wire(self) -> Dict[str, Any]:
        """Dump with camelCase keys, the shape downstream consumers expect."""
        return self.model_dump(by_alias=True)


class ValidationResult(CamelModel):
    """Verdict on a term set. A second turn always implies review."""

    needs_review: bool = False
    needs_second_turn: bool = False
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def second_turn_implies_review(self) -> "ValidationResult":
        if self.needs_second_turn:
            self.needs_review = True
        return self


class SecondTurnReport(CamelModel):
    attempted: bool = False
    succeeded: bool = False
    passes: int = 0
    problem_fields: List[str] = Field(default_factory=list)
    fixed_fields: List[str] = Field(default_factory=list)
    error: Optional[str] = None


class CriticalPageRef(CamelModel):
    page_number: int
    label: str


class ExtractionDetails(CamelModel):
    provenance: Dict[str, int] = Field(default_factory=dict)
    page_extractions: List[Dict[str, Any]] = Field(default_factory=list)
    merge_log: List[str] = Field(default_factory=list)
    critical_pages: List[CriticalPageRef] = Field(default_factory=list)
    package_metadata: Optional[PackageMetadata] = None


class ExtractionOutcome(CamelModel):
    """What one ``extract(pages)`` run hands back to the caller."""

    final_terms: TransactionTerms
    details: ExtractionDetails
    needs_review: bool
    validation: ValidationResult
    second_turn: SecondTurnReport = Field(default_factory=SecondTurnReport)
