"""Data models for page-level classification and selection.

This module defines the page input, the per-page classification produced by
the batch classifier, the critical-page selection, and the role priority
table shared by the selector and the merge engine.
"""

import math
from enum import Enum
from typing import Any, Dict, List, NamedTuple, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class PageRole(str, Enum):
    """Role a page plays within the contract packet."""

    MAIN_CONTRACT = "main_contract"
    COUNTER_OFFER = "counter_offer"
    ADDENDUM = "addendum"
    LOCAL_ADDENDUM = "local_addendum"
    CONTINGENCY_RELEASE = "contingency_release"
    DISCLOSURE = "disclosure"
    FINANCING = "financing"
    BROKER_INFO = "broker_info"
    TITLE_PAGE = "title_page"
    OTHER = "other"


class ContentCategory(str, Enum):
    """What kind of content a page carries."""

    TRANSACTION_TERMS = "transaction_terms"
    SIGNATURES = "signatures"
    BROKER_INFO = "broker_info"
    DISCLOSURES = "disclosures"
    BOILERPLATE = "boilerplate"
    OTHER = "other"


class RolePriority(NamedTuple):
    """Merge ordering and override authority for a role."""

    merge_order: int
    authority: int


# Single ordering table for the selector and the merge engine. Roles absent
# here never reach the merge.
ROLE_PRIORITY: Dict[PageRole, RolePriority] = {
    PageRole.MAIN_CONTRACT: RolePriority(merge_order=1, authority=1),
    PageRole.COUNTER_OFFER: RolePriority(merge_order=2, authority=2),
    PageRole.ADDENDUM: RolePriority(merge_order=3, authority=2),
    PageRole.LOCAL_ADDENDUM: RolePriority(merge_order=3, authority=2),
    PageRole.CONTINGENCY_RELEASE: RolePriority(merge_order=3, authority=2),
    PageRole.BROKER_INFO: RolePriority(merge_order=4, authority=0),
}

# Documents layered on top of the main contract
OVERRIDE_ROLES = frozenset(
    role for role, priority in ROLE_PRIORITY.items()
    if priority.merge_order > ROLE_PRIORITY[PageRole.MAIN_CONTRACT].merge_order
    and role != PageRole.BROKER_INFO
)


def parse_role(value: Any) -> Optional[PageRole]:
    """Map a raw role string to a PageRole, or None if unknown."""
    if isinstance(value, PageRole):
        return value
    if not isinstance(value, str):
        return None
    try:
        return PageRole(value.strip().lower())
    except ValueError:
        return None


class Page(BaseModel):
    """A single page image of the uploaded packet."""

    model_config = ConfigDict(frozen=True)

    page_number: int = Field(..., ge=1, description="1-indexed page number")
    image: bytes = Field(..., description="Rendered page image")
    mime_type: str = Field(default="image/png", description="MIME type of the image")


class PageClassification(BaseModel):
    """Classification result for a single page, as returned by the vision model."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    pdf_page: int = Field(..., ge=1, description="1-indexed page number in the packet")
    form_code: str = Field(..., description="Form identifier, e.g. 'RPA', 'TREC 20-17'")
    form_revision: Optional[str] = Field(None, description="Form revision date or code")
    form_page: Optional[int] = Field(None, description="Page number within the form")
    total_pages_in_form: Optional[int] = Field(None, description="Declared length of the form")
    role: PageRole = Field(..., description="Role of the page within the packet")
    content_category: ContentCategory = Field(..., description="Kind of content on the page")
    has_filled_fields: bool = Field(False, description="Whether handwritten/typed entries are present")
    confidence: int = Field(0, ge=0, le=100, description="Classifier confidence 0-100")
    title_snippet: Optional[str] = Field(None, description="Heading text seen on the page")
    footer_text: Optional[str] = Field(None, description="Footer text (form code, revision)")

    @field_validator("role", mode="before")
    @classmethod
    def unknown_role_is_other(cls, value: Any) -> Any:
        return parse_role(value) or PageRole.OTHER

    @field_validator("content_category", mode="before")
    @classmethod
    def unknown_category_is_other(cls, value: Any) -> Any:
        if isinstance(value, str):
            try:
                return ContentCategory(value.strip().lower())
            except ValueError:
                return ContentCategory.OTHER
        return value

    @field_validator("confidence", mode="before")
    @classmethod
    def clamp_confidence(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value):
            return max(0, min(100, int(round(value))))
        return value


class CriticalPage(BaseModel):
    """A page selected for extraction, with its provenance label."""

    page_number: int = Field(..., ge=1)
    label: str = Field(..., description="Human-readable provenance label")
    classification: Optional[PageClassification] = None

    @property
    def role(self) -> Optional[PageRole]:
        return self.classification.role if self.classification else None

    @property
    def form_code(self) -> Optional[str]:
        return self.classification.form_code if self.classification else None


class PackageMetadata(BaseModel):
    """Summary of the forms detected across the packet."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    detected_form_codes: List[str] = Field(default_factory=list)
    sample_footers: List[str] = Field(default_factory=list)
    total_detected_pages: int = 0
    has_multiple_forms: bool = False
