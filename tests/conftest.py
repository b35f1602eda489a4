"""Pytest configuration and shared fixtures."""

import base64
import json
from typing import Any, Dict, List, Optional

import pytest
from unittest.mock import AsyncMock

from contract_ai.models.page_models import (
    ContentCategory,
    CriticalPage,
    Page,
    PageClassification,
    PageRole,
)

# 1x1 transparent PNG
PNG_1X1 = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="
)


def make_pages(count: int) -> List[Page]:
    return [Page(page_number=n, image=PNG_1X1) for n in range(1, count + 1)]


def make_classification(
    page: int,
    role: PageRole = PageRole.MAIN_CONTRACT,
    category: ContentCategory = ContentCategory.TRANSACTION_TERMS,
    filled: bool = True,
    form_code: str = "RPA",
    form_page: Optional[int] = None,
    footer: Optional[str] = None,
) -> PageClassification:
    return PageClassification(
        pdf_page=page,
        form_code=form_code,
        form_page=form_page if form_page is not None else page,
        role=role,
        content_category=category,
        has_filled_fields=filled,
        confidence=90,
        footer_text=footer,
    )


def make_record(page: int, role: str = "main_contract", **fields: Any) -> Dict[str, Any]:
    record = {
        "pageNumber": page,
        "pageLabel": f"RPA PAGE {page}",
        "formCode": "RPA",
        "pageRole": role,
    }
    record.update(fields)
    return record


def classifier_reply(entries: List[Optional[Dict[str, Any]]]) -> str:
    """Model reply wrapping a classification array in prose and a fence."""
    return "Here is the classification:\n```json\n" + json.dumps({"pages": entries}) + "\n```"


@pytest.fixture
def pages() -> List[Page]:
    """Five blank page images."""
    return make_pages(5)


@pytest.fixture
def page_map(pages) -> Dict[int, Page]:
    return {page.page_number: page for page in pages}


@pytest.fixture
def critical_pages() -> List[CriticalPage]:
    """Main contract page 1 plus a counter offer on page 3."""
    return [
        CriticalPage(
            page_number=1,
            label="RPA PAGE 1 – TRANSACTION TERMS (FILLED)",
            classification=make_classification(1),
        ),
        CriticalPage(
            page_number=3,
            label="SCO PAGE 1 – TRANSACTION TERMS (FILLED)",
            classification=make_classification(3, role=PageRole.COUNTER_OFFER, form_code="SCO", form_page=1),
        ),
    ]


@pytest.fixture
def mock_vision_client() -> AsyncMock:
    """Vision client whose ``generate`` is an AsyncMock."""
    client = AsyncMock()
    client.generate = AsyncMock()
    return client


@pytest.fixture
def main_and_counter_records() -> List[Dict[str, Any]]:
    """Main contract at $500,000 countered to $510,000."""
    return [
        make_record(
            1,
            buyerNames=["Jane Buyer"],
            sellerNames=["Sam Seller"],
            propertyAddress="123 Main Street, Springfield, CA 90000",
            purchasePrice=500000,
            buyerSignatureDates=["03/10/2024"],
        ),
        make_record(
            3,
            role="counter_offer",
            purchasePrice=510000,
            sellerSignatureDates=["03/15/2024"],
        ),
    ]
