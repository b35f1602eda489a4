# Centralized prompts for the contract extraction pipeline.
# - Prompts provided:
#   1) build_classifier_prompt      (batch page classification)
#   2) build_extractor_prompt       (per-page structured extraction)
#   3) build_second_turn_prompt     (targeted re-extraction of problem fields)
#   4) ANNOTATION_PAGE_SCHEMA       (JSON schema for the document annotation backend)
#
# NOTE: Every prompt demands JSON only, but responses are still parsed with
# the balanced-bracket scanner in contract_ai.utils.json_parser.

import json
from typing import Any, Dict, List, Sequence

# =============================================================================
# RESPONSE SCHEMAS
# =============================================================================
PAGE_CLASSIFICATION_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["pages"],
    "properties": {
        "pages": {
            "type": "array",
            "items": {
                "anyOf": [
                    {"type": "null"},
                    {
                        "type": "object",
                        "required": [
                            "pdfPage", "formCode", "role", "contentCategory",
                            "hasFilledFields", "confidence",
                        ],
                        "properties": {
                            "pdfPage": {"type": "integer"},
                            "state": {"type": ["string", "null"]},
                            "formCode": {"type": "string"},
                            "formRevision": {"type": ["string", "null"]},
                            "formPage": {"type": ["integer", "null"]},
                            "totalPagesInForm": {"type": ["integer", "null"]},
                            "role": {
                                "type": "string",
                                "enum": [
                                    "main_contract", "counter_offer", "addendum",
                                    "local_addendum", "contingency_release", "disclosure",
                                    "financing", "broker_info", "title_page", "other",
                                ],
                            },
                            "contentCategory": {
                                "type": "string",
                                "enum": [
                                    "transaction_terms", "signatures", "broker_info",
                                    "disclosures", "boilerplate", "other",
                                ],
                            },
                            "hasFilledFields": {"type": "boolean"},
                            "confidence": {"type": "integer", "minimum": 0, "maximum": 100},
                            "titleSnippet": {"type": ["string", "null"]},
                            "footerText": {"type": ["string", "null"]},
                        },
                    },
                ]
            },
        }
    },
}

_NULLABLE_STRING = {"type": ["string", "null"]}
_NULLABLE_NUMBER = {"type": ["number", "null"]}
_NULLABLE_INTEGER = {"type": ["integer", "null"]}
_NULLABLE_BOOLEAN = {"type": ["boolean", "null"]}
_STRING_ARRAY = {"type": ["array", "null"], "items": {"type": "string"}}

ANNOTATION_PAGE_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "buyerNames": _STRING_ARRAY,
        "sellerNames": _STRING_ARRAY,
        "propertyAddress": _NULLABLE_STRING,
        "purchasePrice": _NULLABLE_NUMBER,
        "earnestMoneyDeposit": {
            "type": ["object", "null"],
            "properties": {"amount": _NULLABLE_NUMBER, "holder": _NULLABLE_STRING},
        },
        "closingDate": {"type": ["string", "integer", "null"]},
        "closing": {
            "type": ["object", "null"],
            "properties": {
                "specificDate": _NULLABLE_STRING,
                "daysAfterAcceptance": _NULLABLE_INTEGER,
            },
        },
        "financing": {
            "type": ["object", "null"],
            "properties": {
                "isAllCash": _NULLABLE_BOOLEAN,
                "loanType": _NULLABLE_STRING,
                "loanAmount": _NULLABLE_NUMBER,
            },
        },
        "contingencies": {
            "type": ["object", "null"],
            "properties": {
                "inspectionDays": _NULLABLE_INTEGER,
                "appraisalDays": _NULLABLE_INTEGER,
                "loanDays": _NULLABLE_INTEGER,
                "saleOfBuyerProperty": _NULLABLE_BOOLEAN,
            },
        },
        "closingCosts": {
            "type": ["object", "null"],
            "properties": {
                "buyerPays": _STRING_ARRAY,
                "sellerPays": _STRING_ARRAY,
                "sellerCreditAmount": _NULLABLE_NUMBER,
            },
        },
        "brokers": {
            "type": ["object", "null"],
            "properties": {
                "listingBrokerage": _NULLABLE_STRING,
                "listingAgent": _NULLABLE_STRING,
                "sellingBrokerage": _NULLABLE_STRING,
                "sellingAgent": _NULLABLE_STRING,
            },
        },
        "personalPropertyIncluded": _STRING_ARRAY,
        "additionalTerms": _STRING_ARRAY,
        "escrowHolder": _NULLABLE_STRING,
        "buyerSignatureDates": _STRING_ARRAY,
        "sellerSignatureDates": _STRING_ARRAY,
    },
}

PAGE_EXTRACTION_SCHEMA: Dict[str, Any] = {
    "type": "array",
    "items": {
        "type": "object",
        "required": ["pageNumber", "pageLabel", "formCode", "pageRole"],
        "properties": {
            "pageNumber": {"type": "integer"},
            "pageLabel": {"type": "string"},
            "formCode": {"type": "string"},
            "formPage": _NULLABLE_INTEGER,
            "pageRole": {"type": "string"},
            **ANNOTATION_PAGE_SCHEMA["properties"],
            "confidence": {
                "type": "object",
                "properties": {
                    "overall": {"type": "integer"},
                    "fieldScores": {"type": "object"},
                    "sources": {"type": "object"},
                },
            },
        },
    },
}


def _schema_text(schema: Dict[str, Any]) -> str:
    return json.dumps(schema, indent=2)


# =============================================================================
# BATCH CLASSIFIER PROMPT
# =============================================================================
CLASSIFIER_RULES = r"""
===============================================================================
## 1. CLASSIFICATION RULES (ALL U.S. STATES)
===============================================================================
Forms differ by state but the concepts are universal:
- Main contract: CA RPA, TX TREC 20-x, FL FAR/BAR, NV NVAR Purchase Agreement,
  generic "Purchase Agreement" / "Sales Contract".
- Counter offers: CA SCO / BCO / SMCO, TX TREC 39-x, FL FAR/BAR-5.
- Amendments / addenda: CA ADM, TOA, TX TREC 38-x, FL FAR/BAR-9.
- Contingency releases: CA APR / RR.

Focus on FUNCTION, not terminology:
- Purchase price + dates + financing  -> "transaction_terms"
- Signature blocks and acceptance     -> "signatures"
- Agent / brokerage contact blocks    -> "broker_info"
- Standard disclosure text            -> "disclosures"
- Dense legal clauses                 -> "boilerplate"

IGNORE header/footer fields (running property address, form codes, page
numbers) when deciding contentCategory and hasFilledFields.

hasFilledFields is true ONLY if the MAIN BODY has 3+ substantive filled
fields or checked boxes, OR the page states critical timeline terms
(inspection deadlines, clearance requirements, delivery dates) even if most
of the page is blank lines.

===============================================================================
## 2. PER-PAGE FIELDS
===============================================================================
- If no standard form is detected -> null for that page.
- formCode: SHORT code from the footer/header ("(SCO PAGE 1 OF 2)" -> "SCO").
- formRevision: exactly as visible, else null.
- formPage / totalPagesInForm: from "Page X of Y".
- role: main_contract | counter_offer | addendum | local_addendum |
  contingency_release | disclosure | financing | broker_info | title_page | other
- contentCategory: transaction_terms | signatures | broker_info | disclosures |
  boilerplate | other
- confidence: 0-100.
- titleSnippet: prominent heading, max 120 chars.
- footerText: footer line carrying the form code / revision, if visible.
"""


def build_classifier_prompt(batch_start: int, batch_end: int, batch_size: int) -> str:
    """Build the classifier instruction for one contiguous batch of pages."""
    return f"""
You are a U.S. real estate document page classifier. Examine {batch_size} independent
page images from a transaction packet. Treat each page as isolated and classify it
solely on visible content.

Images in order:
- Image 1 = PDF page {batch_start}
- ...
- Image {batch_size} = PDF page {batch_end}
{CLASSIFIER_RULES}
===============================================================================
## 3. OUTPUT
===============================================================================
Return ONLY a JSON object {{"pages": [...]}} with EXACTLY {batch_size} entries, one per
image, in image order. pdfPage must equal the PDF page number listed above.
No commentary, no markdown.

{_schema_text(PAGE_CLASSIFICATION_SCHEMA)}
""".strip()


# =============================================================================
# PER-PAGE EXTRACTOR PROMPT
# =============================================================================
EXTRACTION_RULES = r"""
===============================================================================
## 1. CRITICAL RULES
===============================================================================
1. PER-PAGE INDEPENDENCE: extract from EACH PAGE on its own.
   - Look ONLY at the current page; never combine data across pages.
   - If a field is not visible on THIS PAGE -> null.
2. NO HALLUCINATION: cite where each value was found in confidence.sources.
   If you cannot cite a location, the field is null.
3. EXTRACT FILLED DATA, NOT BOILERPLATE: marked checkboxes, text on lines,
   write-ins. Ignore unchecked boxes, blank lines and instructions.

===============================================================================
## 2. WHERE TO LOOK
===============================================================================
TOP (header): property address ("Property:", "Re:"), typed buyer/seller names.
  "Date Prepared" is NOT a signature date.
BODY: purchase price, earnest money / initial deposit, closing date or
  "N days after acceptance" (closing.daysAfterAcceptance), financing
  checkboxes, contingency days, closing cost allocations, brokers.
BOTTOM: dates next to signature lines, "Print Name:" fields.

===============================================================================
## 3. SANITY CHECKS
===============================================================================
- Purchase price is never $0; if it is truly absent return null.
- Earnest money is typically 0.5-5% of the price.
- Property address includes street, city, state and ZIP.
- Counter offers and addenda: extract ONLY the terms the page changes.
"""


def build_extractor_prompt(critical_pages: Sequence[Dict[str, Any]]) -> str:
    """Build the extraction instruction for the selected pages.

    Args:
        critical_pages: ``{"pageNumber", "label"}`` entries, in image order
    """
    count = len(critical_pages)
    page_lines = "\n".join(
        f"- Image {index + 1} = PDF page {page['pageNumber']}: {page['label']}"
        for index, page in enumerate(critical_pages)
    )
    return f"""
You are an expert real estate transaction coordinator reviewing {count} page images
from a purchase contract packet.

Images in order:
{page_lines}
{EXTRACTION_RULES}
===============================================================================
## 4. OUTPUT
===============================================================================
Return a JSON ARRAY with EXACTLY {count} objects, one per image, in image order.
Every object MUST carry pageNumber, pageLabel, formCode and pageRole.
No text, no markdown, JUST the JSON array.

{_schema_text(PAGE_EXTRACTION_SCHEMA)}
""".strip()


# =============================================================================
# SECOND-TURN PROMPT
# =============================================================================
SECOND_TURN_GUIDE = r"""
===============================================================================
## FOCUSED RE-EXTRACTION GUIDE
===============================================================================
PROPERTY ADDRESS: top of page, "Property:", "Re:", "Subject Property:".
PURCHASE PRICE: bold amount in the offer section. NEVER $0; null if absent.
BUYER/SELLER NAMES: "Print Name:" fields first, then header tables. Never
  signature scribbles.
SIGNATURE DATES: dates next to signatures, exactly as written. Not "Date Prepared".
EARNEST MONEY / FINANCING: deposit is 0.5-5% of price; loan type is the checked box.
"""


def build_second_turn_prompt(
    previous_result: Dict[str, Any],
    problem_fields: List[str],
    critical_pages: Sequence[Dict[str, Any]],
) -> str:
    """Build the targeted re-extraction instruction.

    Args:
        previous_result: First-turn merged terms (camelCase), shown as context
        problem_fields: Field names the validator flagged
        critical_pages: ``{"pageNumber", "label"}`` entries, in image order
    """
    field_lines = "\n".join(f"- {field}" for field in problem_fields) or "- (none flagged)"
    return f"""
SECOND-TURN RE-EXTRACTION: the first attempt failed validation.

===============================================================================
## FIRST TURN RESULT (For Context Only - DO NOT BLINDLY COPY)
===============================================================================
{json.dumps(previous_result, indent=2, default=str)}

===============================================================================
## PROBLEM FIELDS TO FIX
===============================================================================
{field_lines}
{SECOND_TURN_GUIDE}
{build_extractor_prompt(critical_pages)}
""".strip()


def build_annotation_prompt(page_labels: Sequence[str]) -> str:
    """Per-chunk instruction for the document annotation backend."""
    listing = "\n".join(f"- Page {index + 1}: {label}" for index, label in enumerate(page_labels))
    return (
        "Extract the filled transaction terms from each page of this real estate "
        "contract excerpt independently. Return one object per page in `extractions`, "
        "in page order. Use null for anything not visible on that page.\n" + listing
    )
