"""Rule-based page classifier for OCR text.

Uses form-code patterns, role keywords and category keywords to classify
pages without a vision model. The pipeline only falls back to it when every
vision batch failed and the caller supplied OCR text for each page.
"""

import re
from typing import Dict, List, Optional, Sequence

from contract_ai.models.page_models import ContentCategory, PageClassification, PageRole
from contract_ai.utils.logging import get_logger

LOGGER = get_logger(__name__)


class MarkdownPageClassifier:
    """Heuristic classifier for real estate contract pages given as OCR text/markdown."""

    # Short codes are matched case-sensitively as whole words ("APR" is not "Apr 5");
    # titles carry an inline (?i)
    FORM_CODE_PATTERNS: Dict[str, List[str]] = {
        "RPA": [r"\bRPA(?:[-\s]*CA)?\b", r"(?i)california\s+residential\s+purchase\s+agreement"],
        "TREC 20-16": [r"(?i)TREC\s+NO\.?\s*20-\d+", r"(?i)one\s+to\s+four\s+family\s+residential\s+contract"],
        "FAR/BAR-6": [r"FAR/BAR-\d+", r"(?i)florida\s+realtors/florida\s+bar"],
        "NVAR": [r"\bNVAR\b", r"(?i)northern\s+virginia\s+association\s+of\s+realtors"],
        "SMCO": [r"\bSMCO\b", r"(?i)seller\s+multiple\s+counter\s+offer"],
        "SCO": [r"\bSCO\b", r"(?i)seller\s+counter\s+offer"],
        "BCO": [r"\bBCO\b", r"(?i)buyer\s+counter\s+offer"],
        "CR-B": [r"\bCR-B\b"],
        "APR": [r"\bAPR\b", r"(?i)contingency\s+removal"],
        "RR": [r"\bRR\b", r"(?i)request\s+for\s+repair", r"(?i)receipt\s+for\s+reports"],
        "FRR-PA": [r"\bFRR-PA\b", r"(?i)federal\s+reporting\s+requirement\s+purchase\s+addendum"],
        "ADM": [r"\bADM\b", r"(?i)\baddendum\b"],
        "FVAC": [r"\bFVAC\b", r"(?i)fha/va\s+amendatory\s+clause"],
        "AD": [r"\bAD\b", r"(?i)disclosure\s+regarding\s+(?:real\s+estate\s+)?agency\s+relationship"],
        "BIA": [r"\bBIA\b", r"(?i)buyer'?s\s+investigation\s+advisory"],
        "PRBS": [r"\bPRBS\b", r"(?i)possible\s+representation\s+of\s+more\s+than\s+one\s+buyer"],
        "FHDA": [r"\bFHDA\b", r"(?i)fair\s+housing\s+and\s+discrimination\s+advisory"],
        "WFA": [r"\bWFA\b", r"(?i)wire\s+fraud"],
        "SBSA": [r"\bSBSA\b", r"(?i)statewide\s+buyer\s+and\s+seller\s+advisory"],
    }

    FORM_CODE_ROLES: Dict[str, PageRole] = {
        "RPA": PageRole.MAIN_CONTRACT,
        "TREC 20-16": PageRole.MAIN_CONTRACT,
        "FAR/BAR-6": PageRole.MAIN_CONTRACT,
        "NVAR": PageRole.MAIN_CONTRACT,
        "SMCO": PageRole.COUNTER_OFFER,
        "SCO": PageRole.COUNTER_OFFER,
        "BCO": PageRole.COUNTER_OFFER,
        "CR-B": PageRole.CONTINGENCY_RELEASE,
        "APR": PageRole.CONTINGENCY_RELEASE,
        "RR": PageRole.CONTINGENCY_RELEASE,
        "FRR-PA": PageRole.LOCAL_ADDENDUM,
        "ADM": PageRole.ADDENDUM,
        "FVAC": PageRole.DISCLOSURE,
        "AD": PageRole.DISCLOSURE,
        "BIA": PageRole.DISCLOSURE,
        "PRBS": PageRole.DISCLOSURE,
        "FHDA": PageRole.DISCLOSURE,
        "WFA": PageRole.DISCLOSURE,
        "SBSA": PageRole.DISCLOSURE,
    }

    # Used when no form code was recognized; checked in order
    ROLE_KEYWORDS: Dict[PageRole, List[str]] = {
        PageRole.COUNTER_OFFER: ["counter offer", "multiple counter"],
        PageRole.CONTINGENCY_RELEASE: ["contingency removal", "release of contingencies"],
        PageRole.LOCAL_ADDENDUM: ["local addendum", "regional addendum"],
        PageRole.ADDENDUM: ["addendum", "amendment"],
        PageRole.BROKER_INFO: ["broker compensation", "agency disclosure"],
        PageRole.DISCLOSURE: [
            "disclosure", "advisory", "seller property questionnaire",
        ],
        PageRole.TITLE_PAGE: ["cover sheet", "table of contents"],
        PageRole.MAIN_CONTRACT: ["purchase agreement", "sales contract", "residential purchase"],
    }

    CATEGORY_KEYWORDS: Dict[ContentCategory, List[str]] = {
        ContentCategory.TRANSACTION_TERMS: [
            "purchase price", "earnest money", "initial deposit", "closing date",
            "close of escrow", "financing", "contingenc", "items included",
        ],
        ContentCategory.SIGNATURES: ["buyer signature", "seller signature", "acceptance", "date signed"],
        ContentCategory.BROKER_INFO: ["real estate broker", "agent", "compensation", "commission"],
        ContentCategory.DISCLOSURES: [
            "disclosure", "hazard", "lead-based", "lead based", "advisory",
            "privacy act", "fair housing",
        ],
    }

    FILLED_PATTERNS: List[str] = [
        r"\b\d{1,2}/\d{1,2}/\d{2,4}\b",          # dates
        r"\$\s?\d{1,3}(?:,\d{3})+(?:\.\d{2})?",  # dollar amounts
        r"\[x\]|☑|☒",                            # checked boxes
        r"\bchecked\b",
    ]

    # Signature-only pages carry a few dates; require more signals than that
    FILLED_THRESHOLD = 4

    BASELINE_CONFIDENCE = 85

    def classify_page(self, page_number: int, text: str) -> Optional[PageClassification]:
        """Classify one page from its OCR text.

        Returns:
            PageClassification, or None when no form could be detected
        """
        if not text or not text.strip():
            return None

        form_code = self._detect_form_code(text)
        role = self.FORM_CODE_ROLES.get(form_code) if form_code else self._detect_role(text)
        if role is None:
            return None

        lines = [line.strip() for line in text.splitlines() if line.strip()]
        classification = PageClassification(
            pdf_page=page_number,
            form_code=form_code or "UNKNOWN",
            role=role,
            content_category=self._detect_category(text),
            has_filled_fields=self._has_filled_fields(text),
            confidence=self.BASELINE_CONFIDENCE,
            title_snippet=lines[0][:120] if lines else None,
            footer_text=lines[-1][:300] if lines else None,
        )

        LOGGER.debug(
            f"Page {page_number} classified from text as {role.value}/{classification.content_category.value}",
            extra={"page_number": page_number, "form_code": classification.form_code},
        )
        return classification

    def classify_pages(self, texts: Sequence[str]) -> List[Optional[PageClassification]]:
        """Classify a packet given one text per page, in page order."""
        results = [self.classify_page(index + 1, text) for index, text in enumerate(texts)]
        LOGGER.info(
            f"Text classifier detected forms on {sum(1 for r in results if r)}/{len(results)} pages"
        )
        return results

    def _detect_form_code(self, text: str) -> Optional[str]:
        for code, patterns in self.FORM_CODE_PATTERNS.items():
            if any(re.search(pattern, text) for pattern in patterns):
                return code
        return None

    def _detect_role(self, text: str) -> Optional[PageRole]:
        for role, keywords in self.ROLE_KEYWORDS.items():
            for keyword in keywords:
                if re.search(rf"\b{re.escape(keyword)}\b", text, re.IGNORECASE):
                    return role
        return None

    def _detect_category(self, text: str) -> ContentCategory:
        lower = text.lower()
        for category, keywords in self.CATEGORY_KEYWORDS.items():
            if any(keyword in lower for keyword in keywords):
                return category

        if lower.count("$") >= 3 and "date" in lower:
            return ContentCategory.TRANSACTION_TERMS
        if "signature" in lower:
            return ContentCategory.SIGNATURES
        return ContentCategory.BOILERPLATE

    def _has_filled_fields(self, text: str) -> bool:
        signals = sum(
            len(re.findall(pattern, text, re.IGNORECASE)) for pattern in self.FILLED_PATTERNS
        )
        return signals >= self.FILLED_THRESHOLD
