"""Per-page structured extractor.

Sends every critical page image in one vision call and expects a JSON
array with one independent record per page. There is no partial-array
recovery: a malformed or mis-shaped response fails the call.
"""

from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence

from contract_ai.core.exceptions import ContractAIError, ExtractionError, SchemaViolationError
from contract_ai.core.vision_client import VisionModel
from contract_ai.models.extraction_models import MANDATORY_PAGE_KEYS
from contract_ai.models.page_models import CriticalPage, Page
from contract_ai.prompts.system_prompts import build_extractor_prompt
from contract_ai.utils.json_parser import parse_json_array
from contract_ai.utils.logging import get_logger

LOGGER = get_logger(__name__)


class RecordExtractor(Protocol):
    """Produces one structured record per critical page."""

    async def extract(
        self,
        critical_pages: Sequence[CriticalPage],
        pages: Mapping[int, Page],
        prompt: Optional[str] = None,
    ) -> List[Dict[str, Any]]: ...


def page_refs(critical_pages: Sequence[CriticalPage]) -> List[Dict[str, Any]]:
    """``{"pageNumber", "label"}`` entries used by the prompts."""
    return [{"pageNumber": c.page_number, "label": c.label} for c in critical_pages]


def validate_extraction_array(records: Any, expected: int) -> List[Dict[str, Any]]:
    """Check the shape of an extraction response.

    Raises:
        SchemaViolationError: If the array is empty or its first record lacks
            a mandatory key
    """
    if not isinstance(records, list) or not records:
        raise SchemaViolationError("Extraction response is not a non-empty array")

    first = records[0]
    if not isinstance(first, dict):
        raise SchemaViolationError("First extraction record is not an object")
    missing = [key for key in MANDATORY_PAGE_KEYS if key not in first]
    if missing:
        raise SchemaViolationError(f"First extraction record is missing {', '.join(missing)}")

    if len(records) != expected:
        LOGGER.warning(
            f"Expected {expected} extraction records, got {len(records)}",
            extra={"expected": expected, "received": len(records)},
        )
    else:
        LOGGER.info(f"Safety check passed: {len(records)} extraction records")
    return records


class PageExtractor:
    """Extracts one structured record per critical page with a single vision call."""

    def __init__(self, vision_client: VisionModel, max_parse_attempts: int = 2):
        self.vision_client = vision_client
        self.max_parse_attempts = max_parse_attempts

    async def extract(
        self,
        critical_pages: Sequence[CriticalPage],
        pages: Mapping[int, Page],
        prompt: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Extract per-page records.

        Args:
            critical_pages: Selected pages, in page order
            pages: All packet pages keyed by page number
            prompt: Instruction override (used by the second turn)

        Returns:
            The parsed record array, unmodified

        Raises:
            ExtractionError: On transport, parse or schema failure
        """
        if not critical_pages:
            raise ExtractionError("No critical pages to extract")

        try:
            images = [pages[c.page_number] for c in critical_pages]
        except KeyError as e:
            raise ExtractionError(f"No image for critical page {e.args[0]}", e) from e

        instruction = prompt or build_extractor_prompt(page_refs(critical_pages))
        LOGGER.info(
            f"Extracting {len(images)} critical page(s)",
            extra={"pages": [c.page_number for c in critical_pages]},
        )

        try:
            raw = await self.vision_client.generate(instruction, images)
            records = parse_json_array(raw, self.max_parse_attempts)
            return validate_extraction_array(records, len(critical_pages))
        except ContractAIError as e:
            LOGGER.error(f"Per-page extraction failed: {e}")
            raise ExtractionError(f"Per-page extraction failed: {e}", e) from e
        except Exception as e:
            # Injected vision models may raise anything; cancellation is not an Exception
            LOGGER.error(f"Per-page extraction failed with {type(e).__name__}: {e}")
            raise ExtractionError(
                f"Per-page extraction failed: unexpected {type(e).__name__}: {e}", e
            ) from e
