"""Document annotation backend for per-page extraction.

Same contract as the vision per-page extractor, but the critical pages are
assembled into small PDFs and sent to Mistral's OCR endpoint with a JSON
schema for ``document_annotation``. Chunks run in parallel; any failing
chunk fails the whole call.
"""

import asyncio
import base64
import uuid
from typing import Any, Dict, List, Mapping, Optional, Sequence

from fpdf.errors import FPDFException

from contract_ai.core.base_llm_client import BaseLLMClient
from contract_ai.core.exceptions import (
    ContractAIError,
    ExtractionError,
    SchemaViolationError,
)
from contract_ai.models.page_models import CriticalPage, Page
from contract_ai.prompts.system_prompts import ANNOTATION_PAGE_SCHEMA, build_annotation_prompt
from contract_ai.services.annotation.pdf_assembler import (
    MAX_CHUNK_PAGES,
    AssembledChunk,
    assemble_pdf_chunk,
)
from contract_ai.services.extraction.page_extractor import validate_extraction_array
from contract_ai.services.storage_service import StorageService
from contract_ai.utils.batching import create_batches
from contract_ai.utils.json_parser import parse_json_object
from contract_ai.utils.logging import get_logger

LOGGER = get_logger(__name__)

SCHEMA_NAME = "real_estate_transaction_extractor"

ANNOTATION_DOCUMENT_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["extractions"],
    "properties": {
        "extractions": {"type": "array", "items": ANNOTATION_PAGE_SCHEMA},
    },
}


def parse_document_annotation(response: Dict[str, Any], max_parse_attempts: int = 2) -> List[Any]:
    """Pull the ``extractions`` array out of a string-or-object annotation.

    Raises:
        SchemaViolationError: If no extractions array is present
        MalformedOutputError: If a string annotation holds no JSON object
    """
    if not isinstance(response, dict):
        raise SchemaViolationError(f"Unexpected Mistral response type: {type(response).__name__}")

    annotation = response.get("document_annotation")
    if isinstance(annotation, str):
        annotation = parse_json_object(annotation, max_parse_attempts)
    if not isinstance(annotation, dict):
        raise SchemaViolationError("Mistral response has no document_annotation object")

    extractions = annotation.get("extractions")
    if not isinstance(extractions, list):
        raise SchemaViolationError("document_annotation is missing the extractions array")
    return extractions


class MistralAnnotationService:
    """Per-page extraction through Mistral document annotation."""

    def __init__(
        self,
        api_key: str,
        api_url: str = "https://api.mistral.ai/v1/ocr",
        model: str = "mistral-ocr-latest",
        timeout: int = 180,
        max_retries: int = 3,
        chunk_size: int = MAX_CHUNK_PAGES,
        storage: Optional[StorageService] = None,
        signed_url_ttl: int = 3600,
        max_parse_attempts: int = 2,
        client: Optional[BaseLLMClient] = None,
    ):
        if not 1 <= chunk_size <= MAX_CHUNK_PAGES:
            raise ValueError(f"chunk_size must be between 1 and {MAX_CHUNK_PAGES}")
        self.model = model
        self.chunk_size = chunk_size
        self.storage = storage
        self.signed_url_ttl = signed_url_ttl
        self.max_parse_attempts = max_parse_attempts
        self.client = client or BaseLLMClient(
            api_key=api_key,
            base_url=api_url,
            timeout=timeout,
            max_retries=max_retries,
        )

        LOGGER.info(
            "Initialized Mistral annotation service",
            extra={
                "model": self.model,
                "chunk_size": self.chunk_size,
                "storage": "supabase" if storage else "data-uri",
            },
        )

    @classmethod
    def from_settings(cls, settings) -> "MistralAnnotationService":
        storage = StorageService.from_settings(settings.supabase) if settings.storage_configured else None
        return cls(
            api_key=settings.mistral.api_key,
            api_url=settings.mistral.api_url,
            model=settings.mistral.model,
            timeout=settings.mistral.timeout,
            chunk_size=settings.annotation_chunk_size,
            storage=storage,
            signed_url_ttl=settings.supabase.signed_url_ttl,
            max_parse_attempts=settings.json_max_parse_attempts,
        )

    def build_payload(self, document_url: str, instruction: str) -> Dict[str, Any]:
        return {
            "model": self.model,
            "document": {"type": "document_url", "document_url": document_url},
            "document_annotation_format": {
                "type": "json_schema",
                "json_schema": {
                    "name": SCHEMA_NAME,
                    "description": instruction,
                    "strict": True,
                    "schema": ANNOTATION_DOCUMENT_SCHEMA,
                },
            },
        }

    async def extract(
        self,
        critical_pages: Sequence[CriticalPage],
        pages: Mapping[int, Page],
        prompt: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Extract one record per critical page.

        Raises:
            ExtractionError: If any chunk fails
        """
        if not critical_pages:
            raise ExtractionError("No critical pages to extract")

        try:
            images = [pages[c.page_number] for c in critical_pages]
        except KeyError as e:
            raise ExtractionError(f"No image for critical page {e.args[0]}", e) from e

        page_chunks = create_batches(list(critical_pages), self.chunk_size)
        image_chunks = create_batches(images, self.chunk_size)
        run_id = uuid.uuid4().hex
        LOGGER.info(
            f"{len(critical_pages)} critical pages -> {len(page_chunks)} chunk(s) of <= {self.chunk_size} pages",
            extra={"run_id": run_id},
        )

        try:
            chunk_records = await asyncio.gather(*(
                self._extract_chunk(index, chunk, chunk_images, prompt, run_id)
                for index, (chunk, chunk_images) in enumerate(zip(page_chunks, image_chunks))
            ))
        except ContractAIError as e:
            LOGGER.error(f"Document annotation failed: {e}")
            raise ExtractionError(f"Document annotation failed: {e}", e) from e
        except Exception as e:
            LOGGER.error(f"Document annotation failed with {type(e).__name__}: {e}")
            raise ExtractionError(
                f"Document annotation failed: unexpected {type(e).__name__}: {e}", e
            ) from e

        records =[record for chunk in chunk_records for record in chunk]
        try:
            return validate_extraction_array(records, len(critical_pages))
        except SchemaViolationError as e:
            raise ExtractionError(f"Document annotation failed: {e}", e) from e

    async def _document_url(self, chunk: AssembledChunk, path: str) -> str:
        if self.storage is None:
            encoded = base64.b64encode(chunk.pdf_bytes).decode("ascii")
            return f"data:application/pdf;base64,{encoded}"
        return await self.storage.upload_and_sign(
            chunk.pdf_bytes, path, expires_in=self.signed_url_ttl
        )

    async def _extract_chunk(
        self,
        index: int,
        critical_pages: List[CriticalPage],
        images: List[Page],
        prompt: Optional[str],
        run_id: str,
    ) -> List[Dict[str, Any]]:
        numbers = [c.page_number for c in critical_pages]
        LOGGER.info(f"Starting chunk {index + 1}: pages {', '.join(map(str, numbers))}")

        try:
            assembled = assemble_pdf_chunk(critical_pages, images, self.chunk_size)
        except (ValueError, OSError, FPDFException) as e:
            raise ExtractionError(f"Could not assemble chunk {index + 1}: {e}", e) from e

        document_url = await self._document_url(assembled, f"{run_id}/chunk-{index + 1}.pdf")
        instruction = prompt or build_annotation_prompt([c.label for c in critical_pages])
        response = await self.client.call_api(payload=self.build_payload(document_url, instruction))

        extractions = parse_document_annotation(response, self.max_parse_attempts)
        if len(extractions) != len(assembled.page_mapping):
            LOGGER.warning(
                f"Chunk {index + 1}: expected {len(assembled.page_mapping)} extractions, "
                f"got {len(extractions)}"
            )

        records = []
        for mapping, extraction in zip(assembled.page_mapping, extractions):
            record = dict(extraction) if isinstance(extraction, dict) else {}
            record["pageNumber"] = mapping.page_number
            record["pageLabel"] = mapping.label
            record["formCode"] = mapping.form_code or record.get("formCode") or "UNKNOWN"
            record["pageRole"] = mapping.page_role or record.get("pageRole") or "other"
            records.append(record)
        return records
