"""Batch page classifier.

Splits the packet into fixed-size batches, classifies every batch with one
concurrent vision call, and reassembles a page-indexed classification array.
A failing batch only loses its own pages; the run fails only when every
batch fails.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence

from pydantic import ValidationError

from contract_ai.core.exceptions import ClassificationError, SchemaViolationError
from contract_ai.core.vision_client import VisionModel
from contract_ai.models.page_models import Page, PageClassification
from contract_ai.prompts.system_prompts import build_classifier_prompt
from contract_ai.utils.batching import create_batches
from contract_ai.utils.json_parser import parse_json_object
from contract_ai.utils.logging import get_logger

LOGGER = get_logger(__name__)

DEFAULT_BATCH_SIZE = 15


@dataclass
class BatchOutcome:
    """Result of one batch call: classifications, or the error that sank it."""

    index: int
    start_page: int
    end_page: int
    pages: List[Optional[PageClassification]] = field(default_factory=list)
    error: Optional[BaseException] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


@dataclass
class ClassificationRun:
    """Page-indexed classifications plus per-batch bookkeeping."""

    classifications: List[Optional[PageClassification]]
    batches: List[BatchOutcome]

    @property
    def failed_batches(self) -> List[BatchOutcome]:
        return [b for b in self.batches if not b.succeeded]


class BatchPageClassifier:
    """Classifies page images in concurrent, independently failing batches."""

    def __init__(
        self,
        vision_client: VisionModel,
        batch_size: int = DEFAULT_BATCH_SIZE,
        max_parse_attempts: int = 2,
    ):
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")
        self.vision_client = vision_client
        self.batch_size = batch_size
        self.max_parse_attempts = max_parse_attempts

    async def classify(self, pages: Sequence[Page]) -> ClassificationRun:
        """Classify every page of the packet.

        Args:
            pages: Ordered pages, 1-based and contiguous

        Returns:
            ClassificationRun whose ``classifications`` has one entry per page

        Raises:
            ClassificationError: If no batch produced usable output
        """
        if not pages:
            raise ClassificationError("No pages supplied for classification")

        total_pages = len(pages)
        batches = create_batches(list(pages), self.batch_size)

        LOGGER.info(
            f"Classifying {total_pages} pages in {len(batches)} batches of <= {self.batch_size}",
            extra={"total_pages": total_pages, "batches": len(batches)},
        )
        started = time.monotonic()

        # gather is awaited inside the caller's task, so cancelling that task
        # cancels every outstanding batch call
        results = await asyncio.gather(
            *(self._classify_batch(batch, index) for index, batch in enumerate(batches)),
            return_exceptions=True,
        )

        outcomes: List[BatchOutcome] = []
        for index, result in enumerate(results):
            if isinstance(result, BatchOutcome):
                outcomes.append(result)
                continue
            if isinstance(result, asyncio.CancelledError):
                raise result
            batch = batches[index]
            outcomes.append(BatchOutcome(
                index=index,
                start_page=batch[0].page_number,
                end_page=batch[-1].page_number,
                error=result,
            ))

        LOGGER.info(f"Classification sweep complete in {time.monotonic() - started:.1f}s")

        successful = [o for o in outcomes if o.succeeded]
        if not successful:
            raise ClassificationError(
                "No valid classification results from any batch",
                outcomes[0].error if outcomes else None,
            )

        classifications: List[Optional[PageClassification]] = [None] * total_pages
        for outcome in successful:
            for offset, entry in enumerate(outcome.pages):
                actual_page = outcome.start_page + offset
                if entry is not None and entry.pdf_page != actual_page:
                    LOGGER.warning(
                        f"Page mismatch: model said {entry.pdf_page}, correcting to {actual_page}"
                    )
                    entry = entry.model_copy(update={"pdf_page": actual_page})
                classifications[actual_page - 1] = entry

        failed = [o for o in outcomes if not o.succeeded]
        if failed:
            LOGGER.warning(
                f"{len(failed)}/{len(outcomes)} classification batches failed; "
                f"pages {', '.join(f'{o.start_page}-{o.end_page}' for o in failed)} left unclassified"
            )

        return ClassificationRun(classifications=classifications, batches=outcomes)

    async def _classify_batch(self, batch: List[Page], index: int) -> BatchOutcome:
        start, end = batch[0].page_number, batch[-1].page_number
        outcome = BatchOutcome(index=index, start_page=start, end_page=end)
        log_prefix = f"[batch {index + 1}] pages {start}-{end}"

        try:
            prompt = build_classifier_prompt(start, end, len(batch))
            raw = await self.vision_client.generate(prompt, batch)
            outcome.pages = self._parse_batch_response(raw, len(batch), log_prefix)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            LOGGER.error(f"{log_prefix} failed: {e}", extra={"batch": index + 1})
            outcome.error = e
            return outcome

        detected = sum(1 for p in outcome.pages if p is not None)
        LOGGER.info(f"{log_prefix} classified ({detected}/{len(batch)} pages with a form)")
        return outcome

    def _parse_batch_response(
        self, raw: str, expected: int, log_prefix: str
    ) -> List[Optional[PageClassification]]:
        payload = parse_json_object(raw, self.max_parse_attempts)

        entries = payload.get("pages")
        if not isinstance(entries, list):
            raise SchemaViolationError("Classifier response is missing the 'pages' array")
        if len(entries) != expected:
            raise SchemaViolationError(
                f"Classifier returned {len(entries)} entries for {expected} images"
            )

        return [self._parse_entry(entry, offset, log_prefix) for offset, entry in enumerate(entries)]

    @staticmethod
    def _parse_entry(entry: Any, offset: int, log_prefix: str) -> Optional[PageClassification]:
        if entry is None:
            return None
        if not isinstance(entry, dict):
            LOGGER.warning(f"{log_prefix} entry {offset + 1} is not an object, treating as no form")
            return None
        try:
            return PageClassification.model_validate(entry)
        except ValidationError as e:
            LOGGER.warning(
                f"{log_prefix} entry {offset + 1} failed validation, treating as no form: "
                f"{e.error_count()} error(s)"
            )
            return None
