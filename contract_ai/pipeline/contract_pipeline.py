"""End-to-end contract extraction pipeline.

pages -> classify -> select critical pages -> per-page extraction -> merge
-> temporal resolution -> coercion & validation -> (second turn) -> result.

Only a packet with no usable content raises. Everything else returns a term
set, flagged ``needsReview`` when the validator is not satisfied.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from contract_ai.config import Settings, get_settings
from contract_ai.core.exceptions import (
    ClassificationError,
    ConfigurationError,
    ExtractionError,
    PipelineError,
)
from contract_ai.core.vision_client import VisionModel, create_vision_client_from_settings
from contract_ai.models.extraction_models import (
    CriticalPageRef,
    ExtractionDetails,
    ExtractionOutcome,
    SecondTurnReport,
    TransactionTerms,
    ValidationResult,
)
from contract_ai.models.page_models import Page, PageClassification
from contract_ai.services.annotation.mistral_annotation_service import MistralAnnotationService
from contract_ai.services.classification.batch_classifier import BatchPageClassifier
from contract_ai.services.classification.critical_page_selector import (
    extract_package_metadata,
    select_critical_pages,
    summarize_roles,
)
from contract_ai.services.classification.markdown_classifier import MarkdownPageClassifier
from contract_ai.services.extraction.merge_engine import MergeEngine
from contract_ai.services.extraction.page_extractor import PageExtractor, RecordExtractor
from contract_ai.services.extraction.second_turn import SecondTurnRunner
from contract_ai.services.extraction.temporal_resolution import apply_temporal_resolution
from contract_ai.services.extraction.type_coercion import to_transaction_terms
from contract_ai.services.extraction.validator import validate_terms
from contract_ai.utils.audit import AuditLog
from contract_ai.utils.logging import get_logger

LOGGER = get_logger(__name__)


@dataclass
class _Resolution:
    terms: TransactionTerms
    provenance: Dict[str, int]
    validation: ValidationResult


class ContractExtractionPipeline:
    """Orchestrates one extraction run over a packet of page images."""

    def __init__(
        self,
        classifier: BatchPageClassifier,
        extractor: RecordExtractor,
        max_second_turn_passes: int = 1,
        fallback_classifier: Optional[MarkdownPageClassifier] = None,
    ):
        self.classifier = classifier
        self.extractor = extractor
        self.second_turn = SecondTurnRunner(extractor)
        self.max_second_turn_passes = max(0, max_second_turn_passes)
        self.fallback_classifier = fallback_classifier or MarkdownPageClassifier()

    @classmethod
    def from_settings(
        cls,
        settings: Optional[Settings] = None,
        vision_client: Optional[VisionModel] = None,
    ) -> "ContractExtractionPipeline":
        """Wire the pipeline from configuration.

        Raises:
            ConfigurationError: If the selected backend is missing credentials
        """
        settings = settings or get_settings()
        vision_client = vision_client or create_vision_client_from_settings(settings.vision)

        classifier = BatchPageClassifier(
            vision_client,
            batch_size=settings.classifier_batch_size,
            max_parse_attempts=settings.json_max_parse_attempts,
        )

        if settings.extraction_backend == "annotation":
            if not settings.mistral_api_key:
                raise ConfigurationError("MISTRAL_API_KEY is required for the annotation backend")
            extractor: RecordExtractor = MistralAnnotationService.from_settings(settings)
        else:
            extractor = PageExtractor(vision_client, max_parse_attempts=settings.json_max_parse_attempts)

        LOGGER.info(
            "Contract pipeline configured",
            extra={
                "backend": settings.extraction_backend,
                "batch_size": settings.classifier_batch_size,
                "second_turn_passes": settings.max_second_turn_passes,
            },
        )
        return cls(
            classifier,
            extractor,
            max_second_turn_passes=settings.max_second_turn_passes,
        )

    async def extract(
        self,
        pages: Sequence[Page],
        page_texts: Optional[Sequence[str]] = None,
    ) -> ExtractionOutcome:
        """Run the full pipeline on one packet.

        Args:
            pages: Page images, 1-based and contiguous
            page_texts: Optional OCR text per page, used only if every
                classification batch fails

        Returns:
            ExtractionOutcome with the final terms and run details

        Raises:
            ClassificationError: If no page could be classified
            PipelineError: If no critical page was found
            ExtractionError: If first-turn extraction fails
        """
        ordered = self._check_pages(pages)
        audit = AuditLog(logger=LOGGER)

        classifications = await self._classify(ordered, page_texts)
        LOGGER.info(f"Roles detected: {summarize_roles(classifications)}")

        metadata = extract_package_metadata(classifications)
        LOGGER.info(
            f"Package: {metadata.total_detected_pages} form page(s), "
            f"codes {', '.join(metadata.detected_form_codes) or 'none'}",
            extra={"has_multiple_forms": metadata.has_multiple_forms},
        )

        critical = select_critical_pages(classifications)
        if not critical:
            raise PipelineError("No critical pages found in the packet")

        page_map = {page.page_number: page for page in ordered}
        records = await self.extractor.extract(critical, page_map)
        resolution = self._resolve(records, audit)

        report = SecondTurnReport()
        while resolution.validation.needs_second_turn and report.passes < self.max_second_turn_passes:
            report.attempted = True
            report.passes += 1
            audit.info("second-turn", f"Pass {report.passes}: {'; '.join(resolution.validation.errors)}")
            try:
                retry = await self.second_turn.run(
                    critical,
                    page_map,
                    records,
                    resolution.validation.errors,
                    resolution.terms.to_wire(),
                )
            except ExtractionError as e:
                # Keep the last good result; it still needs review
                report.error = str(e)
                audit.warning("second-turn", f"Pass {report.passes} failed, keeping previous result: {e}")
                break

            report.succeeded = True
            for name in retry.problem_fields:
                if name not in report.problem_fields:
                    report.problem_fields.append(name)
            for name in retry.fixed_fields:
                if name not in report.fixed_fields:
                    report.fixed_fields.append(name)
            records = retry.page_extractions
            resolution = self._resolve(records, audit)

        details = ExtractionDetails(
            provenance=resolution.provenance,
            page_extractions=[r for r in records if isinstance(r, dict)],
            merge_log=audit.as_lines(),
            critical_pages=[
                CriticalPageRef(page_number=c.page_number, label=c.label) for c in critical
            ],
            package_metadata=metadata,
        )
        outcome = ExtractionOutcome(
            final_terms=resolution.terms,
            details=details,
            needs_review=resolution.validation.needs_review,
            validation=resolution.validation,
            second_turn=report,
        )

        LOGGER.info(
            "Extraction run complete",
            extra={
                "critical_pages": len(critical),
                "needs_review": outcome.needs_review,
                "second_turn_passes": report.passes,
            },
        )
        return outcome

    @staticmethod
    def _check_pages(pages: Sequence[Page]) -> List[Page]:
        if not pages:
            raise PipelineError("No pages supplied")
        ordered = sorted(pages, key=lambda page: page.page_number)
        expected = list(range(1, len(ordered) + 1))
        if [page.page_number for page in ordered] != expected:
            raise PipelineError("Page numbers must be 1-based and contiguous")
        return ordered

    async def _classify(
        self,
        pages: List[Page],
        page_texts: Optional[Sequence[str]],
    ) -> List[Optional[PageClassification]]:
        try:
            run = await self.classifier.classify(pages)
            return run.classifications
        except ClassificationError as e:
            if not page_texts or len(page_texts) != len(pages):
                raise
            LOGGER.warning(f"Vision classification failed, classifying from page text: {e}")

        classifications = self.fallback_classifier.classify_pages(page_texts)
        if not any(classifications):
            raise ClassificationError("No form detected in page text either")
        return classifications

    @staticmethod
    def _resolve(records: Sequence[Dict[str, Any]], audit: AuditLog) -> _Resolution:
        """Merge, resolve dates, coerce and validate one record array."""
        merged = MergeEngine(audit).merge(records)
        resolved, effective_page = apply_temporal_resolution(merged.terms, records, audit)

        provenance = dict(merged.provenance)
        if resolved.get("effectiveDate") and isinstance(effective_page, int):
            provenance["effectiveDate"] = effective_page

        terms = to_transaction_terms(resolved, audit)
        validation = validate_terms(terms, audit)
        return _Resolution(terms=terms, provenance=provenance, validation=validation)
