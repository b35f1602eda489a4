"""Assembles page images into Letter-size PDF chunks for document annotation."""

from dataclasses import dataclass, field
from io import BytesIO
from typing import List, Optional, Sequence

from fpdf import FPDF

from contract_ai.models.page_models import CriticalPage, Page
from contract_ai.utils.logging import get_logger

LOGGER = get_logger(__name__)

# US Letter in points
LETTER_WIDTH = 612
LETTER_HEIGHT = 792

MAX_CHUNK_PAGES = 8


@dataclass
class ChunkPage:
    chunk_index: int
    page_number: int
    label: str
    page_role: Optional[str]
    form_code: Optional[str]


@dataclass
class AssembledChunk:
    pdf_bytes: bytes
    page_mapping: List[ChunkPage] = field(default_factory=list)


def assemble_pdf_chunk(
    critical_pages: Sequence[CriticalPage],
    images: Sequence[Page],
    max_pages: int = MAX_CHUNK_PAGES,
) -> AssembledChunk:
    """Build one multi-page PDF, each image scaled to fit and centred on its page.

    Args:
        critical_pages: Pages of this chunk, in order
        images: Matching page images, same order
        max_pages: Upper bound on pages per chunk

    Raises:
        ValueError: If the chunk is empty, too large, or mismatched
    """
    if not critical_pages:
        raise ValueError("Empty chunk")
    if len(critical_pages) > max_pages:
        raise ValueError(f"Chunk too large: {len(critical_pages)} pages (max {max_pages})")
    if len(critical_pages) != len(images):
        raise ValueError("Each critical page needs exactly one image")

    pdf = FPDF(unit="pt", format="letter")
    pdf.set_auto_page_break(auto=False)
    pdf.set_margins(0, 0, 0)

    mapping: List[ChunkPage] = []
    for index, (critical, page) in enumerate(zip(critical_pages, images)):
        pdf.add_page()
        pdf.image(
            BytesIO(page.image),
            x=0,
            y=0,
            w=LETTER_WIDTH,
            h=LETTER_HEIGHT,
            keep_aspect_ratio=True,
        )
        mapping.append(ChunkPage(
            chunk_index=index,
            page_number=critical.page_number,
            label=critical.label,
            page_role=critical.role.value if critical.role else None,
            form_code=critical.form_code,
        ))

    buffer = BytesIO()
    pdf.output(buffer)
    pdf_bytes = buffer.getvalue()

    LOGGER.debug(
        f"Assembled {len(mapping)}-page PDF chunk",
        extra={"pages": [m.page_number for m in mapping], "size_bytes": len(pdf_bytes)},
    )
    return AssembledChunk(pdf_bytes=pdf_bytes, page_mapping=mapping)
