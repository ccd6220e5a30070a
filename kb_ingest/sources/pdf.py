"""
PDF Text Extraction
--------------------
Turns uploaded PDF bytes into one markdown-ish text blob:

    # PDF: handbook.pdf

    ## Page 1

    ...page text...

Page headings become paragraph breaks, so the chunker prefers to cut
between pages.  Pages without extractable text (scanned images) are skipped
and the extracted page range is reported back for the document metadata.
"""
from __future__ import annotations

import math
from io import BytesIO
from typing import Optional

from loguru import logger
from pydantic import BaseModel, Field
from pypdf import PdfReader
from pypdf.errors import PyPdfError

from kb_ingest.errors import ValidationError
from kb_ingest.schemas import PageRange
from kb_ingest.utils.helpers import clean_text

DEFAULT_MAX_SIZE_BYTES = 50 * 1024 * 1024


class ExtractedPage(BaseModel):
    page_num: int                 # 1-based
    text: str
    word_count: int


class PdfParseResult(BaseModel):
    text: str
    filename: str
    total_pages: int
    extracted_pages: list[ExtractedPage] = Field(default_factory=list)

    @property
    def extracted_page_range(self) -> Optional[PageRange]:
        if not self.extracted_pages:
            return None
        numbers = [p.page_num for p in self.extracted_pages]
        return PageRange(start=min(numbers), end=max(numbers))


def format_file_size(num_bytes: int) -> str:
    if num_bytes <= 0:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB"]
    i = min(int(math.log(num_bytes, 1024)), len(units) - 1)
    return f"{round(num_bytes / 1024 ** i, 2):g} {units[i]}"


def validate_pdf_meta(
    filename: Optional[str] = None,
    size_bytes: Optional[int] = None,
    content_type: Optional[str] = None,
    max_size_bytes: int = DEFAULT_MAX_SIZE_BYTES,
) -> None:
    """Reject oversized or non-PDF uploads before any parsing happens."""
    if size_bytes is not None and size_bytes > max_size_bytes:
        raise ValidationError(
            f"PDF file too large ({format_file_size(size_bytes)}). "
            f"Maximum allowed: {format_file_size(max_size_bytes)}"
        )
    if content_type and "pdf" not in content_type.lower():
        raise ValidationError("Invalid file type. Please upload a PDF file.")
    if filename and not filename.lower().endswith(".pdf"):
        raise ValidationError("Invalid file extension. Please upload a PDF file.")


def parse_pdf_bytes(data: bytes, filename: str) -> PdfParseResult:
    """Extract text page by page with pypdf."""
    try:
        reader = PdfReader(BytesIO(data))
        raw_pages = [page.extract_text() or "" for page in reader.pages]
    except (PyPdfError, ValueError) as exc:
        raise ValidationError(f'Failed to parse PDF "{filename}": {exc}') from exc

    extracted: list[ExtractedPage] = []
    for num, page_text in enumerate(raw_pages, start=1):
        trimmed = clean_text(page_text)
        if trimmed:
            extracted.append(
                ExtractedPage(page_num=num, text=trimmed, word_count=len(trimmed.split()))
            )

    parts = [f"# PDF: {filename}"]
    for page in extracted:
        parts.append(f"## Page {page.page_num}\n\n{page.text}")

    logger.debug(f"[PDF] {filename}: {len(extracted)}/{len(raw_pages)} pages with text")
    return PdfParseResult(
        text="\n\n".join(parts).strip(),
        filename=filename,
        total_pages=len(raw_pages),
        extracted_pages=extracted,
    )
