"""Document parsing: PyMuPDF page-by-page text with page offset map, or plain UTF-8 text."""

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

import fitz  # PyMuPDF

from .exceptions import ParseError

logger = logging.getLogger(__name__)

PDF_CONTENT_TYPE = "application/pdf"

# (page_number, start_offset, end_offset_exclusive), page_number is 1-based
PageOffset = Tuple[int, int, int]


@dataclass
class PagedText:
    """Full document text plus, for PDFs, where each page sits in it."""
    full_text: str
    page_offsets: Optional[List[PageOffset]] = None

    @property
    def is_paginated(self) -> bool:
        return self.page_offsets is not None

    def page_range_for(self, chunk_start: int, chunk_end: int) -> Optional[Tuple[int, int]]:
        """
        Pages touched by the span [chunk_start, chunk_end).

        Returns:
            (page_start, page_end), or None if no page overlaps the span
        """
        if not self.page_offsets:
            return None

        page_start = None
        page_end = None
        for page, start, end in self.page_offsets:
            if end <= chunk_start:
                continue  # page before the chunk
            if start >= chunk_end:
                break  # page after the chunk
            if page_start is None:
                page_start = page
            page_end = page

        if page_start is None:
            return None
        return page_start, page_end


def is_pdf(filename: str, content_type: Optional[str] = None) -> bool:
    return content_type == PDF_CONTENT_TYPE or filename.lower().endswith(".pdf")


def parse_pdf(data: bytes) -> PagedText:
    """Extract text page by page and record each page's offset range."""
    try:
        doc = fitz.open(stream=data, filetype="pdf")
    except Exception as e:
        raise ParseError(f"Cannot open PDF: {e}") from e

    try:
        logger.debug(f"PDF has {doc.page_count} pages")
        parts: List[str] = []
        offsets: List[PageOffset] = []
        length = 0

        for page_num in range(doc.page_count):
            try:
                page_text = doc[page_num].get_text()
            except Exception as e:
                raise ParseError(f"Cannot extract text from page {page_num + 1}: {e}") from e
            start = length
            parts.append(page_text)
            length += len(page_text)
            offsets.append((page_num + 1, start, length))

        return PagedText("".join(parts), offsets)

    finally:
        doc.close()


def decode_text(data: bytes) -> PagedText:
    """Decode a plain text document; there is no page map."""
    try:
        return PagedText(data.decode("utf-8-sig"))
    except UnicodeDecodeError as e:
        raise ParseError(f"Document is not valid UTF-8 text: {e}") from e


def parse_document(filename: str, data: bytes, content_type: Optional[str] = None) -> PagedText:
    """
    Parse raw document bytes into text.

    Args:
        filename: Original filename, used to detect PDFs
        data: Raw bytes
        content_type: Optional MIME type

    Returns:
        PagedText with page offsets for PDFs, without for text

    Raises:
        ParseError: Corrupt PDF, undecodable text, or no extractable text
    """
    if is_pdf(filename, content_type):
        paged = parse_pdf(data)
    else:
        paged = decode_text(data)

    if not paged.full_text.strip():
        # No text layer (scanned PDF) or whitespace-only file; OCR is not attempted
        raise ParseError(f"No extractable text in {filename}")

    logger.info(
        f"Parsed {filename}: {len(paged.full_text)} characters, "
        f"{len(paged.page_offsets) if paged.page_offsets else 0} pages"
    )
    return paged
