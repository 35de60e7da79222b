"""Per-chunk metadata enrichment: section path, per-section index, page range, preview."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .exceptions import CollaboratorError
from .models import ChunkMetadata
from .parse import PagedText
from .sections import SectionBoundary, build_path, hierarchy_at

PREVIEW_LENGTH = 150
ELLIPSIS = "..."


@dataclass
class EnrichedChunk:
    """A chunk with its catalog metadata and the flat metadata stored alongside its vector."""
    text: str
    offset: int
    metadata: ChunkMetadata
    store_metadata: Dict[str, Any] = field(default_factory=dict)


def make_preview(text: str) -> str:
    if len(text) > PREVIEW_LENGTH:
        return text[:PREVIEW_LENGTH] + ELLIPSIS
    return text


def locate_chunk(full_text: str, chunk: str, cursor: int) -> int:
    """
    Offset of a chunk in the source text.

    Searches from the cursor first so repeated passages resolve to the
    occurrence the splitter actually emitted; falls back to the first
    occurrence anywhere.

    Raises:
        CollaboratorError: The chunk is not a substring of the source text
    """
    offset = full_text.find(chunk, cursor)
    if offset < 0:
        offset = full_text.find(chunk)
    if offset < 0:
        raise CollaboratorError(
            "Splitter returned a chunk that is not a verbatim substring of the document",
            details={"chunk_preview": make_preview(chunk)},
        )
    return offset


def enrich_chunks(
    chunks: List[str],
    full_text: str,
    boundaries: List[SectionBoundary],
    paged_text: Optional[PagedText] = None,
    legacy: bool = False,
) -> List[EnrichedChunk]:
    """
    Compute section and page attribution for every chunk, in input order.

    Args:
        chunks: Ordered splitter output, each a verbatim substring of full_text
        full_text: Source text the chunks were cut from
        boundaries: Section boundaries detected on full_text
        paged_text: Page map for paginated sources, None for plain text
        legacy: Use the legacy backward-scan hierarchy resolution

    Returns:
        One EnrichedChunk per input chunk
    """
    enriched = []
    section_counter: Dict[str, int] = {}
    cursor = 0

    for chunk in chunks:
        offset = locate_chunk(full_text, chunk, cursor)
        cursor = offset + 1

        l1, l2, l3 = hierarchy_at(offset, boundaries, legacy=legacy)
        section_path = build_path(l1, l2, l3)
        deepest = [title for title in (l1, l2, l3) if title is not None]
        section_level = len(deepest)
        section_title = deepest[-1] if deepest else ""

        index = section_counter.get(section_path, 0)
        section_counter[section_path] = index + 1

        page_start = page_end = None
        if paged_text is not None and paged_text.is_paginated:
            page_range = paged_text.page_range_for(offset, offset + len(chunk))
            if page_range:
                page_start, page_end = page_range

        metadata = ChunkMetadata(
            index=index,
            section_l1=l1,
            section_l2=l2,
            section_l3=l3,
            section_title=section_title,
            section_path=section_path,
            section_level=section_level,
            page_start=page_start,
            page_end=page_end,
            preview=make_preview(chunk),
        )

        store_metadata: Dict[str, Any] = {
            "section_path": section_path,
            "section_title": section_title,
            "section_level": section_level,
            "chunk_index": index,
        }
        if l1 is not None:
            store_metadata["section_l1"] = l1
        if l2 is not None:
            store_metadata["section_l2"] = l2
        if l3 is not None:
            store_metadata["section_l3"] = l3
        if page_start is not None:
            store_metadata["page_start"] = page_start
            store_metadata["page_end"] = page_end

        enriched.append(EnrichedChunk(chunk, offset, metadata, store_metadata))

    return enriched
