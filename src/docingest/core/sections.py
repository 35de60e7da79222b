"""Structural heading detection (Capitolo / Art. / Comma and dotted numerals)."""

import re
from dataclasses import dataclass
from typing import List, Optional, Tuple

# Explicit, conservative patterns only: numbering and keywords, no guessing on
# generic upper-case lines.
_CAPITAL = "A-ZÀÈÉÌÒÙ"

L1_KEYWORD = re.compile(r"^\s*Capitolo\s+\d+", re.IGNORECASE)
L1_NUMBERED = re.compile(rf"^\s*\d+\.\s+[{_CAPITAL}]")

L2_KEYWORD = re.compile(r"^\s*(Art\.|Articolo|Sezione)\s+\d+", re.IGNORECASE)
L2_NUMBERED = re.compile(rf"^\s*\d+\.\d+\s+[{_CAPITAL}]")

L3_KEYWORD = re.compile(r"^\s*(Comma|c\.)\s+\d+", re.IGNORECASE)
L3_NUMBERED = re.compile(rf"^\s*\d+\.\d+\.\d+\s+[{_CAPITAL}]")

# Most specific first; the first matching level wins.
LEVEL_RULES = (
    (3, (L3_NUMBERED, L3_KEYWORD)),
    (2, (L2_NUMBERED, L2_KEYWORD)),
    (1, (L1_NUMBERED, L1_KEYWORD)),
)

PATH_SEPARATOR = " / "

Hierarchy = Tuple[Optional[str], Optional[str], Optional[str]]


@dataclass(frozen=True)
class SectionBoundary:
    """A detected heading: 0-based offset of its line, depth and title."""
    offset: int
    level: int
    title: str


def match_level(line: str) -> int:
    """Return the heading level of a line, or 0 if it is not a heading."""
    for level, patterns in LEVEL_RULES:
        if any(p.match(line) for p in patterns):
            return level
    return 0


def detect(text: str) -> List[SectionBoundary]:
    """
    Scan the text line by line and return detected headings.

    Args:
        text: Full document text

    Returns:
        Boundaries in ascending offset order, empty if no heading is found
    """
    boundaries = []
    offset = 0
    for line in text.split("\n"):
        trimmed = line.strip()
        if trimmed:
            level = match_level(line)
            if level > 0:
                boundaries.append(SectionBoundary(offset, level, trimmed))
        offset += len(line) + 1  # the '\n' consumed by split
    return boundaries


def count_sections(boundaries: List[SectionBoundary]) -> int:
    """Number of level-1 headings; deeper levels do not count."""
    return sum(1 for b in boundaries if b.level == 1)


def active_at(offset: int, boundaries: List[SectionBoundary]) -> Optional[SectionBoundary]:
    """Last heading at or before the offset, or None."""
    active = None
    for b in boundaries:
        if b.offset > offset:
            break
        active = b
    return active


def hierarchy_at(offset: int, boundaries: List[SectionBoundary], legacy: bool = False) -> Hierarchy:
    """
    Reconstruct the heading path (l1, l2, l3) active at a text offset.

    Boundaries up to the offset are replayed in order; a heading at level L
    replaces slot L and clears every deeper slot, so a new chapter never
    inherits the article of the previous one.

    Args:
        offset: Position in the source text
        boundaries: Output of detect()
        legacy: Reproduce the historical backward scan that fills each slot
            independently and never clears deeper slots. Only for matching
            datasets produced by that behaviour.
    """
    if legacy:
        return _legacy_hierarchy_at(offset, boundaries)

    slots: List[Optional[str]] = [None, None, None]
    for b in boundaries:
        if b.offset > offset:
            break
        idx = b.level - 1
        slots[idx] = b.title
        for deeper in range(idx + 1, 3):
            slots[deeper] = None
    return slots[0], slots[1], slots[2]


def _legacy_hierarchy_at(offset: int, boundaries: List[SectionBoundary]) -> Hierarchy:
    slots: List[Optional[str]] = [None, None, None]
    for b in reversed(boundaries):
        if b.offset > offset:
            continue
        idx = b.level - 1
        if slots[idx] is None:
            slots[idx] = b.title
        if all(slots):
            break
    return slots[0], slots[1], slots[2]


def build_path(l1: Optional[str], l2: Optional[str], l3: Optional[str]) -> str:
    return PATH_SEPARATOR.join(part for part in (l1, l2, l3) if part is not None)
