"""Text splitting collaborator.

Contract required by the chunk enricher: every chunk returned by a splitter is
a verbatim substring of the input text, and successive chunks start at
non-decreasing offsets. Splitters must not normalise or rewrite chunk text.
"""

from abc import ABC, abstractmethod
from typing import List

from langchain_text_splitters import RecursiveCharacterTextSplitter

from .models import ChunkingParams


class Splitter(ABC):
    """Splits a document text into ordered chunks."""

    @abstractmethod
    def split(self, text: str) -> List[str]:
        ...


class RecursiveSplitter(Splitter):
    """Recursive character splitter (paragraph, line, word, character)."""

    def __init__(self, chunk_size: int, overlap: int) -> None:
        self.chunk_size = chunk_size
        self.overlap = overlap
        # keep_separator keeps merged chunks contiguous in the source text
        self._splitter = RecursiveCharacterTextSplitter(
            chunk_size=chunk_size,
            chunk_overlap=overlap,
            length_function=len,
            keep_separator=True,
            strip_whitespace=True,
        )

    @classmethod
    def from_params(cls, params: ChunkingParams) -> "RecursiveSplitter":
        return cls(params.chunk_size, params.overlap)

    def split(self, text: str) -> List[str]:
        return [chunk for chunk in self._splitter.split_text(text) if chunk]
