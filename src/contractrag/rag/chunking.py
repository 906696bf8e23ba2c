"""Sliding-window document chunking."""

from dataclasses import dataclass
from typing import Iterator

from contractrag.exceptions import ConfigurationError

from .base import BaseChunker
from .document import Chunk, Document

DEFAULT_TARGET_SIZE = 1000
DEFAULT_OVERLAP = 200


@dataclass(frozen=True)
class TextSpan:
    """A chunk-sized slice of a source text with its offsets."""

    text: str
    start: int
    end: int
    index: int


class SpanSequence:
    """Lazy, restartable sequence of overlapping windows over a text.

    Every iteration recomputes the windows from scratch, so the sequence
    can be walked any number of times and always yields the same spans.
    """

    def __init__(self, text: str, target_size: int, overlap: int):
        validate_window(target_size, overlap)
        self.text = text
        self.target_size = target_size
        self.overlap = overlap

    @property
    def step(self) -> int:
        return self.target_size - self.overlap

    def __iter__(self) -> Iterator[TextSpan]:
        text = self.text
        length = len(text)

        if length <= self.target_size:
            if text.strip():
                yield TextSpan(text=text, start=0, end=length, index=0)
            return

        index = 0
        start = 0
        while start < length:
            end = min(start + self.target_size, length)
            window = text[start:end]

            # Whitespace-only windows carry nothing worth embedding
            if window.strip():
                yield TextSpan(text=window, start=start, end=end, index=index)
                index += 1

            start += self.step

    def __repr__(self) -> str:
        return (
            f"SpanSequence(length={len(self.text)}, "
            f"target_size={self.target_size}, overlap={self.overlap})"
        )


def validate_window(target_size: int, overlap: int) -> None:
    """Reject window geometry that would never advance or drop text."""
    if target_size <= 0:
        raise ConfigurationError(f"target_size must be positive, got {target_size}")
    if overlap < 0:
        raise ConfigurationError(f"overlap must not be negative, got {overlap}")
    if overlap >= target_size:
        raise ConfigurationError(
            f"overlap ({overlap}) must be less than target_size ({target_size})"
        )


def chunk_text(
    text: str,
    target_size: int = DEFAULT_TARGET_SIZE,
    overlap: int = DEFAULT_OVERLAP,
) -> SpanSequence:
    """Split text into overlapping fixed-size character windows.

    Window ``i`` starts at ``i * (target_size - overlap)`` and ends at
    ``start + target_size`` or the end of the text, whichever comes first.
    A text no longer than ``target_size`` comes back as one span.

    Args:
        text: Source text
        target_size: Window length in characters
        overlap: Characters shared by consecutive windows

    Returns:
        A lazy, restartable sequence of TextSpan

    Raises:
        ConfigurationError: If overlap >= target_size or either is invalid
    """
    return SpanSequence(text, target_size, overlap)


class FixedSizeChunker(BaseChunker):
    """Chunk documents into fixed-size pieces with overlap.

    Builds Chunk records from ``chunk_text`` spans, carrying the parent's
    domain tag and metadata.
    """

    def __init__(
        self,
        target_size: int = DEFAULT_TARGET_SIZE,
        overlap: int = DEFAULT_OVERLAP,
    ):
        """Initialize the fixed-size chunker.

        Args:
            target_size: Maximum characters per chunk
            overlap: Number of characters to overlap between chunks
        """
        validate_window(target_size, overlap)

        self.target_size = target_size
        self.overlap = overlap

    def chunk(self, document: Document) -> list[Chunk]:
        """Split document into fixed-size chunks."""
        spans = list(chunk_text(document.raw_text, self.target_size, self.overlap))
        total = len(spans)

        return [
            Chunk(
                id=f"{document.id}_chunk_{span.index}",
                document_id=document.id,
                text=span.text,
                sequence_index=span.index,
                char_start=span.start,
                char_end=span.end,
                domain_tag=document.domain_tag,
                metadata={
                    **document.metadata,
                    "title": document.title,
                    "chunk_number": span.index + 1,
                    "total_chunks": total,
                },
            )
            for span in spans
        ]
