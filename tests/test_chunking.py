"""Tests for sliding-window chunking."""

import pytest

from contractrag.exceptions import ConfigurationError
from contractrag.rag import Document, DomainTag, FixedSizeChunker, chunk_text


def letters(length: int) -> str:
    return "".join(chr(97 + i % 26) for i in range(length))


class TestChunkText:
    """Tests for chunk_text."""

    def test_long_text_window_count(self):
        """Test 10,000 characters with 1000/200 windows gives 13 spans."""
        spans = list(chunk_text(letters(10_000), target_size=1000, overlap=200))

        assert len(spans) == 13
        assert (spans[0].start, spans[0].end) == (0, 1000)
        assert spans[1].start == 800
        assert spans[-1].end == 10_000

    def test_consecutive_windows_overlap(self):
        """Test consecutive windows share exactly the overlap."""
        spans = list(chunk_text(letters(3000), target_size=1000, overlap=200))

        for left, right in zip(spans, spans[1:]):
            assert left.text[-200:] == right.text[:200]

    def test_spans_cover_text(self):
        """Test every character falls inside some span."""
        text = letters(2500)
        spans = list(chunk_text(text, target_size=700, overlap=100))

        covered = set()
        for span in spans:
            assert text[span.start:span.end] == span.text
            covered.update(range(span.start, span.end))
        assert covered == set(range(len(text)))

    def test_short_text_single_span(self):
        """Test text shorter than the target comes back whole."""
        spans = list(chunk_text("Short clause.", target_size=1000, overlap=200))

        assert len(spans) == 1
        assert spans[0].text == "Short clause."
        assert spans[0].index == 0

    def test_empty_and_blank_text(self):
        """Test empty or whitespace-only text yields nothing."""
        assert list(chunk_text("")) == []
        assert list(chunk_text("   \n\t ")) == []

    def test_sequence_is_restartable(self):
        """Test iterating twice yields identical spans."""
        spans = chunk_text(letters(4000), target_size=1000, overlap=200)

        assert list(spans) == list(spans)

    @pytest.mark.parametrize("target_size,overlap", [(1000, 1000), (100, 200), (0, 0), (100, -1)])
    def test_invalid_geometry(self, target_size, overlap):
        """Test window geometry that cannot advance is rejected."""
        with pytest.raises(ConfigurationError):
            chunk_text("text", target_size=target_size, overlap=overlap)


class TestFixedSizeChunker:
    """Tests for FixedSizeChunker."""

    def test_chunk_document(self):
        """Test chunk records carry ids, offsets, domain and metadata."""
        doc = Document(
            id="far-28-106",
            title="FAR 28.106",
            domain_tag=DomainTag.REGULATORY,
            raw_text=letters(2000),
            metadata={"category": "indemnification"},
        )
        chunks = FixedSizeChunker(target_size=1000, overlap=200).chunk(doc)

        assert [c.id for c in chunks] == ["far-28-106_chunk_0", "far-28-106_chunk_1", "far-28-106_chunk_2"]
        assert [c.sequence_index for c in chunks] == [0, 1, 2]
        assert all(c.domain_tag == DomainTag.REGULATORY for c in chunks)
        assert all(c.document_id == "far-28-106" for c in chunks)
        assert chunks[0].metadata["title"] == "FAR 28.106"
        assert chunks[0].metadata["category"] == "indemnification"
        assert chunks[0].metadata["total_chunks"] == 3
        assert (chunks[1].char_start, chunks[1].char_end) == (800, 1800)

    def test_invalid_chunker(self):
        """Test the chunker validates its geometry up front."""
        with pytest.raises(ConfigurationError):
            FixedSizeChunker(target_size=200, overlap=200)
