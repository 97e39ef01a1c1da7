"""Tests for document chunking."""

import pytest

from chatkb.rag.chunker import chunk_rows, chunk_text, split_for_extraction


def _assert_bounded(chunks, lines, max_size):
    for chunk in chunks:
        assert len(chunk.text) <= max_size or chunk.text in lines


class TestChunkText:
    """Tests for chunk_text."""

    def test_empty_input_returns_no_chunks(self) -> None:
        assert chunk_text("") == []

    def test_whitespace_input_returns_no_chunks(self) -> None:
        assert chunk_text("   \n\n\t  \n") == []

    def test_invalid_max_size_raises(self) -> None:
        with pytest.raises(ValueError):
            chunk_text("some text", max_size=0)

    def test_short_text_is_single_chunk(self) -> None:
        chunks = chunk_text("hello world", max_size=100)
        assert len(chunks) == 1
        assert chunks[0].text == "hello world"
        assert chunks[0].heading is None
        assert chunks[0].sequence_index == 0

    @pytest.mark.parametrize("max_size", [20, 50, 120])
    def test_chunks_respect_max_size(self, max_size: int) -> None:
        lines = [f"line number {i} " + "word " * (i % 7) for i in range(40)]
        text = "\n".join(lines)
        chunks = chunk_text(text, max_size=max_size)
        assert chunks
        _assert_bounded(chunks, [l.strip() for l in lines], max_size)

    def test_chunks_respect_max_size_with_overlap(self) -> None:
        lines = [f"entry {i} with some filler text" for i in range(30)]
        chunks = chunk_text("\n".join(lines), max_size=80, overlap=30)
        assert len(chunks) > 1
        _assert_bounded(chunks, lines, 80)

    def test_oversized_line_passes_through_whole(self) -> None:
        long_line = "x" * 120
        chunks = chunk_text(f"short\n{long_line}\nshort again", max_size=50)
        texts = [c.text for c in chunks]
        assert long_line in texts
        assert "short" in texts
        assert "short again" in texts

    def test_chunks_preserve_document_order(self) -> None:
        lines = [f"paragraph {i}" for i in range(10)]
        chunks = chunk_text("\n\n".join(lines), max_size=15)
        assert [c.text for c in chunks] == lines
        assert [c.sequence_index for c in chunks] == list(range(10))

    def test_splits_on_headings(self) -> None:
        text = "# Intro\nHello world\n## Details\nMore text here"
        chunks = chunk_text(text, max_size=100)
        assert [(c.heading, c.text) for c in chunks] == [
            ("Intro", "Hello world"),
            ("Details", "More text here"),
        ]

    def test_text_before_first_heading_has_no_heading(self) -> None:
        chunks = chunk_text("preamble\n# Section\nbody", max_size=100)
        assert [(c.heading, c.text) for c in chunks] == [
            (None, "preamble"),
            ("Section", "body"),
        ]

    def test_heading_without_body_is_dropped(self) -> None:
        chunks = chunk_text("# Empty\n# Full\ncontent", max_size=100)
        assert len(chunks) == 1
        assert chunks[0].heading == "Full"


class TestChunkRows:
    """Tests for row-aware chunking."""

    def test_rows_are_chunked_independently(self) -> None:
        chunks = chunk_rows(["first row", "", "third row"], max_size=100)
        assert [c.text for c in chunks] == ["first row", "third row"]
        assert [c.source_row_index for c in chunks] == [0, 2]
        assert [c.sequence_index for c in chunks] == [0, 1]

    def test_sequence_index_continues_across_rows(self) -> None:
        rows = ["a1\na2", "b1\nb2"]
        chunks = chunk_rows(rows, max_size=3)
        assert [c.sequence_index for c in chunks] == [0, 1, 2, 3]
        assert [c.source_row_index for c in chunks] == [0, 0, 1, 1]


class TestSplitForExtraction:
    """Tests for the extraction window splitter."""

    def test_empty_text(self) -> None:
        assert split_for_extraction("", 100) == []

    def test_windows_are_bounded(self) -> None:
        text = " ".join(f"word{i}" for i in range(500))
        windows = split_for_extraction(text, 200)
        assert len(windows) > 1
        assert all(len(w) <= 200 for w in windows)

    def test_short_text_is_one_window(self) -> None:
        assert split_for_extraction("short text", 8000) == ["short text"]
