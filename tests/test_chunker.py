# tests/test_chunker.py
import pytest

from pdf_rag.memory.chunker import chunk_text, estimate_tokens, split_for_token_limit


class TestEstimateTokens:
    """Four characters per token, rounded up."""

    def test_empty_text_is_zero(self):
        assert estimate_tokens("") == 0

    def test_rounds_up(self):
        assert estimate_tokens("abcd") == 1
        assert estimate_tokens("abcde") == 2

    def test_large_text(self):
        assert estimate_tokens("x" * 800_000) == 200_000


class TestChunkText:
    """Overlapping character windows used for embedding storage."""

    def test_exact_windows_without_overlap(self):
        """Three equal windows, nothing repeated."""
        assert chunk_text("AAAABBBBCCCC", size=4, overlap=0) == ["AAAA", "BBBB", "CCCC"]

    def test_overlap_repeats_tail_of_previous_window(self):
        chunks = chunk_text("abcdefghij", size=4, overlap=2)

        assert chunks == ["abcd", "cdef", "efgh", "ghij"]

    def test_stops_at_first_window_reaching_the_end(self):
        """No trailing window that only repeats overlap."""
        chunks = chunk_text("abcdefgh", size=6, overlap=2)

        assert chunks == ["abcdef", "efgh"]

    def test_text_shorter_than_window(self):
        assert chunk_text("short", size=100, overlap=10) == ["short"]

    def test_empty_text(self):
        assert chunk_text("", size=10, overlap=2) == []

    def test_windows_cover_text_without_gaps(self):
        text = "".join(chr(65 + i % 26) for i in range(10_000))
        size, overlap = 1200, 150

        chunks = chunk_text(text, size=size, overlap=overlap)

        step = size - overlap
        for i, chunk in enumerate(chunks):
            assert chunk == text[i * step:i * step + size]

        assert (len(chunks) - 1) * step + len(chunks[-1]) == len(text)

    def test_default_parameters(self):
        text = "x" * 30_000

        chunks = chunk_text(text)

        assert [len(c) for c in chunks] == [12_000, 12_000, 9_000]

    @pytest.mark.parametrize("size,overlap", [(4, 4), (4, 10), (0, 0), (-1, 0), (10, -1)])
    def test_invalid_parameters_rejected(self, size, overlap):
        with pytest.raises(ValueError):
            chunk_text("some text", size=size, overlap=overlap)


class TestSplitForTokenLimit:
    """Non-overlapping blocks sized to one completion request."""

    def test_budget_split(self):
        """200k estimated tokens with a 40k budget gives five blocks."""
        text = "y" * 800_000

        blocks = split_for_token_limit(text, 40_000)

        assert len(blocks) == 5
        assert all(len(b) == 160_000 for b in blocks)
        assert "".join(blocks) == text

    def test_last_block_holds_remainder(self):
        blocks = split_for_token_limit("z" * 10, 1)

        assert blocks == ["zzzz", "zzzz", "zz"]

    def test_invalid_budget(self):
        with pytest.raises(ValueError):
            split_for_token_limit("text", 0)
