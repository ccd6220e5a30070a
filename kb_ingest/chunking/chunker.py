"""
Knowledge-Base Document Chunker
--------------------------------
Splits a document into overlapping, size-bounded chunks without severing
meaning mid-thought.  Each window of `target_chunk_size` characters is cut at
the best boundary found by searching backward from the window end:

  1. PARAGRAPH  -- a blank line, if one sits within the lookback distance
  2. SENTENCE   -- `.`, `!` or `?` (plus an optional closing quote/bracket)
                   followed by whitespace, within the lookback distance
  3. WORD       -- the last whitespace anywhere in the window
  4. HARD CUT   -- exactly `target_chunk_size` characters

After each cut the next window backs up by the overlap amount so the tail of
one chunk is repeated at the head of the next; retrieval then keeps context
across the seam.  The backed-up start snaps forward to a word start.  A run
without any whitespace has no word start to snap to, so hard-cut chunks are
laid end to end.

Every boundary must lie beyond `offset + overlap`, which guarantees forward
progress: the loop always terminates and never yields an empty chunk.
Chunking is pure -- no clock, no randomness, no I/O.
"""
from __future__ import annotations

import re

from loguru import logger

from kb_ingest.chunking.schemas import Chunk
from kb_ingest.errors import ValidationError


# ── Constants ─────────────────────────────────────────────────────────────────

OVERLAP_RATIO = 0.10      # Fraction of the target size repeated across a seam
LOOKBACK_RATIO = 0.5      # How far back (fraction of target) paragraph/sentence breaks may sit

_PARAGRAPH_BREAK = re.compile(r"\n[ \t]*\n")
_SENTENCE_END = re.compile(r"[.!?][\"'\)\]]?(?=\s)")


class DocumentChunker:
    """
    Paragraph/sentence-aware splitter with a fixed overlap.

    Usage:
        chunker = DocumentChunker()
        chunks = chunker.chunk_document(text, target_chunk_size=1000)
    """

    def __init__(
        self,
        overlap_ratio: float = OVERLAP_RATIO,
        lookback_ratio: float = LOOKBACK_RATIO,
    ) -> None:
        if not 0 <= overlap_ratio < 1:
            raise ValidationError(f"overlap_ratio must be in [0, 1), got {overlap_ratio}")
        if not 0 < lookback_ratio <= 1:
            raise ValidationError(f"lookback_ratio must be in (0, 1], got {lookback_ratio}")
        self.overlap_ratio = overlap_ratio
        self.lookback_ratio = lookback_ratio

    @classmethod
    def from_config(cls, config: dict) -> "DocumentChunker":
        return cls(
            overlap_ratio=config.get("overlap_ratio", OVERLAP_RATIO),
            lookback_ratio=config.get("lookback_ratio", LOOKBACK_RATIO),
        )

    def overlap_for(self, target_chunk_size: int) -> int:
        """Overlap in characters; always strictly smaller than the target."""
        return min(round(target_chunk_size * self.overlap_ratio), target_chunk_size - 1)

    def chunk_document(self, text: str, target_chunk_size: int) -> list[Chunk]:
        """
        Split `text` into chunks of at most `target_chunk_size` characters.

        Returns:
            Ordered chunks with contiguous chunk_index values and a shared
            chunk_total.  Empty or whitespace-only text yields [].
        """
        if target_chunk_size < 1:
            raise ValidationError(f"target_chunk_size must be >= 1, got {target_chunk_size}")

        start = len(text) - len(text.lstrip())
        stop = len(text.rstrip())
        if start >= stop:
            return []

        overlap = self.overlap_for(target_chunk_size)
        lookback = max(1, int(target_chunk_size * self.lookback_ratio))
        spans: list[tuple[int, int]] = []

        while stop - start > target_chunk_size:
            boundary = self._find_boundary(text, start, start + target_chunk_size, overlap, lookback)
            spans.append((start, boundary))
            start = self._next_start(text, boundary, overlap)
            while text[start].isspace():
                start += 1
        spans.append((start, stop))

        total = len(spans)
        chunks = [
            Chunk(
                text=text[s:e].strip(),
                chunk_index=i,
                chunk_total=total,
                original_size=e - s,
                start_offset=s,
                end_offset=e,
            )
            for i, (s, e) in enumerate(spans)
        ]
        logger.debug(
            f"[Chunker] {len(text):,} chars | target={target_chunk_size} "
            f"overlap={overlap} -> {total} chunk(s)"
        )
        return chunks

    # --- Boundary search ------------------------------------------------------

    def _find_boundary(self, text: str, start: int, end: int, overlap: int, lookback: int) -> int:
        """Best cut position in (start + overlap, end]."""
        progress_floor = start + overlap + 1
        semantic_floor = max(end - lookback, progress_floor)

        paragraph = _last_match_end(_PARAGRAPH_BREAK, text, start, end, semantic_floor)
        if paragraph is not None:
            return paragraph

        # endpos=end+1 lets the lookahead see the character right after the window
        sentence = _last_match_end(_SENTENCE_END, text, start, end + 1, semantic_floor)
        if sentence is not None:
            return sentence

        for pos in range(end, progress_floor - 1, -1):
            if text[pos].isspace():
                return pos

        return end

    @staticmethod
    def _next_start(text: str, boundary: int, overlap: int) -> int:
        """Back up by `overlap`, then snap forward to the first word start."""
        if overlap <= 0:
            return boundary
        pos = boundary - overlap
        if pos > 0 and not text[pos - 1].isspace():
            while pos < boundary and not text[pos].isspace():
                pos += 1
        while pos < boundary and text[pos].isspace():
            pos += 1
        return pos


def _last_match_end(pattern: re.Pattern[str], text: str, pos: int, endpos: int, floor: int) -> int | None:
    best = None
    for match in pattern.finditer(text, pos, endpos):
        if match.end() >= floor:
            best = match.end()
    return best


_DEFAULT_CHUNKER = DocumentChunker()


def chunk_document(text: str, target_chunk_size: int) -> list[Chunk]:
    """Chunk `text` with the default overlap and lookback settings."""
    return _DEFAULT_CHUNKER.chunk_document(text, target_chunk_size)
