"""
Chunk Sizer
------------
Picks a target chunk size (characters) from the length of the full document.

Small chunks give precise retrieval but cost one embedding call each; large
chunks keep more context together.  Sizes therefore grow in steps with the
document so that PDFs and scraped sites produce a bounded number of chunks
instead of one per kilobyte:

    len < 2_000             -> 500   (MIN)
    2_000  <= len < 10_000  -> 1000  (DEFAULT)
    10_000 <= len < 50_000  -> 1500
    len >= 50_000           -> 2000  (MAX)

The result depends only on len(text), so the same document always gets the
same size.
"""
from __future__ import annotations

from kb_ingest.errors import ValidationError

MIN_CHUNK_SIZE = 500
DEFAULT_CHUNK_SIZE = 1000
LARGE_CHUNK_SIZE = 1500
MAX_CHUNK_SIZE = 2000

SMALL_DOCUMENT_THRESHOLD = 2_000
LARGE_DOCUMENT_THRESHOLD = 10_000
VERY_LARGE_DOCUMENT_THRESHOLD = 50_000


class ChunkSizer:
    """Length-tiered chunk size policy, clamped to [min_chunk_size, max_chunk_size]."""

    def __init__(
        self,
        min_chunk_size: int = MIN_CHUNK_SIZE,
        default_chunk_size: int = DEFAULT_CHUNK_SIZE,
        large_chunk_size: int = LARGE_CHUNK_SIZE,
        max_chunk_size: int = MAX_CHUNK_SIZE,
        small_document_threshold: int = SMALL_DOCUMENT_THRESHOLD,
        large_document_threshold: int = LARGE_DOCUMENT_THRESHOLD,
        very_large_document_threshold: int = VERY_LARGE_DOCUMENT_THRESHOLD,
    ) -> None:
        if min_chunk_size <= 0:
            raise ValidationError(f"min_chunk_size must be positive, got {min_chunk_size}")
        if not min_chunk_size <= default_chunk_size <= large_chunk_size <= max_chunk_size:
            raise ValidationError(
                "Chunk sizes must satisfy min <= default <= large <= max "
                f"(got {min_chunk_size}, {default_chunk_size}, {large_chunk_size}, {max_chunk_size})"
            )
        if not small_document_threshold <= large_document_threshold <= very_large_document_threshold:
            raise ValidationError("Document length thresholds must be non-decreasing")

        self.min_chunk_size = min_chunk_size
        self.default_chunk_size = default_chunk_size
        self.large_chunk_size = large_chunk_size
        self.max_chunk_size = max_chunk_size
        self.small_document_threshold = small_document_threshold
        self.large_document_threshold = large_document_threshold
        self.very_large_document_threshold = very_large_document_threshold

    @classmethod
    def from_config(cls, config: dict) -> "ChunkSizer":
        return cls(
            min_chunk_size=config.get("min_chunk_size", MIN_CHUNK_SIZE),
            default_chunk_size=config.get("default_chunk_size", DEFAULT_CHUNK_SIZE),
            large_chunk_size=config.get("large_chunk_size", LARGE_CHUNK_SIZE),
            max_chunk_size=config.get("max_chunk_size", MAX_CHUNK_SIZE),
            small_document_threshold=config.get("small_document_threshold", SMALL_DOCUMENT_THRESHOLD),
            large_document_threshold=config.get("large_document_threshold", LARGE_DOCUMENT_THRESHOLD),
            very_large_document_threshold=config.get(
                "very_large_document_threshold", VERY_LARGE_DOCUMENT_THRESHOLD
            ),
        )

    def size_for_length(self, length: int) -> int:
        if length < self.small_document_threshold:
            size = self.min_chunk_size
        elif length < self.large_document_threshold:
            size = self.default_chunk_size
        elif length < self.very_large_document_threshold:
            size = self.large_chunk_size
        else:
            size = self.max_chunk_size
        return max(self.min_chunk_size, min(size, self.max_chunk_size))

    def calculate(self, full_text: str) -> int:
        return self.size_for_length(len(full_text))


_DEFAULT_SIZER = ChunkSizer()


def calculate_optimal_chunk_size(full_text: str) -> int:
    """Target chunk size for `full_text` under the default policy."""
    return _DEFAULT_SIZER.calculate(full_text)
