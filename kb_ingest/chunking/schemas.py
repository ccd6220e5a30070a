"""
Chunk schema - the transient unit handed to the embedder.

Chunks are never persisted on their own: the ingestion orchestrator turns
each one into a KnowledgeDocument.  The offsets point back into the source
string so coverage of the original text can be checked.
"""
from __future__ import annotations

from pydantic import BaseModel, Field


class Chunk(BaseModel):
    """A single bounded slice of a larger document."""

    text: str                            # Trimmed slice content, never empty
    chunk_index: int = Field(ge=0)       # Position within the document
    chunk_total: int = Field(ge=1)       # Same value on every chunk of one run
    original_size: int = Field(ge=0)     # Slice length before trimming

    # Slice bounds in the source string: source[start_offset:end_offset]
    start_offset: int = Field(ge=0)
    end_offset: int = Field(ge=0)
