"""
Core Pydantic schemas for the knowledge-base ingestion core.

Every stage shares these models: the orchestrator writes KnowledgeDocuments,
the query path appends UsageLogEntries, and the aggregator reads both back
into KBStats.
"""
from __future__ import annotations

import uuid
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


# --- Enumerations ------------------------------------------------------------

class SourceType(str, Enum):
    INLINE = "inline"      # Text pasted into the dashboard
    PDF = "pdf"            # Uploaded PDF, text extracted per page
    WEBSITE = "website"    # Scraped web page
    NOTION = "notion"      # Reserved; no extractor ships yet


# --- Source metadata (tagged union on source_type) ---------------------------

class _SourceMetadataBase(BaseModel):
    """Fields present on every chunk, whatever the source."""

    model_config = ConfigDict(extra="forbid")

    chunk_index: Optional[int] = None
    chunk_total: Optional[int] = None
    original_size_chars: Optional[int] = None
    processing_timestamp: int                 # Epoch ms, shared by all chunks of a run


class InlineSourceMetadata(_SourceMetadataBase):
    source_type: Literal["inline"] = "inline"
    title: Optional[str] = None


class PageRange(BaseModel):
    start: int
    end: int


class PdfSourceMetadata(_SourceMetadataBase):
    source_type: Literal["pdf"] = "pdf"
    filename: str
    file_size_bytes: Optional[int] = None
    total_pages: Optional[int] = None
    extracted_page_range: Optional[PageRange] = None


class WebsiteSourceMetadata(_SourceMetadataBase):
    source_type: Literal["website"] = "website"
    url: str
    domain: str
    scrape_timestamp: Optional[int] = None
    content_hash: Optional[str] = None
    is_dynamic_content: bool = False


class NotionSourceMetadata(_SourceMetadataBase):
    source_type: Literal["notion"] = "notion"
    page_id: Optional[str] = None


SourceMetadata = Annotated[
    Union[InlineSourceMetadata, PdfSourceMetadata, WebsiteSourceMetadata, NotionSourceMetadata],
    Field(discriminator="source_type"),
]

SOURCE_METADATA_ADAPTER: TypeAdapter[SourceMetadata] = TypeAdapter(SourceMetadata)


# --- Persisted records -------------------------------------------------------

class KnowledgeDocument(BaseModel):
    """
    One embedded chunk, owned by a tenant (user_id) and a bot.

    Created once per chunk at ingestion; afterwards only replaced wholesale
    (text + embedding) or deleted.
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str
    bot_id: str
    text: str
    embedding: list[float]
    source_type: Optional[SourceType] = None
    source_metadata: Optional[SourceMetadata] = None
    created_at: int = 0                       # Epoch ms


class UsageLogEntry(BaseModel):
    """
    One query that attempted retrieval.

    An empty cited_document_ids list marks a fallback / no-context answer.
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: int                            # Epoch ms
    bot_id: str
    conversation_id: str
    user_id: Optional[str] = None             # None for public widget visitors
    cited_document_ids: list[str] = Field(default_factory=list)
    similarities: list[float] = Field(default_factory=list)

    @property
    def is_successful(self) -> bool:
        return len(self.cited_document_ids) > 0


# --- Results -----------------------------------------------------------------

class IngestionResult(BaseModel):
    """Outcome of ingesting one source (text, PDF, or page)."""

    document_ids: list[str] = Field(default_factory=list)
    chunks_added: int = 0
    chunk_size: int = 0
    source_type: SourceType
    source_details: dict[str, Any] = Field(default_factory=dict)


class UrlError(BaseModel):
    url: str
    error: str


class BatchIngestionResult(BaseModel):
    """Outcome of a multi-URL ingestion; failures are per URL, not per batch."""

    added_document_ids: list[str] = Field(default_factory=list)
    errors: list[UrlError] = Field(default_factory=list)

    @property
    def total_documents_added(self) -> int:
        return len(self.added_document_ids)

    @property
    def success(self) -> bool:
        return len(self.added_document_ids) > 0


# --- Analytics ---------------------------------------------------------------

class DocumentUsage(BaseModel):
    document_id: str
    count: int
    last_used_at: int                         # Epoch ms, 0 when never cited


class KBStats(BaseModel):
    """Retrieval coverage and per-document usage over a rolling window."""

    total_documents: int = 0
    total_queries: int = 0
    successful_retrieval_queries: int = 0
    fallback_no_context_queries: int = 0
    retrieval_coverage_percent: int = 0
    per_document_usage: list[DocumentUsage] = Field(default_factory=list)
    unused_document_ids: list[str] = Field(default_factory=list)
    top_documents: list[DocumentUsage] = Field(default_factory=list)
    documents_used_last_period: int = 0
    total_retrievals: int = 0
    window_days: int = 7
