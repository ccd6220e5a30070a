"""
Knowledge Ingestion Orchestrator
---------------------------------
Turns one source into stored, embedded documents:

    raw text / PDF bytes / URL
        |
        v
    ChunkSizer         (target size from document length)
        |
        v
    DocumentChunker    (paragraph/sentence-aware, overlapping)
        |
        v
    for each chunk, in chunk order:
        embed(chunk.text) -> vector
        store.insert(document)      # one document per chunk

Chunks of one document are processed strictly sequentially, so the quota
check and `processing_timestamp` are consistent across the run.

Failure semantics: the first embedding or store error aborts the remaining
chunks and surfaces as UpstreamError.  Documents already inserted by the run
are NOT rolled back (the store has no multi-record transaction); the error's
`inserted_ids` lists them.

Multi-URL ingestion runs URLs in small concurrent batches and isolates
failures per URL, returning an error list alongside whatever succeeded.
"""
from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Optional

from loguru import logger
from pydantic import ValidationError as PydanticValidationError

from kb_ingest.chunking.chunker import DocumentChunker
from kb_ingest.chunking.schemas import Chunk
from kb_ingest.chunking.sizer import ChunkSizer
from kb_ingest.embedding.embedder import EmbeddingFunction
from kb_ingest.errors import (
    DocumentNotFoundError,
    KnowledgeBaseError,
    LimitExceededError,
    UpstreamError,
    ValidationError,
)
from kb_ingest.schemas import (
    SOURCE_METADATA_ADAPTER,
    BatchIngestionResult,
    IngestionResult,
    KnowledgeDocument,
    SourceType,
    UrlError,
)
from kb_ingest.sources.pdf import PdfParseResult, parse_pdf_bytes, validate_pdf_meta
from kb_ingest.sources.website import WebsiteParseResult, scrape_website, validate_website_url
from kb_ingest.storage.base import DocumentStore
from kb_ingest.utils.helpers import content_hash, now_ms

PdfParser = Callable[[bytes, str], PdfParseResult]
Scraper = Callable[[str], Awaitable[WebsiteParseResult]]

MAX_DOCUMENTS_PER_BOT = 1000
WEBSITE_BATCH_SIZE = 3
MAX_URLS_PER_BATCH = 50


class KnowledgeIngestor:
    """
    Chunks, embeds and stores knowledge for one tenant's bot.

    Usage:
        ingestor = KnowledgeIngestor(store, embedder, cfg["ingestion"], chunking_config=cfg["chunking"])
        ids = await ingestor.ingest("user_1", "bot_1", text, SourceType.INLINE)
    """

    def __init__(
        self,
        store: DocumentStore,
        embedder: EmbeddingFunction,
        config: dict | None = None,
        chunking_config: dict | None = None,
        pdf_parser: Optional[PdfParser] = None,
        scraper: Optional[Scraper] = None,
        clock: Optional[Callable[[], int]] = None,
    ) -> None:
        config = config or {}
        self.store = store
        self.embedder = embedder
        self.sizer = ChunkSizer.from_config(chunking_config or {})
        self.chunker = DocumentChunker.from_config(chunking_config or {})
        self.max_documents_per_bot: int = config.get("max_documents_per_bot", MAX_DOCUMENTS_PER_BOT)
        self.website_batch_size: int = config.get("website_batch_size", WEBSITE_BATCH_SIZE)
        self.max_urls_per_batch: int = config.get("max_urls_per_batch", MAX_URLS_PER_BATCH)
        self.pdf_max_size_bytes: int = config.get("pdf_max_size_bytes", 50 * 1024 * 1024)
        scrape_timeout: float = config.get("scrape_timeout_seconds", 15.0)

        self.pdf_parser: PdfParser = pdf_parser or parse_pdf_bytes
        self.scraper: Scraper = scraper or (lambda url: scrape_website(url, timeout=scrape_timeout))
        self.clock = clock or now_ms

    # --- Text ingestion -------------------------------------------------------

    async def ingest(
        self,
        user_id: str,
        bot_id: str,
        full_text: str,
        source_type: SourceType | str,
        metadata: dict[str, Any] | None = None,
        processing_timestamp: Optional[int] = None,
    ) -> list[str]:
        """
        Chunk, embed and store `full_text`.

        Args:
            metadata: source-specific fields (filename, url, ...) merged into
                every chunk's source_metadata.
            processing_timestamp: epoch ms shared by every chunk; defaults to now.
                Batch callers pass one value for all of their sources.

        Returns:
            Ids of the created documents, in chunk order.

        Raises:
            ValidationError: text is empty or metadata does not fit the source type.
            LimitExceededError: the bot already holds the maximum document count.
            UpstreamError: embedding or store failure (partial results kept).
        """
        source_type = _coerce_source_type(source_type)
        if not full_text.strip():
            raise ValidationError("Document text cannot be empty")

        self._check_quota(user_id, bot_id)

        processing_timestamp = processing_timestamp or self.clock()
        chunk_size = self.sizer.calculate(full_text)
        chunks = self.chunker.chunk_document(full_text, chunk_size)
        logger.info(
            f"[Ingestor] bot={bot_id} | {source_type.value} | {len(full_text):,} chars "
            f"| chunk_size={chunk_size} -> {len(chunks)} chunk(s)"
        )

        inserted: list[str] = []
        # One snapshot write per run, including runs that fail part-way
        with self.store.batch():
            for chunk in chunks:
                document = self._build_document(
                    user_id, bot_id, chunk, source_type, metadata or {}, processing_timestamp
                )
                try:
                    document.embedding = await self.embedder.embed(chunk.text)
                except KnowledgeBaseError as exc:
                    if isinstance(exc, UpstreamError) and not exc.inserted_ids:
                        exc.inserted_ids = list(inserted)
                    raise
                except Exception as exc:
                    logger.error(
                        f"[Ingestor] Embedding failed on chunk {chunk.chunk_index + 1}/{chunk.chunk_total} "
                        f"({len(inserted)} already stored): {exc}"
                    )
                    raise UpstreamError(
                        f"Embedding failed for chunk {chunk.chunk_index + 1} of {chunk.chunk_total}: {exc}",
                        cause=exc,
                        inserted_ids=inserted,
                    ) from exc

                try:
                    inserted.append(self.store.insert(document.model_dump(mode="json")))
                except Exception as exc:
                    logger.error(f"[Ingestor] Store insert failed on chunk {chunk.chunk_index + 1}: {exc}")
                    raise UpstreamError(
                        f"Storing chunk {chunk.chunk_index + 1} of {chunk.chunk_total} failed: {exc}",
                        cause=exc,
                        inserted_ids=inserted,
                    ) from exc

        logger.info(f"[Ingestor] bot={bot_id} | stored {len(inserted)} document(s)")
        return inserted

    def _check_quota(self, user_id: str, bot_id: str) -> None:
        current = len(self.store.list_by_bot_and_user(bot_id, user_id))
        if current >= self.max_documents_per_bot:
            raise LimitExceededError(
                f"Knowledge base is full: {current} of {self.max_documents_per_bot} documents used",
                limit=self.max_documents_per_bot,
                current=current,
            )

    def _build_document(
        self,
        user_id: str,
        bot_id: str,
        chunk: Chunk,
        source_type: SourceType,
        metadata: dict[str, Any],
        processing_timestamp: int,
    ) -> KnowledgeDocument:
        merged = {
            **metadata,
            "source_type": source_type.value,
            "chunk_index": chunk.chunk_index,
            "chunk_total": chunk.chunk_total,
            "original_size_chars": chunk.original_size,
            "processing_timestamp": processing_timestamp,
        }
        try:
            source_metadata = SOURCE_METADATA_ADAPTER.validate_python(merged)
        except PydanticValidationError as exc:
            raise ValidationError(
                f"Invalid metadata for source type '{source_type.value}'",
                details=str(exc),
            ) from exc

        return KnowledgeDocument(
            user_id=user_id,
            bot_id=bot_id,
            text=chunk.text,
            embedding=[],
            source_type=source_type,
            source_metadata=source_metadata,
            created_at=processing_timestamp,
        )

    # --- PDF ------------------------------------------------------------------

    async def ingest_pdf(
        self,
        user_id: str,
        bot_id: str,
        file_bytes: bytes,
        filename: str,
        content_type: Optional[str] = None,
    ) -> IngestionResult:
        validate_pdf_meta(
            filename=filename,
            size_bytes=len(file_bytes),
            content_type=content_type,
            max_size_bytes=self.pdf_max_size_bytes,
        )
        parsed = self.pdf_parser(file_bytes, filename)
        if not parsed.extracted_pages:
            raise ValidationError("PDF contains no extractable text")

        page_range = parsed.extracted_page_range
        metadata = {
            "filename": filename,
            "file_size_bytes": len(file_bytes),
            "total_pages": parsed.total_pages,
            "extracted_page_range": page_range.model_dump() if page_range else None,
        }
        ids = await self.ingest(user_id, bot_id, parsed.text, SourceType.PDF, metadata)
        return IngestionResult(
            document_ids=ids,
            chunks_added=len(ids),
            chunk_size=self.sizer.calculate(parsed.text),
            source_type=SourceType.PDF,
            source_details={
                "filename": filename,
                "total_pages": parsed.total_pages,
                "extracted_pages": len(parsed.extracted_pages),
            },
        )

    # --- Websites -------------------------------------------------------------

    async def ingest_website(
        self,
        user_id: str,
        bot_id: str,
        url: str,
        processing_timestamp: Optional[int] = None,
    ) -> IngestionResult:
        """Scrape one page and ingest it.  Callers check robots.txt beforehand."""
        validate_website_url(url)
        page = await self.scraper(url)
        if page.content_size == 0:
            raise ValidationError("Website contains no extractable content")

        processing_timestamp = processing_timestamp or self.clock()
        metadata = {
            "url": url,
            "domain": page.domain,
            "scrape_timestamp": processing_timestamp,
            "content_hash": content_hash(page.text),
            "is_dynamic_content": page.is_dynamic_content,
        }
        ids = await self.ingest(
            user_id, bot_id, page.text, SourceType.WEBSITE, metadata, processing_timestamp
        )
        return IngestionResult(
            document_ids=ids,
            chunks_added=len(ids),
            chunk_size=self.sizer.calculate(page.text),
            source_type=SourceType.WEBSITE,
            source_details={
                "url": url,
                "domain": page.domain,
                "title": page.title,
                "content_size": page.content_size,
                "is_dynamic_content": page.is_dynamic_content,
            },
        )

    async def ingest_websites(self, user_id: str, bot_id: str, urls: list[str]) -> BatchIngestionResult:
        """
        Ingest several pages, `website_batch_size` at a time.

        One URL's failure never aborts its siblings; it lands in `errors`.
        """
        if not urls:
            raise ValidationError("No URLs provided")
        if len(urls) > self.max_urls_per_batch:
            raise ValidationError(f"Maximum {self.max_urls_per_batch} URLs allowed per batch")

        result = BatchIngestionResult()
        processing_timestamp = self.clock()

        for i in range(0, len(urls), self.website_batch_size):
            batch = urls[i: i + self.website_batch_size]
            outcomes = await asyncio.gather(
                *(self._ingest_url_isolated(user_id, bot_id, url, processing_timestamp) for url in batch)
            )
            for url, ids, error in outcomes:
                if error is None:
                    result.added_document_ids.extend(ids)
                else:
                    result.errors.append(UrlError(url=url, error=error))

        logger.info(
            f"[Ingestor] Batch of {len(urls)} URL(s): {result.total_documents_added} document(s) added, "
            f"{len(result.errors)} failure(s)"
        )
        return result

    async def _ingest_url_isolated(
        self, user_id: str, bot_id: str, url: str, processing_timestamp: int
    ) -> tuple[str, list[str], Optional[str]]:
        try:
            outcome = await self.ingest_website(user_id, bot_id, url, processing_timestamp)
        except Exception as exc:
            message = exc.message if isinstance(exc, KnowledgeBaseError) else str(exc)
            logger.warning(f"[Ingestor] {url} failed: {message}")
            return url, [], message or exc.__class__.__name__
        return url, outcome.document_ids, None

    # --- Edit / delete / list -------------------------------------------------

    def _get_owned(self, user_id: str, document_id: str) -> dict[str, Any]:
        record = self.store.get(document_id)
        if record is None or record.get("user_id") != user_id:
            raise DocumentNotFoundError(f"Document {document_id} not found")
        return record

    async def update_document(self, user_id: str, document_id: str, text: str) -> KnowledgeDocument:
        """
        Replace one document's text and regenerate its embedding.

        Sibling chunks are not re-chunked and this document's chunk_index /
        chunk_total are left untouched, even though they may no longer
        describe its place in the source.
        """
        trimmed = text.strip()
        if not trimmed:
            raise ValidationError("Document text cannot be empty")

        record = self._get_owned(user_id, document_id)
        try:
            embedding = await self.embedder.embed(trimmed)
        except KnowledgeBaseError:
            raise
        except Exception as exc:
            raise UpstreamError(f"Embedding failed for document {document_id}: {exc}", cause=exc) from exc

        try:
            self.store.patch(document_id, {"text": trimmed, "embedding": embedding})
        except Exception as exc:
            raise UpstreamError(f"Updating document {document_id} failed: {exc}", cause=exc) from exc

        logger.info(f"[Ingestor] Updated document {document_id} ({len(record['text'])} -> {len(trimmed)} chars)")
        return KnowledgeDocument(**{**record, "text": trimmed, "embedding": embedding})

    def delete_document(self, user_id: str, document_id: str) -> None:
        self._get_owned(user_id, document_id)
        try:
            self.store.delete(document_id)
        except Exception as exc:
            raise UpstreamError(f"Deleting document {document_id} failed: {exc}", cause=exc) from exc
        logger.info(f"[Ingestor] Deleted document {document_id}")

    def list_documents(self, user_id: str, bot_id: str) -> list[KnowledgeDocument]:
        return [KnowledgeDocument(**r) for r in self.store.list_by_bot_and_user(bot_id, user_id)]


def _coerce_source_type(source_type: SourceType | str) -> SourceType:
    try:
        return SourceType(source_type)
    except ValueError as exc:
        allowed = ", ".join(s.value for s in SourceType)
        raise ValidationError(f"Unknown source type '{source_type}' (expected one of: {allowed})") from exc
