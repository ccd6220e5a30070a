"""
Knowledge-Base Ingestion - CLI Entry Point
-------------------------------------------
Operator commands over the JSON-snapshot document and usage stores.

Usage:
    python -m kb_ingest.main chunk notes.md                       # Preview the chunk plan
    python -m kb_ingest.main ingest-text notes.md -b bot_1 -u user_1
    python -m kb_ingest.main ingest-pdf handbook.pdf -b bot_1 -u user_1
    python -m kb_ingest.main ingest-url https://example.com/docs -b bot_1 -u user_1
    python -m kb_ingest.main query "How do refunds work?" -b bot_1 --conversation c1
    python -m kb_ingest.main stats -b bot_1 -u user_1 --days 30
    python -m kb_ingest.main documents -b bot_1 -u user_1
"""
from __future__ import annotations

import sys

# Windows cp1252 terminal fix: force UTF-8 so scraped content with
# emoji does not crash the Rich console renderer.
if sys.platform == "win32":
    sys.stdout.reconfigure(encoding="utf-8", errors="replace")
    sys.stderr.reconfigure(encoding="utf-8", errors="replace")

import asyncio
import json
from pathlib import Path
from typing import Optional

import typer
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from kb_ingest.analytics.usage import UsageAggregator, UsageRecorder
from kb_ingest.chunking.chunker import DocumentChunker
from kb_ingest.chunking.sizer import ChunkSizer
from kb_ingest.config import DEFAULT_CONFIG_PATH, load_config
from kb_ingest.embedding.factory import EmbedderFactory
from kb_ingest.errors import KnowledgeBaseError, UpstreamError
from kb_ingest.ingestion.orchestrator import KnowledgeIngestor
from kb_ingest.retrieval.retriever import KnowledgeRetriever
from kb_ingest.schemas import IngestionResult, KBStats, SourceType
from kb_ingest.sources.website import check_robots_txt
from kb_ingest.storage.memory import InMemoryDocumentStore, InMemoryUsageLogStore
from kb_ingest.utils.helpers import truncate_text
from kb_ingest.utils.logger import setup_logger

app = typer.Typer(
    name="kb-ingest",
    help="Knowledge-base ingestion core - chunk, embed, store and measure bot knowledge",
    add_completion=False,
)
console = Console()

CONFIG_OPTION = typer.Option(DEFAULT_CONFIG_PATH, "--config", "-c", help="Path to config YAML")
BOT_OPTION = typer.Option(..., "--bot", "-b", help="Bot id")
USER_OPTION = typer.Option(..., "--user", "-u", help="Owning user (tenant) id")


# --- Wiring -------------------------------------------------------------------

class _Context:
    """Config, stores and services for one CLI invocation."""

    def __init__(self, config_path: str) -> None:
        self.cfg = load_config(config_path)
        log_cfg = self.cfg.get("logging", {})
        setup_logger(
            log_level=log_cfg.get("level", "INFO"),
            log_file=log_cfg.get("file", "logs/kb_ingest.log"),
        )
        storage = self.cfg.get("storage", {})
        self.documents = InMemoryDocumentStore(storage.get("documents_path", "data/documents.json"))
        self.usage_log = InMemoryUsageLogStore(storage.get("usage_log_path", "data/usage_log.json"))
        self.aggregator = UsageAggregator(
            self.usage_log, self.documents, config=self.cfg.get("analytics", {})
        )
        self.factory = EmbedderFactory(self.cfg.get("embedding", {}))

    def ingestor(self) -> KnowledgeIngestor:
        return KnowledgeIngestor(
            self.documents,
            self.factory.get_embedder(),
            self.cfg.get("ingestion", {}),
            chunking_config=self.cfg.get("chunking", {}),
        )


def _run(coro):
    """Run a coroutine and turn KnowledgeBaseErrors into a red message and exit code 1."""
    try:
        return asyncio.run(coro)
    except KnowledgeBaseError as exc:
        _fail(exc)


def _fail(exc: KnowledgeBaseError) -> None:
    console.print(f"[red]{exc.error_code}:[/red] {exc.message}")
    if isinstance(exc, UpstreamError) and exc.inserted_ids:
        console.print(
            f"[yellow]{len(exc.inserted_ids)} document(s) were stored before the failure "
            f"and were kept.[/yellow]"
        )
    raise typer.Exit(1)


def _print_ingestion(result: IngestionResult) -> None:
    details = "  ".join(f"{k}={v}" for k, v in result.source_details.items())
    console.print(
        f"[green][OK] {result.chunks_added} document(s) added[/green] "
        f"| source={result.source_type.value} | chunk_size={result.chunk_size}"
    )
    if details:
        console.print(f"[dim]{details}[/dim]")


# --- Commands -----------------------------------------------------------------

@app.command()
def chunk(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="Text file to chunk"),
    size: Optional[int] = typer.Option(None, "--size", "-s", help="Override the computed chunk size"),
    config: str = CONFIG_OPTION,
) -> None:
    """Preview how a document would be chunked (no embedding, nothing stored)."""
    cfg = load_config(config)
    text = path.read_text(encoding="utf-8")
    sizer = ChunkSizer.from_config(cfg.get("chunking", {}))
    chunker = DocumentChunker.from_config(cfg.get("chunking", {}))

    target = size or sizer.calculate(text)
    try:
        chunks = chunker.chunk_document(text, target)
    except KnowledgeBaseError as exc:
        _fail(exc)

    table = Table("No.", "Chars", "Span", "Preview", box=box.SIMPLE, header_style="bold dim")
    for c in chunks:
        table.add_row(
            f"{c.chunk_index + 1}/{c.chunk_total}",
            str(len(c.text)),
            f"{c.start_offset}-{c.end_offset}",
            truncate_text(c.text.replace("\n", " "), 70),
        )
    console.print(
        f"[bold]{path.name}[/bold] | {len(text):,} chars | target={target} | {len(chunks)} chunk(s)"
    )
    console.print(table)


@app.command("ingest-text")
def ingest_text(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="Text or markdown file"),
    bot: str = BOT_OPTION,
    user: str = USER_OPTION,
    title: Optional[str] = typer.Option(None, "--title", help="Title stored with each chunk"),
    config: str = CONFIG_OPTION,
) -> None:
    """Ingest pasted/inline text from a file."""
    ctx = _Context(config)
    text = path.read_text(encoding="utf-8")
    metadata = {"title": title or path.stem}

    async def _go() -> list[str]:
        return await ctx.ingestor().ingest(user, bot, text, SourceType.INLINE, metadata)

    with console.status("[cyan]Chunking and embedding...[/cyan]"):
        ids = _run(_go())
    console.print(f"[green][OK] {len(ids)} document(s) added[/green] | source=inline")


@app.command("ingest-pdf")
def ingest_pdf(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="PDF file"),
    bot: str = BOT_OPTION,
    user: str = USER_OPTION,
    config: str = CONFIG_OPTION,
) -> None:
    """Extract a PDF's text and ingest it."""
    ctx = _Context(config)
    data = path.read_bytes()

    with console.status("[cyan]Extracting, chunking and embedding...[/cyan]"):
        result = _run(ctx.ingestor().ingest_pdf(user, bot, data, path.name, "application/pdf"))
    _print_ingestion(result)


@app.command("ingest-url")
def ingest_url(
    urls: list[str] = typer.Argument(..., help="One or more page URLs"),
    bot: str = BOT_OPTION,
    user: str = USER_OPTION,
    skip_robots: bool = typer.Option(False, "--skip-robots", help="Do not consult robots.txt"),
    config: str = CONFIG_OPTION,
) -> None:
    """
    Scrape and ingest web pages.

    \b
    robots.txt is checked for each URL first; a site that disallows
    everything is skipped.  Several URLs are scraped in small concurrent batches.
    """
    ctx = _Context(config)

    async def _allowed() -> list[str]:
        if skip_robots:
            return list(urls)
        verdicts = await asyncio.gather(*(check_robots_txt(u) for u in urls))
        for url, ok in zip(urls, verdicts):
            if not ok:
                console.print(f"[yellow]Skipped (robots.txt disallows crawling):[/yellow] {url}")
        return [u for u, ok in zip(urls, verdicts) if ok]

    allowed = asyncio.run(_allowed())
    if not allowed:
        console.print("[red]No URLs left to ingest.[/red]")
        raise typer.Exit(1)

    ingestor = ctx.ingestor()
    if len(allowed) == 1:
        with console.status(f"[cyan]Scraping {allowed[0]}...[/cyan]"):
            result = _run(ingestor.ingest_website(user, bot, allowed[0]))
        _print_ingestion(result)
        return

    with console.status(f"[cyan]Scraping {len(allowed)} pages...[/cyan]"):
        batch = _run(ingestor.ingest_websites(user, bot, allowed))

    console.print(
        f"[green][OK] {batch.total_documents_added} document(s) added[/green] "
        f"from {len(allowed) - len(batch.errors)}/{len(allowed)} page(s)"
    )
    if batch.errors:
        table = Table("URL", "Error", box=box.SIMPLE, header_style="bold red")
        for err in batch.errors:
            table.add_row(err.url, err.error)
        console.print(table)
    if not batch.success:
        raise typer.Exit(1)


@app.command()
def query(
    text: str = typer.Argument(..., help="Visitor question"),
    bot: str = BOT_OPTION,
    conversation: Optional[str] = typer.Option(
        None, "--conversation", help="Conversation id; when set, usage is recorded"
    ),
    user: Optional[str] = typer.Option(None, "--user", "-u", help="Signed-in user id, if any"),
    config: str = CONFIG_OPTION,
) -> None:
    """Retrieve knowledge context for a question, as the chat path would."""
    ctx = _Context(config)

    async def _go():
        recorder = UsageRecorder(
            ctx.aggregator, max_queue_size=ctx.cfg.get("analytics", {}).get("queue_size", 1000)
        )
        await recorder.start()
        retriever = KnowledgeRetriever.from_config(
            ctx.documents, ctx.factory.get_embedder(), ctx.cfg.get("retrieval", {}), recorder=recorder
        )
        try:
            return await retriever.retrieve(bot, text, conversation_id=conversation, user_id=user)
        finally:
            await recorder.stop()

    result = _run(_go())
    if not result.has_context:
        console.print("[yellow]No knowledge context found.[/yellow]")
        return

    table = Table("No.", "Document", "Score", box=box.SIMPLE, header_style="bold dim")
    for i, (doc_id, score) in enumerate(zip(result.document_ids, result.similarities), start=1):
        table.add_row(str(i), doc_id, f"{score:.3f}")
    console.print(table)
    console.print(Panel(result.context_block, title="[bold green]Context[/bold green]", expand=True))


@app.command()
def edit(
    document_id: str = typer.Argument(..., help="Document to replace"),
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="File with the new text"),
    user: str = USER_OPTION,
    config: str = CONFIG_OPTION,
) -> None:
    """Replace one document's text and regenerate its embedding."""
    ctx = _Context(config)
    document = _run(ctx.ingestor().update_document(user, document_id, path.read_text(encoding="utf-8")))
    console.print(f"[green][OK] Updated[/green] {document.id} ({len(document.text):,} chars)")


@app.command()
def delete(
    document_id: str = typer.Argument(..., help="Document to delete"),
    user: str = USER_OPTION,
    config: str = CONFIG_OPTION,
) -> None:
    """Delete one document."""
    ctx = _Context(config)
    try:
        KnowledgeIngestor(ctx.documents, embedder=None).delete_document(user, document_id)
    except KnowledgeBaseError as exc:
        _fail(exc)
    console.print(f"[green][OK] Deleted[/green] {document_id}")


@app.command()
def stats(
    bot: str = BOT_OPTION,
    user: str = USER_OPTION,
    days: Optional[int] = typer.Option(None, "--days", "-d", help="Window in days (default from config)"),
    json_out: bool = typer.Option(False, "--json", help="Print stats as JSON"),
    config: str = CONFIG_OPTION,
) -> None:
    """Show retrieval coverage and per-document usage."""
    ctx = _Context(config)
    result = ctx.aggregator.get_stats(user, bot, window_days=days)
    if json_out:
        console.print_json(json.dumps(result.model_dump(), indent=2))
        return
    _print_stats(bot, result)


def _print_stats(bot: str, result: KBStats) -> None:
    console.print()
    console.print(f"[bold]Knowledge base usage[/bold] | bot={bot} | last {result.window_days} day(s)")
    console.print(f"  Documents         : {result.total_documents}")
    console.print(f"  Queries           : {result.total_queries}")
    console.print(f"  With context      : [green]{result.successful_retrieval_queries}[/green]")
    console.print(f"  Fallback          : [yellow]{result.fallback_no_context_queries}[/yellow]")
    console.print(f"  Coverage          : [bold]{result.retrieval_coverage_percent}%[/bold]")
    console.print(f"  Retrievals        : {result.total_retrievals}")
    console.print(f"  Unused documents  : {len(result.unused_document_ids)}")

    if result.top_documents:
        table = Table("Document", "Citations", "Last used (ms)", box=box.SIMPLE, header_style="bold dim")
        for usage in result.top_documents:
            table.add_row(usage.document_id, str(usage.count), str(usage.last_used_at))
        console.print(table)


@app.command()
def documents(
    bot: str = BOT_OPTION,
    user: str = USER_OPTION,
    config: str = CONFIG_OPTION,
) -> None:
    """List a bot's stored documents."""
    ctx = _Context(config)
    docs = KnowledgeIngestor(ctx.documents, embedder=None).list_documents(user, bot)
    if not docs:
        console.print("[yellow]No documents stored for this bot.[/yellow]")
        return

    table = Table("ID", "Source", "Chunk", "Chars", "Preview", box=box.SIMPLE, header_style="bold dim")
    for doc in docs:
        meta = doc.source_metadata
        chunk_label = (
            f"{meta.chunk_index + 1}/{meta.chunk_total}"
            if meta is not None and meta.chunk_index is not None and meta.chunk_total
            else "-"
        )
        table.add_row(
            doc.id,
            doc.source_type.value if doc.source_type else "-",
            chunk_label,
            str(len(doc.text)),
            truncate_text(doc.text.replace("\n", " "), 50),
        )
    console.print(table)
    console.print(f"[dim]{len(docs)} document(s)[/dim]")


# --- Entry Point --------------------------------------------------------------

if __name__ == "__main__":
    app()
