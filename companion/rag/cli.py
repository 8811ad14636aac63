"""
RAG CLI
=======

Command-line interface for knowledge base management.

Usage:
    python -m companion.rag.cli init                            # Apply database schema
    python -m companion.rag.cli ingest doc.md --tenant acme      # Ingest a text file
    python -m companion.rag.cli ask "question" --tenant acme     # Grounded answer
    python -m companion.rag.cli backfill                         # Embed pending chunks
    python -m companion.rag.cli stats --tenant acme              # Show statistics

Without DATABASE_ENABLED=true all storage is in-memory, so ingest and ask
only share data within a single process.
"""

import argparse
import asyncio
import json
import logging
import os
import sys
from pathlib import Path

import psycopg2

from ..config import get_settings
from ..logging_config import setup_logging
from ..rag.models import AnswerOptions
from ..services import Services, build_services
from ..worker.embedding_worker import EmbeddingBackfillJob

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).resolve().parent.parent.parent / "database" / "migrations"


def init_schema(services: Services) -> bool:
    """Apply every SQL migration in order."""
    if services.db is None:
        logger.error("DATABASE_ENABLED is not set; nothing to initialize")
        return False

    migrations = sorted(MIGRATIONS_DIR.glob("*.sql"))
    if not migrations:
        logger.error(f"No migration files found in {MIGRATIONS_DIR}")
        return False

    try:
        with services.db.connection() as conn:
            with conn.cursor() as cur:
                for path in migrations:
                    cur.execute(path.read_text())
                    logger.info(f"Applied {path.name}")
    except psycopg2.Error as e:
        logger.error(f"Failed to initialize schema: {e}")
        return False

    logger.info("Schema initialized successfully")
    return True


def ingest_file(services: Services, path: str, tenant_id: str, source_id: str = None,
                title: str = None, uri: str = None, source_type: str = "upload") -> bool:
    """Ingest a UTF-8 text file."""
    file_path = Path(path)
    if not file_path.is_file():
        logger.error(f"File not found: {path}")
        return False

    content = file_path.read_text(encoding="utf-8")
    result = asyncio.run(services.ingestion.ingest_document(
        tenant_id=tenant_id,
        source_id=source_id or file_path.name,
        uri=uri or file_path.resolve().as_uri(),
        title=title or file_path.stem,
        content=content,
        source_type=source_type,
    ))

    print(json.dumps(result.to_dict(), indent=2))
    return True


def ask(services: Services, query: str, tenant_id: str, user_id: str,
        max_chunks: int = None, include_recent: bool = False) -> bool:
    """Print a grounded answer with its citations."""
    if services.llm is None:
        logger.warning("No completion provider configured (set OPENAI_API_KEY or ANTHROPIC_API_KEY)")

    result = asyncio.run(services.answers.generate_grounded_answer(
        query, tenant_id, user_id,
        AnswerOptions(
            max_chunks=max_chunks or services.settings.retrieval.max_chunks,
            include_recent=include_recent,
        ),
    ))

    print(f"\n{'='*60}")
    print(f"Query: {query}")
    print(f"Confidence: {result.confidence:.2f} ({result.retrieved_chunks} chunks)")
    print('='*60)
    print(result.answer)

    for i, citation in enumerate(result.citations, 1):
        print(f"\n[{i}] {citation.title} ({citation.score:.3f})")
        if citation.uri:
            print(f"    {citation.uri}")
        print(f"    {citation.span}")

    return True


def backfill(services: Services) -> bool:
    """Embed chunks that are still pending."""
    job = EmbeddingBackfillJob(services.chunks, services.embedder, services.settings.worker.batch_limit)
    result = asyncio.run(job.run_once())
    print(json.dumps(result.to_dict(), indent=2))
    return result.failed == 0


def show_stats(services: Services, tenant_id: str = None) -> bool:
    stats = services.chunks.stats(tenant_id)

    print(f"\n{'='*60}")
    print(f"KNOWLEDGE BASE STATISTICS{f' ({tenant_id})' if tenant_id else ''}")
    print('='*60)
    print(f"Documents:        {stats['documents']}")
    print(f"Chunks:           {stats['chunks']}")
    print(f"Embedded chunks:  {stats['embedded']}")
    print(f"Pending chunks:   {stats['pending']}")
    print(f"Embedding model:  {services.embedder.tag}")
    return True


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Knowledge base CLI")
    subparsers = parser.add_subparsers(dest="command", help="Command")

    subparsers.add_parser("init", help="Initialize database schema")

    ingest_parser = subparsers.add_parser("ingest", help="Ingest a text file")
    ingest_parser.add_argument("path", help="Path to a UTF-8 text file")
    ingest_parser.add_argument("--tenant", required=True, help="Tenant id")
    ingest_parser.add_argument("--source-id", help="Source id (default: file name)")
    ingest_parser.add_argument("--title", help="Title (default: file stem)")
    ingest_parser.add_argument("--uri", help="Citation URI (default: file URI)")
    ingest_parser.add_argument("--source-type", default="upload", help="Source type")

    ask_parser = subparsers.add_parser("ask", help="Ask a grounded question")
    ask_parser.add_argument("query", help="Question")
    ask_parser.add_argument("--tenant", required=True, help="Tenant id")
    ask_parser.add_argument("--user", default=os.getenv("USER", "cli"), help="User id")
    ask_parser.add_argument("--max-chunks", type=int, default=None, help="Chunks used as context (default RAG_MAX_CHUNKS)")
    ask_parser.add_argument("--recent", action="store_true", help="Only the last 30 days")

    subparsers.add_parser("backfill", help="Embed pending chunks once")

    stats_parser = subparsers.add_parser("stats", help="Show statistics")
    stats_parser.add_argument("--tenant", help="Restrict to one tenant")

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return

    settings = get_settings()
    setup_logging(level=settings.logging.level, json_output=settings.logging.json_logs)
    services = build_services(settings)

    try:
        if args.command == "init":
            success = init_schema(services)
        elif args.command == "ingest":
            success = ingest_file(services, args.path, args.tenant, args.source_id,
                                  args.title, args.uri, args.source_type)
        elif args.command == "ask":
            success = ask(services, args.query, args.tenant, args.user, args.max_chunks, args.recent)
        elif args.command == "backfill":
            success = backfill(services)
        else:
            success = show_stats(services, args.tenant)
    finally:
        services.close()

    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
