"""
Tests for the knowledge base CLI commands.

Usage:
    pytest tests/test_cli.py -v
"""

import json

from companion.config import (
    AnthropicConfig,
    DatabaseConfig,
    OpenAIConfig,
    RedisConfig,
    RetrievalConfig,
    Settings,
)
from companion.rag.cli import ask, backfill, build_parser, ingest_file, init_schema, show_stats
from companion.rag.embedder import RAGEmbedder
from companion.rag.prompts import DEGRADED_ANSWER, INSUFFICIENT_KNOWLEDGE_ANSWER
from companion.services import build_services

from tests.fakes import FakeLLMClient, HashingEmbeddingProvider


def make_services(llm=None):
    settings = Settings(
        openai=OpenAIConfig(api_key=None),
        anthropic=AnthropicConfig(api_key=None),
        database=DatabaseConfig(enabled=False),
        redis=RedisConfig(url=None),
        retrieval=RetrievalConfig(embedding_batch_delay=0.0),
        llm_provider=None,
    )
    embedder = RAGEmbedder(HashingEmbeddingProvider(dimensions=128), batch_delay=0)
    return build_services(settings, llm=llm, embedder=embedder)


def write_doc(tmp_path):
    path = tmp_path / "electrical.md"
    path.write_text(
        "Voltage requirements for industrial equipment must stay within five percent of nominal.",
        encoding="utf-8",
    )
    return path


class TestParser:

    def test_ask_arguments(self):
        args = build_parser().parse_args(["ask", "What voltage?", "--tenant", "acme", "--max-chunks", "4", "--recent"])
        assert args.command == "ask"
        assert args.tenant == "acme"
        assert args.max_chunks == 4
        assert args.recent is True

    def test_ask_max_chunks_defaults_to_setting(self):
        assert build_parser().parse_args(["ask", "What voltage?", "--tenant", "acme"]).max_chunks is None

    def test_ingest_defaults(self):
        args = build_parser().parse_args(["ingest", "doc.md", "--tenant", "acme"])
        assert args.source_type == "upload"
        assert args.source_id is None


class TestCommands:

    def test_init_requires_database(self):
        assert init_schema(make_services()) is False

    def test_ingest_file(self, tmp_path, capsys):
        services = make_services()
        assert ingest_file(services, str(write_doc(tmp_path)), "acme")

        output = json.loads(capsys.readouterr().out)
        assert output["status"] == "created"
        assert output["chunks_embedded"] == 1
        assert services.chunks.get_document("acme", "electrical.md").title == "electrical"

    def test_ingest_missing_file(self, tmp_path):
        assert ingest_file(make_services(), str(tmp_path / "missing.md"), "acme") is False

    def test_ask_prints_answer_and_citations(self, tmp_path, capsys):
        services = make_services(llm=FakeLLMClient())
        ingest_file(services, str(write_doc(tmp_path)), "acme")
        capsys.readouterr()

        assert ask(services, "What are the voltage requirements?", "acme", "bob")

        output = capsys.readouterr().out
        assert services.llm.answer in output
        assert "[1] electrical" in output

    def test_ask_without_completion_provider(self, tmp_path, capsys):
        services = make_services()
        assert ask(services, "What voltage?", "acme", "bob")
        assert INSUFFICIENT_KNOWLEDGE_ANSWER in capsys.readouterr().out

        ingest_file(services, str(write_doc(tmp_path)), "acme")
        capsys.readouterr()
        assert ask(services, "What are the voltage requirements?", "acme", "bob")
        assert DEGRADED_ANSWER in capsys.readouterr().out

    def test_backfill_idle(self, capsys):
        assert backfill(make_services())
        assert json.loads(capsys.readouterr().out)["status"] == "idle"

    def test_stats(self, tmp_path, capsys):
        services = make_services()
        ingest_file(services, str(write_doc(tmp_path)), "acme")
        capsys.readouterr()

        assert show_stats(services, "acme")

        output = capsys.readouterr().out
        assert "Documents:        1" in output
        assert "hashing-test-v1@128" in output
