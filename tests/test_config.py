"""
Tests for configuration loading and service wiring.

Usage:
    pytest tests/test_config.py -v
"""

import os
from unittest.mock import patch

import pytest

from companion.ai.llm_client import AnthropicClient, OpenAIClient, UnconfiguredLLMClient
from companion.config import (
    DatabaseConfig,
    OpenAIConfig,
    RetrievalConfig,
    Settings,
    get_env,
    get_env_bool,
    get_env_int,
)
from companion.feedback.repository import InMemoryFeedbackRepository
from companion.rag.embedder import MOCK_MODEL_ID, OpenAIEmbeddingProvider
from companion.rag.vector_index import InMemoryChunkRepository
from companion.services import build_llm, build_services


class TestEnvHelpers:

    def test_get_env_required(self):
        with patch.dict(os.environ, {}, clear=True):
            with pytest.raises(ValueError):
                get_env("MISSING", required=True)

    def test_get_env_int(self):
        with patch.dict(os.environ, {"N": "42"}):
            assert get_env_int("N", 1) == 42
        with patch.dict(os.environ, {"N": "forty"}):
            with pytest.raises(ValueError):
                get_env_int("N", 1)

    @pytest.mark.parametrize("raw,expected", [("true", True), ("1", True), ("yes", True), ("off", False)])
    def test_get_env_bool(self, raw, expected):
        with patch.dict(os.environ, {"FLAG": raw}):
            assert get_env_bool("FLAG", not expected) is expected


class TestSettings:
    """Tests for the settings dataclasses."""

    def test_defaults(self):
        with patch.dict(os.environ, {}, clear=True):
            settings = Settings()
        assert settings.openai.api_key is None
        assert settings.openai.embedding_model == "text-embedding-3-large"
        assert settings.openai.embedding_dimensions == 3072
        assert settings.retrieval.max_chunks == 12
        assert settings.retrieval.chunk_max_tokens == 600
        assert settings.retrieval.chunk_overlap_tokens == 100
        assert settings.retrieval.excerpt_length == 100
        assert settings.database.enabled is False
        assert settings.worker.interval_seconds == 60
        assert not settings.is_production()

    def test_environment_overrides(self):
        env = {
            "EMBEDDING_MODEL": "text-embedding-3-small",
            "EMBEDDING_DIMENSIONS": "1536",
            "RAG_MAX_CHUNKS": "6",
            "DATABASE_ENABLED": "true",
            "ENVIRONMENT": "production",
        }
        with patch.dict(os.environ, env, clear=True):
            settings = Settings()
        assert settings.openai.embedding_model == "text-embedding-3-small"
        assert settings.openai.embedding_dimensions == 1536
        assert settings.retrieval.max_chunks == 6
        assert settings.database.enabled is True
        assert settings.is_production()

    def test_connection_dict(self):
        config = DatabaseConfig(host="db", port=5433, name="kb", user="svc", password="pw")
        assert config.connection_dict["dbname"] == "kb"
        assert config.connection_dict["port"] == 5433

    def test_invalid_pool(self):
        with pytest.raises(ValueError):
            DatabaseConfig(pool_min_size=5, pool_max_size=2)

    def test_invalid_overlap(self):
        with pytest.raises(ValueError):
            RetrievalConfig(chunk_max_tokens=100, chunk_overlap_tokens=100)

    def test_invalid_batch_size(self):
        with pytest.raises(ValueError):
            RetrievalConfig(embedding_batch_size=25)

    def test_invalid_dimensions(self):
        with pytest.raises(ValueError):
            OpenAIConfig(embedding_dimensions=0)


class TestBuildServices:
    """Tests for build_services() / build_llm()."""

    def test_offline_in_memory(self):
        with patch.dict(os.environ, {}, clear=True):
            services = build_services(Settings())
        assert services.db is None
        assert services.cache is None
        assert isinstance(services.chunks, InMemoryChunkRepository)
        assert isinstance(services.feedback, InMemoryFeedbackRepository)
        assert services.embedder.tag.model_id == MOCK_MODEL_ID
        assert services.llm is None
        assert isinstance(services.answers.llm, UnconfiguredLLMClient)
        assert services.adjuster is not None

    def test_openai_key_enables_provider_and_completions(self):
        with patch.dict(os.environ, {"OPENAI_API_KEY": "sk-test"}, clear=True):
            services = build_services(Settings())
        assert isinstance(services.embedder.provider, OpenAIEmbeddingProvider)
        assert isinstance(services.llm, OpenAIClient)
        assert services.answers.llm is services.llm

    def test_anthropic_only(self):
        with patch.dict(os.environ, {"ANTHROPIC_API_KEY": "sk-ant"}, clear=True):
            llm = build_llm(Settings())
        assert isinstance(llm, AnthropicClient)

    def test_personalization_disabled(self):
        with patch.dict(os.environ, {"RAG_PERSONALIZE": "false"}, clear=True):
            services = build_services(Settings())
        assert services.adjuster is None
