from __future__ import annotations

from docsense.config import get_settings


def test_defaults_embedding_model_and_dim():
    settings = get_settings({})
    assert settings.embedding_model == "sentence-transformers/all-MiniLM-L6-v2"
    assert settings.embedding_dim == 384
    assert settings.embedding_fallback_enabled is True


def test_retrieval_constants_are_configuration():
    settings = get_settings({})
    assert settings.retrieval_similarity_threshold == 0.0
    assert settings.retrieval_keyword_similarity == 0.7
    assert settings.retrieval_fallback_similarity == 0.5


def test_override_builds_fresh_instance():
    settings = get_settings({"chunk_max_length": 500, "chunk_overlap": 50, "environment": "test"})
    assert settings.chunk_max_length == 500
    assert settings.chunk_overlap == 50
    assert settings.is_test


def test_env_prefix(monkeypatch):
    monkeypatch.setenv("DOCSENSE_RETRIEVAL_LIMIT", "7")
    settings = get_settings({"environment": "test"})
    assert settings.retrieval_limit == 7


def test_allowed_ingest_domains_from_comma_string():
    settings = get_settings({"allowed_ingest_domains": "example.com, docs.example.org"})
    assert settings.allowed_ingest_domains_tuple == ("example.com", "docs.example.org")


def test_logging_settings_defaults():
    settings = get_settings({})
    assert settings.log_level == "INFO"
    assert settings.log_format == "json"
