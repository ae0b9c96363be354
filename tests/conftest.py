"""Shared pytest fixtures."""

from __future__ import annotations

import threading
from unittest.mock import MagicMock

import pytest

from docembed.db.connection import Database
from docembed.db.repository import Repository
from docembed.db.schema import initialize
from docembed.ingest.embeddings import EmbeddingResult
from docembed.ingest.errors import EmbeddingProviderError


@pytest.fixture
def tmp_db(tmp_path):
    """File-based DB in tmp_path with schema initialized, closed after test."""
    db = Database(tmp_path / ".docembed.db")
    conn = db.connect()
    initialize(conn)
    yield conn
    conn.close()


@pytest.fixture
def repo(tmp_db):
    """Repository over tmp_db with one source ('src-1', project 'proj-1')."""
    r = Repository(tmp_db, dimensions=3)
    r.ensure_source("src-1", "proj-1")
    return r


@pytest.fixture
def make_embedding_response():
    """Factory for litellm.embedding() response doubles."""

    def _make(vector: list[float] | None = None, total_tokens: int | None = 7) -> MagicMock:
        response = MagicMock()
        response.data = [{"embedding": vector or [0.1, 0.2, 0.3]}]
        response.usage.total_tokens = total_tokens
        return response

    return _make


class FakeEmbedder:
    """Deterministic stand-in for EmbeddingGenerator.

    Texts containing *fail_on* raise EmbeddingProviderError.
    """

    def __init__(
        self,
        vector: list[float] | None = None,
        tokens: int = 5,
        fail_on: str | None = None,
        api_key_error: bool = False,
    ) -> None:
        self.vector = vector or [0.1, 0.2, 0.3]
        self.tokens = tokens
        self.fail_on = fail_on
        self.api_key_error = api_key_error
        self.calls: list[str] = []
        self._lock = threading.Lock()

    def embed(self, text: str) -> EmbeddingResult:
        with self._lock:
            self.calls.append(text)
        if self.fail_on is not None and self.fail_on in text:
            raise EmbeddingProviderError("Embedding failed after 3 attempts: boom", attempts=3)
        return EmbeddingResult(embedding=list(self.vector), token_count=self.tokens)

    def check_api_key(self) -> None:
        if self.api_key_error:
            raise EnvironmentError("No API key found for provider 'openai'.")


@pytest.fixture
def fake_embedder():
    """Factory for FakeEmbedder instances."""
    return FakeEmbedder
