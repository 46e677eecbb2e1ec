from __future__ import annotations

from pathlib import Path
from uuid import uuid4

import chromadb
import pytest

from docsense.embeddings.store import ChromaVectorStore
from docsense.services.retry import RetryPolicy
from docsense.storage import ChromaSQLiteDatastore, SQLiteRecordStore
from stubs import no_sleep


@pytest.fixture()
def fast_retry() -> RetryPolicy:
    return RetryPolicy(max_attempts=3, base_delay=0.0, jitter=0.0, sleep=no_sleep)


@pytest.fixture()
def vector_store() -> ChromaVectorStore:
    suffix = uuid4().hex[:12]
    return ChromaVectorStore(
        f"chunks-{suffix}",
        f"documents-{suffix}",
        client=chromadb.EphemeralClient(),
    )


@pytest.fixture()
def record_store(tmp_path: Path) -> SQLiteRecordStore:
    return SQLiteRecordStore(tmp_path / "docsense.db")


@pytest.fixture()
def datastore(record_store: SQLiteRecordStore, vector_store: ChromaVectorStore) -> ChromaSQLiteDatastore:
    return ChromaSQLiteDatastore(record_store, vector_store)
