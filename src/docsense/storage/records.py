"""SQLite persistence for document records and conversation turns."""

from __future__ import annotations

import json
import sqlite3
from dataclasses import asdict
from datetime import datetime
from pathlib import Path
from typing import Sequence

from docsense.models import ConversationTurn, Document, DocumentStatus, DocumentUpdate, SourceCitation

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS documents (
        id TEXT PRIMARY KEY,
        owner_id TEXT NOT NULL,
        name TEXT NOT NULL,
        media_type TEXT NOT NULL,
        size_bytes INTEGER NOT NULL,
        status TEXT NOT NULL,
        summary TEXT,
        tags TEXT NOT NULL DEFAULT '[]',
        chunk_count INTEGER NOT NULL DEFAULT 0,
        location TEXT,
        created_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_documents_owner ON documents(owner_id, created_at DESC)",
    """
    CREATE TABLE IF NOT EXISTS conversation_turns (
        id TEXT PRIMARY KEY,
        owner_id TEXT NOT NULL,
        message TEXT NOT NULL,
        response TEXT NOT NULL,
        sources TEXT NOT NULL,
        sub_queries TEXT NOT NULL,
        created_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_turns_owner ON conversation_turns(owner_id, created_at DESC)",
)


class SQLiteRecordStore:
    """Relational side of the datastore.

    A fresh connection is opened per operation, so the store can be shared
    between the request handlers and the ingestion pipeline.
    """

    def __init__(self, db_path: str | Path = "docsense.db") -> None:
        self.db_path = str(db_path)
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._memory_conn: sqlite3.Connection | None = None
        for statement in _SCHEMA:
            self._execute(statement)

    def _connect(self) -> sqlite3.Connection:
        if self.db_path == ":memory:":
            if self._memory_conn is None:
                self._memory_conn = sqlite3.connect(":memory:", check_same_thread=False)
                self._memory_conn.row_factory = sqlite3.Row
            return self._memory_conn
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _execute(self, sql: str, params: Sequence[object] = ()) -> list[sqlite3.Row]:
        conn = self._connect()
        try:
            with conn:
                rows = conn.execute(sql, params).fetchall()
            return rows
        finally:
            if conn is not self._memory_conn:
                conn.close()

    # documents

    def insert_document(self, document: Document) -> Document:
        self._execute(
            """
            INSERT INTO documents
            (id, owner_id, name, media_type, size_bytes, status, summary, tags, chunk_count, location, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                document.document_id,
                document.owner_id,
                document.name,
                document.media_type,
                document.size_bytes,
                document.status.value,
                document.summary,
                json.dumps(list(document.tags)),
                document.chunk_count,
                document.location,
                document.created_at.isoformat(),
            ),
        )
        return document

    def get_document(self, document_id: str) -> Document | None:
        rows = self._execute("SELECT * FROM documents WHERE id = ?", (document_id,))
        return self._row_to_document(rows[0]) if rows else None

    def list_documents(self, owner_id: str) -> list[Document]:
        rows = self._execute(
            "SELECT * FROM documents WHERE owner_id = ? ORDER BY created_at DESC",
            (owner_id,),
        )
        return [self._row_to_document(row) for row in rows]

    def update_document(self, document_id: str, update: DocumentUpdate) -> None:
        assignments = ["status = ?"]
        params: list[object] = [update.status.value]
        if update.summary is not None:
            assignments.append("summary = ?")
            params.append(update.summary)
        if update.tags is not None:
            assignments.append("tags = ?")
            params.append(json.dumps(list(update.tags)))
        if update.chunk_count is not None:
            assignments.append("chunk_count = ?")
            params.append(update.chunk_count)
        params.append(document_id)
        self._execute(f"UPDATE documents SET {', '.join(assignments)} WHERE id = ?", params)

    def delete_document(self, document_id: str) -> None:
        self._execute("DELETE FROM documents WHERE id = ?", (document_id,))

    # conversation turns

    def insert_turn(self, turn: ConversationTurn) -> ConversationTurn:
        self._execute(
            """
            INSERT INTO conversation_turns (id, owner_id, message, response, sources, sub_queries, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                turn.turn_id,
                turn.owner_id,
                turn.message,
                turn.response,
                json.dumps([asdict(source) for source in turn.sources], default=str),
                json.dumps(list(turn.sub_queries)),
                turn.created_at.isoformat(),
            ),
        )
        return turn

    def recent_turns(self, owner_id: str, limit: int) -> list[ConversationTurn]:
        """Return the latest ``limit`` turns in chronological order."""

        rows = self._execute(
            "SELECT * FROM conversation_turns WHERE owner_id = ? ORDER BY created_at DESC LIMIT ?",
            (owner_id, limit),
        )
        return [self._row_to_turn(row) for row in reversed(rows)]

    @staticmethod
    def _row_to_document(row: sqlite3.Row) -> Document:
        return Document(
            document_id=row["id"],
            owner_id=row["owner_id"],
            name=row["name"],
            media_type=row["media_type"],
            size_bytes=row["size_bytes"],
            status=DocumentStatus(row["status"]),
            summary=row["summary"],
            tags=tuple(json.loads(row["tags"] or "[]")),
            chunk_count=row["chunk_count"],
            location=row["location"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    @staticmethod
    def _row_to_turn(row: sqlite3.Row) -> ConversationTurn:
        sources = [SourceCitation(**item) for item in json.loads(row["sources"])]
        return ConversationTurn(
            turn_id=row["id"],
            owner_id=row["owner_id"],
            message=row["message"],
            response=row["response"],
            sources=tuple(sources),
            sub_queries=tuple(json.loads(row["sub_queries"])),
            created_at=datetime.fromisoformat(row["created_at"]),
        )
