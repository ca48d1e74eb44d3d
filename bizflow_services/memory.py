"""
bizflow_services.memory -- In-process implementations of the storage ports.

Responsibility:
    A thread-safe DocumentRepository and FinanceRecordWriter holding
    documents in dictionaries, for embedding the workflow engine without a
    database and for concurrency tests.

Invariants enforced:
    - All reads and writes happen under one re-entrant lock.
    - ``transaction()`` holds the lock for its whole body and restores the
      pre-transaction snapshot when the body raises.
    - ``update_status`` has the same compare-and-set contract as the SQL
      repositories.
"""

from __future__ import annotations

import dataclasses
import threading
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from decimal import Decimal
from typing import Any
from uuid import uuid4

from bizflow_kernel.domain.documents import Document, WorkflowLogEntry


class InMemoryDocumentRepository:
    def __init__(self, documents: Mapping[str, Document] | None = None) -> None:
        self._lock = threading.RLock()
        self._documents: dict[str, Document] = dict(documents or {})
        self._logs: list[WorkflowLogEntry] = []

    def add(self, document: Document) -> Document:
        with self._lock:
            self._documents[document.id] = document
            return document

    def find_by_id(self, document_id: str) -> Document | None:
        with self._lock:
            return self._documents.get(document_id)

    def update_status(
        self,
        document_id: str,
        patch: Mapping[str, Any],
        expected_status: str,
        expected_version: int,
    ) -> Document | None:
        with self._lock:
            current = self._documents.get(document_id)
            if (
                current is None
                or current.status.value != expected_status
                or current.version != expected_version
            ):
                return None
            updated = dataclasses.replace(current, **patch, version=expected_version + 1)
            self._documents[document_id] = updated
            return updated

    def append_log(self, entry: WorkflowLogEntry) -> WorkflowLogEntry:
        with self._lock:
            stored = dataclasses.replace(entry, id=entry.id or str(uuid4()))
            self._logs.append(stored)
            return stored

    def list_logs(self, document_id: str) -> list[WorkflowLogEntry]:
        with self._lock:
            return [e for e in self._logs if e.document_id == document_id]

    @contextmanager
    def transaction(self) -> Iterator[None]:
        with self._lock:
            documents = dict(self._documents)
            log_count = len(self._logs)
            try:
                yield
            except BaseException:
                self._documents = documents
                del self._logs[log_count:]
                raise


class InMemoryFinanceRecordWriter:
    """Keeps one expense record per source document."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.records: dict[tuple[str, str], dict[str, Any]] = {}

    def create_expense_record(
        self, document: Document, amount: Decimal, operator_id: str
    ) -> str:
        key = (document.document_type.value, document.id)
        with self._lock:
            existing = self.records.get(key)
            if existing is not None:
                return existing["id"]
            record = {
                "id": str(uuid4()),
                "source_type": key[0],
                "source_id": key[1],
                "amount": amount,
                "created_by": operator_id,
            }
            self.records[key] = record
            return record["id"]
