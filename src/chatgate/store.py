"""Per-key document stores backing the usage ledger.

Documents are flat JSON objects whose values are numbers, strings or one
level of nested mappings (the per-day buckets). Field paths use dots:
``"daily_costs.2025-06-01"``.
"""

from __future__ import annotations

import asyncio
import copy
import json
import logging
import sqlite3
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Mapping
    from pathlib import Path

logger = logging.getLogger(__name__)


@runtime_checkable
class UsageStore(Protocol):
    """Durable get / set / additive-increment document store."""

    async def get(self, key: str) -> dict[str, Any] | None:
        """Return a copy of the document at *key*, or None."""
        ...

    async def set(self, key: str, document: Mapping[str, Any]) -> None:
        """Replace the document at *key* wholesale."""
        ...

    async def increment(
        self,
        key: str,
        deltas: Mapping[str, float],
        *,
        assign: Mapping[str, Any] | None = None,
    ) -> None:
        """Add *deltas* to numeric fields and overwrite *assign* fields.

        Missing fields start at zero. Missing documents are created.
        """
        ...


def apply_update(
    document: dict[str, Any],
    deltas: Mapping[str, float],
    assign: Mapping[str, Any] | None = None,
) -> dict[str, Any]:
    """Apply dotted-path increments and assignments to *document* in place."""
    for path, delta in deltas.items():
        parent, leaf = _resolve(document, path)
        current = parent.get(leaf, 0)
        if not isinstance(current, (int, float)):
            current = 0
        parent[leaf] = current + delta
    for path, value in (assign or {}).items():
        parent, leaf = _resolve(document, path)
        parent[leaf] = value
    return document


def _resolve(document: dict[str, Any], path: str) -> tuple[dict[str, Any], str]:
    *branches, leaf = path.split(".")
    node = document
    for name in branches:
        child = node.get(name)
        if not isinstance(child, dict):
            child = {}
            node[name] = child
        node = child
    return node, leaf


class MemoryUsageStore:
    """Process-local store, used for development and tests."""

    def __init__(self, documents: Mapping[str, Mapping[str, Any]] | None = None) -> None:
        self._documents: dict[str, dict[str, Any]] = {
            key: copy.deepcopy(dict(doc)) for key, doc in (documents or {}).items()
        }

    async def get(self, key: str) -> dict[str, Any] | None:
        doc = self._documents.get(key)
        return copy.deepcopy(doc) if doc is not None else None

    async def set(self, key: str, document: Mapping[str, Any]) -> None:
        self._documents[key] = copy.deepcopy(dict(document))

    async def increment(
        self,
        key: str,
        deltas: Mapping[str, float],
        *,
        assign: Mapping[str, Any] | None = None,
    ) -> None:
        doc = self._documents.setdefault(key, {})
        apply_update(doc, deltas, assign)


_SCHEMA = """
CREATE TABLE IF NOT EXISTS usage_documents (
    key TEXT PRIMARY KEY,
    document TEXT NOT NULL
)
"""


class SQLiteUsageStore:
    """SQLite-backed store: one JSON document per key.

    Each operation opens a short-lived connection on a worker thread.
    ``increment`` runs inside a single ``BEGIN IMMEDIATE`` transaction, so
    concurrent increments never lose updates; ``get`` followed by ``set`` is
    not atomic.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._initialized = False

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.path), timeout=30, isolation_level=None)
        if not self._initialized:
            conn.execute(_SCHEMA)
            self._initialized = True
        return conn

    def _get_sync(self, key: str) -> dict[str, Any] | None:
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT document FROM usage_documents WHERE key = ?", (key,)
            ).fetchone()
        finally:
            conn.close()
        if row is None:
            return None
        doc: dict[str, Any] = json.loads(row[0])
        return doc

    def _set_sync(self, key: str, document: Mapping[str, Any]) -> None:
        conn = self._connect()
        try:
            conn.execute(
                "INSERT INTO usage_documents (key, document) VALUES (?, ?) "
                "ON CONFLICT(key) DO UPDATE SET document = excluded.document",
                (key, json.dumps(dict(document))),
            )
        finally:
            conn.close()

    def _increment_sync(
        self,
        key: str,
        deltas: Mapping[str, float],
        assign: Mapping[str, Any] | None,
    ) -> None:
        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                row = conn.execute(
                    "SELECT document FROM usage_documents WHERE key = ?", (key,)
                ).fetchone()
                doc: dict[str, Any] = json.loads(row[0]) if row else {}
                apply_update(doc, deltas, assign)
                conn.execute(
                    "INSERT INTO usage_documents (key, document) VALUES (?, ?) "
                    "ON CONFLICT(key) DO UPDATE SET document = excluded.document",
                    (key, json.dumps(doc)),
                )
            except Exception:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
        finally:
            conn.close()

    async def get(self, key: str) -> dict[str, Any] | None:
        return await asyncio.to_thread(self._get_sync, key)

    async def set(self, key: str, document: Mapping[str, Any]) -> None:
        await asyncio.to_thread(self._set_sync, key, document)

    async def increment(
        self,
        key: str,
        deltas: Mapping[str, float],
        *,
        assign: Mapping[str, Any] | None = None,
    ) -> None:
        await asyncio.to_thread(self._increment_sync, key, deltas, assign)
