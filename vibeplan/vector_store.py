"""Namespaced vector store backed by LanceDB.

One LanceDB database directory is one *index*; every repository namespace is
a table inside it.  Schema per row:

========== ============== ===========================================
Column     Type           Description
========== ============== ===========================================
id         utf8           Record id, unique within the namespace
vector     float32[dim]   Embedding vector
type       utf8           repository_overview / file / function / ...
file_path  utf8           Repo-relative path ("" for repo-level rows)
language   utf8           Language of the file, if any
repo_name  utf8           Repository name
metadata   utf8           JSON text of the full metadata dict
========== ============== ===========================================

Similarity is ``1 - cosine_distance``.  Store failures are raised as
:class:`~vibeplan.errors.VectorStoreError`; callers decide whether to degrade.
"""

from __future__ import annotations

import json
import logging
import re
import time
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional

import lancedb  # type: ignore[import-untyped]
import pyarrow as pa  # type: ignore[import-untyped]

from .errors import VectorStoreError
from .models import TextRecord

logger = logging.getLogger(__name__)

META_TABLE = "_vibeplan_index"
FILTER_COLUMNS = ("type", "file_path", "language", "repo_name")

_NAMESPACE_RE = re.compile(r"[^A-Za-z0-9_.-]")


def sanitize_namespace(namespace: str) -> str:
    """Map a namespace onto a legal LanceDB table name."""
    cleaned = _NAMESPACE_RE.sub("_", namespace.strip())
    if not cleaned:
        raise VectorStoreError("Namespace must not be empty")
    return cleaned


def record_schema(dim: int) -> pa.Schema:
    return pa.schema([
        pa.field("id", pa.string()),
        pa.field("vector", pa.list_(pa.float32(), dim)),
        pa.field("type", pa.string()),
        pa.field("file_path", pa.string()),
        pa.field("language", pa.string()),
        pa.field("repo_name", pa.string()),
        pa.field("metadata", pa.string()),
    ])


META_SCHEMA = pa.schema([
    pa.field("name", pa.string()),
    pa.field("dimension", pa.int32()),
    pa.field("metric", pa.string()),
])


def _quote(value: Any) -> str:
    return "'" + str(value).replace("'", "''") + "'"


def build_where(filters: Optional[Dict[str, Any]]) -> Optional[str]:
    """Equality filters to a SQL predicate; unknown columns are rejected."""
    if not filters:
        return None
    clauses = []
    for key, value in filters.items():
        if key not in FILTER_COLUMNS:
            raise VectorStoreError(f"Unsupported filter column: {key}")
        clauses.append(f"{key} = {_quote(value)}")
    return " AND ".join(clauses)


class VectorStore:
    """LanceDB-backed store for :class:`~vibeplan.models.TextRecord` rows.

    Args:
        root:       Directory holding one sub-directory per index.
        index_name: Index used by namespace operations.
    """

    def __init__(self, root: Path, index_name: str = "vibeplan") -> None:
        self.root = Path(root)
        self.index_name = index_name
        self.root.mkdir(parents=True, exist_ok=True)
        self._db: Optional[Any] = None

    # ------------------------------------------------------------------
    # Index provisioning
    # ------------------------------------------------------------------

    def _connect(self, name: str) -> Any:
        try:
            return lancedb.connect(str(self.root / name))
        except Exception as exc:
            raise VectorStoreError(f"Cannot open index '{name}': {exc}") from exc

    @property
    def db(self) -> Any:
        if self._db is None:
            self._db = self._connect(self.index_name)
        return self._db

    def list_indexes(self) -> List[str]:
        return sorted(
            p.name for p in self.root.iterdir()
            if p.is_dir() and (p / f"{META_TABLE}.lance").exists()
        )

    def create_index(self, name: str, dimension: int, metric: str = "cosine") -> None:
        db = self._connect(name)
        try:
            if META_TABLE in db.table_names():
                return
            data = pa.Table.from_pylist(
                [{"name": name, "dimension": dimension, "metric": metric}], schema=META_SCHEMA,
            )
            db.create_table(META_TABLE, data=data)
        except Exception as exc:
            raise VectorStoreError(f"Cannot create index '{name}': {exc}") from exc
        logger.info("Created vector index '%s' (dim=%d, metric=%s)", name, dimension, metric)

    def describe_index(self, name: str) -> Dict[str, Any]:
        if name not in self.list_indexes():
            raise VectorStoreError(f"Index '{name}' does not exist")
        db = self._connect(name)
        try:
            rows = db.open_table(META_TABLE).to_arrow().to_pylist()
            namespaces = [t for t in db.table_names() if t != META_TABLE]
        except Exception as exc:
            raise VectorStoreError(f"Cannot describe index '{name}': {exc}") from exc
        meta = rows[0] if rows else {}
        return {
            "name": name,
            "dimension": meta.get("dimension"),
            "metric": meta.get("metric", "cosine"),
            "namespaces": namespaces,
            "ready": bool(rows),
        }

    def wait_until_ready(
        self,
        attempts: int = 30,
        interval: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> Dict[str, Any]:
        """Poll :meth:`describe_index` until the index reports ready."""
        for attempt in range(attempts):
            try:
                info = self.describe_index(self.index_name)
                if info["ready"]:
                    return info
            except VectorStoreError as exc:
                logger.debug("Index not ready (attempt %d): %s", attempt + 1, exc)
            if attempt < attempts - 1:
                sleep(interval)
        raise VectorStoreError(
            f"Index '{self.index_name}' not ready after {attempts} attempts"
        )

    def ensure_index(self, dimension: int, attempts: int = 30, interval: float = 1.0) -> None:
        if self.index_name not in self.list_indexes():
            self.create_index(self.index_name, dimension)
        self.wait_until_ready(attempts, interval)

    # ------------------------------------------------------------------
    # Namespace operations
    # ------------------------------------------------------------------

    def _open(self, namespace: str) -> Optional[Any]:
        table_name = sanitize_namespace(namespace)
        try:
            if table_name not in self.db.table_names():
                return None
            return self.db.open_table(table_name)
        except Exception as exc:
            raise VectorStoreError(f"Cannot open namespace '{namespace}': {exc}") from exc

    @staticmethod
    def _to_row(record: TextRecord) -> Dict[str, Any]:
        meta = record.metadata
        return {
            "id": record.id,
            "vector": [float(v) for v in record.vector],
            "type": str(meta.get("type", "")),
            "file_path": str(meta.get("filePath") or ""),
            "language": str(meta.get("language") or ""),
            "repo_name": str(meta.get("repoName") or ""),
            "metadata": json.dumps(meta, default=str),
        }

    def upsert(self, namespace: str, records: Iterable[TextRecord]) -> int:
        """Insert or replace *records* by id; returns the number written."""
        rows = [self._to_row(r) for r in records]
        if not rows:
            return 0
        dim = len(rows[0]["vector"])
        table = self._open(namespace)
        try:
            data = pa.Table.from_pylist(rows, schema=record_schema(dim))
            if table is None:
                self.db.create_table(sanitize_namespace(namespace), data=data)
            else:
                (
                    table.merge_insert("id")
                    .when_matched_update_all()
                    .when_not_matched_insert_all()
                    .execute(data)
                )
        except Exception as exc:
            raise VectorStoreError(f"Upsert into '{namespace}' failed: {exc}") from exc
        logger.debug("Upserted %d records into %s", len(rows), namespace)
        return len(rows)

    def query(
        self,
        namespace: str,
        vector: List[float],
        top_k: int = 10,
        filter: Optional[Dict[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        """Nearest records as ``{"id", "score", "metadata"}`` dicts, best first."""
        table = self._open(namespace)
        if table is None:
            return []
        where = build_where(filter)
        try:
            search = table.search(vector).metric("cosine").limit(top_k)
            if where:
                search = search.where(where)
            rows = search.to_list()
        except Exception as exc:
            raise VectorStoreError(f"Query on '{namespace}' failed: {exc}") from exc

        matches: List[Dict[str, Any]] = []
        for row in rows:
            try:
                metadata = json.loads(row.get("metadata") or "{}")
            except ValueError:
                metadata = {}
            matches.append({
                "id": row.get("id", ""),
                "score": 1.0 - float(row.get("_distance", 1.0)),
                "metadata": metadata,
            })
        return matches

    def describe_stats(self, namespace: str) -> Dict[str, int]:
        table = self._open(namespace)
        if table is None:
            return {"total_record_count": 0}
        try:
            return {"total_record_count": int(table.count_rows())}
        except Exception as exc:
            raise VectorStoreError(f"Cannot count records in '{namespace}': {exc}") from exc

    def delete_namespace(self, namespace: str) -> bool:
        table_name = sanitize_namespace(namespace)
        try:
            if table_name not in self.db.table_names():
                return False
            self.db.drop_table(table_name)
        except Exception as exc:
            raise VectorStoreError(f"Cannot drop namespace '{namespace}': {exc}") from exc
        return True

    def list_namespaces(self) -> List[str]:
        try:
            return sorted(t for t in self.db.table_names() if t != META_TABLE)
        except Exception as exc:
            raise VectorStoreError(f"Cannot list namespaces: {exc}") from exc
