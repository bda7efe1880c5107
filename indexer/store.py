"""
Persistence layer: a narrow adapter over the tantivy index engine.

The on-disk segment format belongs to tantivy and is treated as opaque. The
only artefact this module writes itself is ``manifest.json`` next to the
segments, recording the schema the store was created with so that later
runs can detect a schema mismatch before touching any field. The manifest is
written atomically by first dumping to a temporary path and then renaming
into place.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

import tantivy

from .errors import (
    CommitFailure,
    DocumentRejected,
    IndexerError,
    IndexUnavailable,
    SchemaMismatch,
    StoreExists,
    StoreNotFound,
)
from .schema import FieldDefinition, IndexSchema

logger = logging.getLogger(__name__)

MANIFEST_NAME = "manifest.json"
DEFAULT_BUFFER_BUDGET_BYTES = 50_000_000

# tantivy surfaces its own errors as ValueError; I/O problems may come through
# as OSError or RuntimeError depending on where they happen.
ENGINE_ERRORS = (ValueError, RuntimeError, OSError)

PathLike = Union[str, Path]


def _atomic_write(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    tmp_path.write_text(content, encoding="utf-8")
    os.replace(tmp_path, path)


def write_manifest(path: Path, schema: IndexSchema) -> None:
    payload = {
        "index_type": "tantivy",
        "created_at": datetime.now().isoformat(),
        "schema_version": "1.0",
        "fields": schema.fingerprint(),
    }
    _atomic_write(path / MANIFEST_NAME, json.dumps(payload, indent=2, ensure_ascii=False) + "\n")


def read_manifest(path: Path) -> Optional[Dict[str, Any]]:
    manifest_path = Path(path) / MANIFEST_NAME
    if not manifest_path.exists():
        return None
    try:
        with manifest_path.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning("Ignoring unreadable manifest %s: %s", manifest_path, exc)
        return None
    return data if isinstance(data, dict) else None


def _schema_from_manifest(manifest: Mapping[str, Any]) -> Optional[IndexSchema]:
    fields = manifest.get("fields")
    if not isinstance(fields, dict) or not fields:
        return None
    return IndexSchema({
        name: FieldDefinition(
            name=name,
            searchable=bool(flags.get("searchable")),
            retrievable=bool(flags.get("retrievable")),
        )
        for name, flags in fields.items()
    })


class StoreWriter:
    """
    Thread-safe facade over a tantivy ``IndexWriter``.

    ``add`` and ``commit`` share one lock so workers on different files never
    call into the engine concurrently. A failed commit rolls the engine back
    to the previous commit: the documents of that batch are counted as lost
    and never silently redelivered with a later batch.
    """

    def __init__(self, engine_writer, schema: IndexSchema) -> None:
        self._writer = engine_writer
        self.schema = schema
        self._lock = threading.Lock()
        self._closed = False
        self.pending = 0
        self.added_total = 0
        self.committed_total = 0
        self.lost_total = 0
        self.commits = 0
        self.failed_commits = 0

    def __enter__(self) -> "StoreWriter":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _to_engine_document(self, document: Mapping[str, str]) -> tantivy.Document:
        doc = tantivy.Document()
        for name, value in document.items():
            self.schema.field_capabilities(name)
            if not isinstance(value, str):
                raise DocumentRejected(
                    f"Field {name!r} expects text, got {type(value).__name__}"
                )
            doc.add_text(name, value)
        return doc

    def add(self, document: Mapping[str, str]) -> None:
        doc = self._to_engine_document(document)
        with self._lock:
            if self._closed:
                raise DocumentRejected("Writer is closed")
            try:
                self._writer.add_document(doc)
            except ENGINE_ERRORS as exc:
                raise DocumentRejected(str(exc)) from exc
            self.pending += 1
            self.added_total += 1

    def commit(self) -> int:
        """Commit pending documents; returns how many became visible."""
        with self._lock:
            batch = self.pending
            try:
                self._writer.commit()
            except ENGINE_ERRORS as exc:
                self.pending = 0
                self.lost_total += batch
                self.failed_commits += 1
                self._rollback()
                raise CommitFailure(f"Commit of {batch} document(s) failed: {exc}", lost=batch) from exc
            self.pending = 0
            self.committed_total += batch
            self.commits += 1
            return batch

    def _rollback(self) -> None:
        try:
            self._writer.rollback()
        except ENGINE_ERRORS as exc:
            logger.error("Rollback after failed commit also failed: %s", exc)

    def close(self) -> None:
        """Release the engine writer (waits for background merges)."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            if self.pending:
                logger.warning("Closing writer with %d uncommitted document(s)", self.pending)
            self._writer.wait_merging_threads()

    def stats(self) -> Dict[str, int]:
        return {
            "added": self.added_total,
            "committed": self.committed_total,
            "lost": self.lost_total,
            "commits": self.commits,
            "failed_commits": self.failed_commits,
        }


class IndexStore:
    """An opened tantivy index together with the schema it was built with."""

    def __init__(self, path: Path, schema: IndexSchema, index: tantivy.Index) -> None:
        self.path = Path(path)
        self.schema = schema
        self.index = index

    def writer(self, buffer_budget_bytes: int = DEFAULT_BUFFER_BUDGET_BYTES, num_threads: int = 0) -> StoreWriter:
        try:
            engine_writer = self.index.writer(heap_size=int(buffer_budget_bytes), num_threads=int(num_threads))
        except ENGINE_ERRORS as exc:
            raise IndexerError(f"Cannot open a writer on {self.path}: {exc}") from exc
        return StoreWriter(engine_writer, self.schema)

    def snapshot(self) -> tantivy.Searcher:
        """Point-in-time searcher reflecting the latest commit."""
        try:
            self.index.reload()
            return self.index.searcher()
        except ENGINE_ERRORS as exc:
            raise IndexUnavailable(f"Cannot open a reader on {self.path}: {exc}") from exc

    def parse_query(self, text: str, fields, field_boosts: Optional[Mapping[str, float]] = None):
        if field_boosts:
            return self.index.parse_query(text, list(fields), field_boosts=dict(field_boosts))
        return self.index.parse_query(text, list(fields))

    def document_count(self) -> int:
        return int(self.snapshot().num_docs)


def exists(path: PathLike) -> bool:
    """True iff a valid index structure is present at ``path``."""
    p = Path(path)
    if not p.is_dir():
        return False
    try:
        return bool(tantivy.Index.exists(str(p)))
    except ENGINE_ERRORS:
        return False


def create_store(path: PathLike, schema: IndexSchema) -> IndexStore:
    """Create a new store at ``path``; fails with StoreExists if one is present."""
    p = Path(path)
    if exists(p):
        raise StoreExists(f"An index already exists at {p}")
    try:
        p.mkdir(parents=True, exist_ok=True)
        index = tantivy.Index(schema.to_tantivy(), path=str(p), reuse=False)
    except ENGINE_ERRORS as exc:
        raise IndexerError(f"Cannot create index at {p}: {exc}") from exc
    write_manifest(p, schema)
    logger.info("Created index at %s with fields %s", p, ", ".join(schema.field_names()))
    return IndexStore(p, schema, index)


def open_store(path: PathLike, schema: Optional[IndexSchema] = None) -> IndexStore:
    """Open an existing store.

    When ``schema`` is given it must match the schema recorded at creation
    time, otherwise SchemaMismatch is raised. Without it the recorded schema
    (or the default page schema for stores lacking a manifest) is used.
    """
    p = Path(path)
    if not exists(p):
        raise StoreNotFound(f"No index found at {p}")
    try:
        index = tantivy.Index.open(str(p))
    except ENGINE_ERRORS as exc:
        raise IndexUnavailable(f"Cannot open index at {p}: {exc}") from exc

    manifest = read_manifest(p)
    stored_schema = _schema_from_manifest(manifest) if manifest else None
    if schema is not None and stored_schema is not None:
        if stored_schema.fingerprint() != schema.fingerprint():
            raise SchemaMismatch(
                f"Index at {p} was created with fields {stored_schema.fingerprint()}, "
                f"expected {schema.fingerprint()}"
            )
    effective = schema or stored_schema or IndexSchema.define()
    return IndexStore(p, effective, index)


def open_or_create_store(path: PathLike, schema: IndexSchema) -> IndexStore:
    if exists(path):
        return open_store(path, schema)
    return create_store(path, schema)


def document_count(path: PathLike) -> int:
    """Number of committed documents visible to a fresh reader."""
    return open_store(path).document_count()


def size_on_disk(path: PathLike) -> int:
    """Aggregate size in bytes of every file persisted under ``path``."""
    p = Path(path)
    if not p.is_dir():
        raise StoreNotFound(f"No index found at {p}")
    total = 0
    for child in p.rglob("*"):
        try:
            if child.is_file():
                total += child.stat().st_size
        except OSError:
            # Segment files can vanish while a merge completes.
            continue
    return total


def format_bytes(num_bytes: int) -> str:
    """Render byte counts using human-friendly units."""
    step = 1024.0
    units = ["B", "KB", "MB", "GB", "TB"]
    value = float(num_bytes)
    for unit in units:
        if value < step or unit == units[-1]:
            return f"{value:.2f} {unit}"
        value /= step
    return f"{value:.2f} {units[-1]}"
