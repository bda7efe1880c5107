"""
Error taxonomy for the page indexer.

Ingestion recovers row-, file- and commit-level failures locally (they are
logged and counted). Configuration-level failures propagate and stop the run.
Query-side failures are raised to the caller unchanged so that "no matches"
and "query failed" are never conflated.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional


class IndexerError(Exception):
    """Base class for every error raised by the indexer package."""


# ---------------------------------------------------------------------------
# Configuration-level (fatal)
# ---------------------------------------------------------------------------

class DiscoveryError(IndexerError):
    """Corpus root is missing or unreadable."""


class UnknownField(IndexerError, KeyError):
    """A field name is not declared in the schema catalog."""

    def __init__(self, name: str) -> None:
        super().__init__(name)
        self.name = name

    def __str__(self) -> str:
        return f"Unknown field: {self.name!r}"


class FieldMappingError(IndexerError):
    """Column layout refers to a field the schema does not declare."""


class SchemaMismatch(IndexerError):
    """An existing store was created with a different schema."""


class StoreExists(IndexerError):
    """A store is already present at the target path."""


# ---------------------------------------------------------------------------
# Row / write level (recovered and counted during ingestion)
# ---------------------------------------------------------------------------

class MalformedRecord(IndexerError):
    """A tabular row could not be parsed (e.g. unbalanced quoting)."""

    def __init__(self, message: str, *, path: Optional[Path] = None, line: Optional[int] = None) -> None:
        super().__init__(message)
        self.path = path
        self.line = line

    def __str__(self) -> str:
        base = super().__str__()
        if self.path is not None and self.line is not None:
            return f"{self.path}:{self.line}: {base}"
        if self.line is not None:
            return f"line {self.line}: {base}"
        return base


class WriteError(IndexerError):
    """Base class for failures reported by the index writer."""


class DocumentRejected(WriteError):
    """The engine refused a document on add."""


class CommitFailure(WriteError):
    """Commit failed; documents added since the previous commit are lost."""

    def __init__(self, message: str, *, lost: int = 0) -> None:
        super().__init__(message)
        self.lost = lost


# ---------------------------------------------------------------------------
# Query side
# ---------------------------------------------------------------------------

class QueryParseError(IndexerError, ValueError):
    """Query text is not accepted by the engine's grammar."""


class InvalidLimit(IndexerError, ValueError):
    """Result limit is not a positive integer."""


class IndexUnavailable(IndexerError):
    """The store cannot be opened for reading."""


class StoreNotFound(IndexUnavailable):
    """No store exists at the given path."""
