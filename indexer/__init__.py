"""
tantivy-based indexer for CSV page corpora.

This module provides:
- IndexSchema: the fixed field catalog (title, url, body, state)
- map_row / ColumnLayout: positional CSV row to document mapping
- list_files: corpus discovery under a root path
- ingest / build_index: checkpointed batch ingestion with failure accounting
- search / PageSearcher: multi-field ranked search
- exists / document_count / size_on_disk: index introspection
"""

from .build import FileStats, IndexBuilder, IngestSummary, build_index, ingest
from .discovery import list_files
from .errors import (
    CommitFailure,
    DiscoveryError,
    DocumentRejected,
    FieldMappingError,
    IndexerError,
    IndexUnavailable,
    InvalidLimit,
    MalformedRecord,
    QueryParseError,
    SchemaMismatch,
    StoreExists,
    StoreNotFound,
    UnknownField,
)
from .records import PLACEHOLDER, ColumnLayout, map_row
from .schema import FIELD_DEFINITIONS, FieldDefinition, IndexSchema
from .search import PageSearcher, SearchResult, search
from .store import (
    IndexStore,
    StoreWriter,
    create_store,
    document_count,
    exists,
    open_or_create_store,
    open_store,
    size_on_disk,
)

__all__ = [
    'FIELD_DEFINITIONS',
    'FieldDefinition',
    'IndexSchema',
    'PLACEHOLDER',
    'ColumnLayout',
    'map_row',
    'list_files',
    'FileStats',
    'IngestSummary',
    'IndexBuilder',
    'ingest',
    'build_index',
    'SearchResult',
    'PageSearcher',
    'search',
    'IndexStore',
    'StoreWriter',
    'create_store',
    'open_store',
    'open_or_create_store',
    'exists',
    'document_count',
    'size_on_disk',
    'IndexerError',
    'DiscoveryError',
    'MalformedRecord',
    'FieldMappingError',
    'UnknownField',
    'CommitFailure',
    'DocumentRejected',
    'QueryParseError',
    'InvalidLimit',
    'IndexUnavailable',
    'StoreNotFound',
    'SchemaMismatch',
    'StoreExists',
]
