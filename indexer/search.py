"""
Page Search Engine.

A free-text query is parsed by tantivy's query parser against every
searchable field of the schema (title, body, state), executed on a fresh
reader snapshot and materialized into a bounded list of results ordered by
descending relevance score.

Usage:
    python -m indexer.search --index index --query "acme widgets"
    python -m indexer.search --query "state:california" --top 5 --json
"""

from __future__ import annotations

import argparse
import json
import logging
import re
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence, Union

from config_loader import ConfigError

from .config import load_config
from .errors import IndexerError, IndexUnavailable, InvalidLimit, QueryParseError
from .schema import IndexSchema
from .store import ENGINE_ERRORS, IndexStore, open_store

logger = logging.getLogger(__name__)


@dataclass
class SearchResult:
    """Single search result: relevance score plus the retrieved fields."""
    score: float
    document: Dict[str, str] = field(default_factory=dict)

    @property
    def title(self) -> str:
        return self.document.get("title", "")

    @property
    def url(self) -> Optional[str]:
        return self.document.get("url")

    def to_dict(self) -> Dict:
        """Convert to dictionary for JSON serialization."""
        return {"score": round(self.score, 6), **self.document}


# Quoted phrases, then ``name:`` field prefixes in what remains.
_PHRASE = re.compile(r'"(?:[^"\\]|\\.)*"')
_FIELD_PREFIX = re.compile(r'(?:^|(?<=[\s(+\-!]))([A-Za-z_][\w.]*):')


def _check_query_fields(query_text: str, schema: IndexSchema) -> None:
    """Reject field-prefixed clauses on fields that are stored but not searchable."""
    for name in _FIELD_PREFIX.findall(_PHRASE.sub(" ", query_text)):
        definition = schema.get_field(name)
        if definition is not None and not definition.searchable:
            raise QueryParseError(f"Field {name!r} is not searchable")


def _check_limit(limit) -> int:
    if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
        raise InvalidLimit(f"limit must be a positive integer, got {limit!r}")
    return limit


def _materialize(searcher, address, schema: IndexSchema) -> Dict[str, str]:
    doc = searcher.doc(address)
    values: Dict[str, str] = {}
    for name in schema.retrievable_fields():
        value = doc.get_first(name)
        if value is not None:
            values[name] = value
    return values


def search(
    store: IndexStore,
    schema: IndexSchema,
    query_text: str,
    limit: int,
    *,
    field_boosts: Optional[Mapping[str, float]] = None,
) -> List[SearchResult]:
    """
    Search every searchable field of ``schema`` for ``query_text``.

    Args:
        store: Opened index store
        schema: Schema whose searchable subset forms the default query fields
        query_text: Free-text query in the engine's query syntax
        limit: Maximum number of results (positive integer)
        field_boosts: Optional per-field score multipliers

    Returns:
        Up to ``limit`` SearchResult objects, ordered by non-increasing score

    Raises:
        InvalidLimit: limit is not a positive integer
        QueryParseError: the engine cannot parse query_text, or it names a
            field that is not searchable
        IndexUnavailable: no reader can be opened on the store
    """
    limit = _check_limit(limit)
    if not query_text or not query_text.strip():
        return []

    _check_query_fields(query_text, schema)
    fields = schema.searchable_fields()
    if field_boosts:
        for name in field_boosts:
            schema.field_capabilities(name)
    try:
        query = store.parse_query(query_text, fields, field_boosts)
    except ValueError as exc:
        raise QueryParseError(f"Cannot parse query {query_text!r}: {exc}") from exc

    searcher = store.snapshot()
    try:
        hits = searcher.search(query, limit).hits
        results = [
            SearchResult(score=float(score), document=_materialize(searcher, address, schema))
            for score, address in hits
        ]
    except ENGINE_ERRORS as exc:
        raise IndexUnavailable(f"Search on {store.path} failed: {exc}") from exc

    results.sort(key=lambda r: r.score, reverse=True)
    return results


class PageSearcher:
    """
    Holds an opened store for repeated queries.
    """

    def __init__(
        self,
        index_dir: Union[str, Path],
        schema: Optional[IndexSchema] = None,
        field_boosts: Optional[Mapping[str, float]] = None,
    ):
        self.index_dir = Path(index_dir)
        self.store = open_store(self.index_dir, schema)
        self.schema = self.store.schema
        self.field_boosts = dict(field_boosts or {})
        logger.info("Opened index %s with %d documents", self.index_dir, self.store.document_count())

    def search(self, query_text: str, top_k: int = 10) -> List[SearchResult]:
        return search(self.store, self.schema, query_text, top_k, field_boosts=self.field_boosts)


def print_results(query_text: str, results: Sequence[SearchResult], elapsed: float) -> None:
    print(f"\n{'=' * 60}")
    print(f"Query: {query_text}")
    print(f"Results: {len(results)} ({elapsed * 1000:.1f} ms)")
    print(f"{'=' * 60}\n")

    for i, result in enumerate(results, 1):
        print(f"{i}. {result.title}")
        print(f"   Score: {result.score:.6f}")
        if result.url:
            print(f"   URL: {result.url}")
        state = result.document.get("state")
        if state:
            print(f"   State: {state}")
        print()


# =============================================================================
# CLI Interface
# =============================================================================

def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Search the page index across title, body and state"
    )
    parser.add_argument(
        '--config',
        default=None,
        help='Path to configuration file (default: config.yml if present)'
    )
    parser.add_argument(
        '--index',
        default=None,
        help='Path to index directory (overrides indexer.query.index_dir)'
    )
    parser.add_argument(
        '--query',
        required=True,
        help='Search query'
    )
    parser.add_argument(
        '--top',
        type=int,
        default=None,
        help='Number of results to return (overrides indexer.query.top_k)'
    )
    parser.add_argument(
        '--json',
        action='store_true',
        help='Output results as JSON'
    )
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    if not logging.getLogger().hasHandlers():
        logging.basicConfig(level=logging.INFO, format='%(asctime)s [%(levelname)s] %(message)s')

    args = parse_args(argv)

    try:
        config = load_config(args.config)
    except ConfigError as e:
        print(f"[error] {e}", file=sys.stderr)
        return 1

    index_dir = Path(args.index or config.query.index_dir)
    top_k = args.top if args.top is not None else config.query.top_k

    try:
        searcher = PageSearcher(index_dir, field_boosts=config.query.field_boosts)
        started = time.perf_counter()
        results = searcher.search(args.query, top_k)
        elapsed = time.perf_counter() - started
    except IndexerError as e:
        logger.error("Search failed: %s", e)
        print(f"[error] {type(e).__name__}: {e}", file=sys.stderr)
        return 1

    if args.json:
        print(json.dumps([r.to_dict() for r in results], indent=2, ensure_ascii=False))
    else:
        print_results(args.query, results, elapsed)
    return 0


if __name__ == "__main__":
    sys.exit(main())
