import argparse
import logging
import sys
import time
from pathlib import Path
from typing import List, Optional

from config_loader import ConfigError
from indexer.build import IndexBuilder, options_from_config, print_summary
from indexer.config import IndexerConfig, load_config
from indexer.errors import IndexerError
from indexer.search import PageSearcher, print_results
from indexer.store import document_count, exists, size_on_disk

logger = logging.getLogger(__name__)


def _ensure_dir(p: Path) -> None:
    p.mkdir(parents=True, exist_ok=True)


def _attach_file_logging(log_path: Path, level: str) -> None:
    """Attach a file handler to root logger if not already present."""
    root = logging.getLogger()
    for h in root.handlers:
        if isinstance(h, logging.FileHandler) and Path(h.baseFilename) == log_path:
            return

    _ensure_dir(log_path.parent)
    file_handler = logging.FileHandler(log_path, encoding="utf-8")
    file_handler.setLevel(getattr(logging, level.upper(), logging.INFO))
    formatter = logging.Formatter('%(asctime)s [%(levelname)s] %(name)s: %(message)s',
                                  datefmt='%Y-%m-%d %H:%M:%S')
    file_handler.setFormatter(formatter)
    root.addHandler(file_handler)


def preflight_environment(config: IndexerConfig) -> None:
    """Attach file logging when a log file is configured."""
    if not config.logs.log_file:
        return
    log_path = Path(config.logs.log_file)
    _attach_file_logging(log_path, config.logs.log_level)
    logger.info("Logging to %s", log_path)


def build(config: IndexerConfig) -> None:
    options = options_from_config(config)
    logger.info("No index at %s, building from %s", options.index_dir, options.corpus_root)
    started = time.perf_counter()
    summary = IndexBuilder(options).build()
    print_summary(summary, options.index_dir)
    print(f"Build time: {time.perf_counter() - started:.2f}s")


def report(index_dir: Path, query: Optional[str], top_k: int, config: IndexerConfig) -> None:
    count = document_count(index_dir)
    size_mb = size_on_disk(index_dir) / (1024 * 1024)

    print("\n=== Page Index ===")
    print(f"Location: {index_dir}")
    print(f"Documents: {count}")
    print(f"Size: {size_mb:.2f} MB")
    print("==================")

    if not query:
        return

    searcher = PageSearcher(index_dir, field_boosts=config.query.field_boosts)
    started = time.perf_counter()
    results = searcher.search(query, top_k)
    print_results(query, results, time.perf_counter() - started)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description='Build the page index if it is missing, otherwise report on it and query it'
    )
    parser.add_argument(
        '--config',
        required=False,
        help='Path to unified config YAML file (default: config.yml if present)',
        default=None
    )
    parser.add_argument(
        '--query',
        required=False,
        help='Query to run against an existing index',
        default=None
    )
    parser.add_argument(
        '--top',
        type=int,
        required=False,
        help='Number of results to return',
        default=None
    )
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)

    try:
        config = load_config(args.config)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if not logging.getLogger().hasHandlers():
        logging.basicConfig(
            level=getattr(logging, config.logs.log_level.upper(), logging.INFO),
            format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

    preflight_environment(config)

    index_dir = Path(config.build.index_dir)
    query = args.query or config.query.default_query
    top_k = args.top if args.top is not None else config.query.top_k

    try:
        if not exists(index_dir):
            build(config)
        else:
            report(index_dir, query, top_k, config)
    except (IndexerError, OSError) as e:
        logger.error("Run failed: %s", e)
        print(f"Error: {type(e).__name__}: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())
