"""Indexer settings read from the ``indexer`` and ``logs`` sections of config.yml."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from config_loader import ConfigError, get_section, load_optional_yaml_config, load_yaml_config

from .discovery import DEFAULT_PATTERN
from .records import DEFAULT_MAX_FIELD_SIZE, ColumnLayout
from .store import DEFAULT_BUFFER_BUDGET_BYTES


def _resolve_config_path(
    workspace: Optional[str], value: Optional[str], default_relative: str
) -> str:
    base = Path(workspace or ".")
    if value:
        candidate = Path(value).expanduser()
        if candidate.is_absolute():
            return str(candidate.resolve())
        parts = candidate.parts
        if parts and parts[0] == base.name:
            candidate = Path(*parts[1:]) if len(parts) > 1 else Path(".")
        return str((base / candidate).resolve())
    return str((base / default_relative).resolve())


@dataclass
class IndexerBuildConfig:
    corpus_root: str
    index_dir: str
    pattern: str = DEFAULT_PATTERN
    layout: ColumnLayout = ColumnLayout.FOUR_COLUMN
    batch_size: int = 1000
    buffer_budget_bytes: int = DEFAULT_BUFFER_BUDGET_BYTES
    workers: int = 1
    delimiter: str = ","
    has_header: bool = True
    encoding: str = "utf-8"
    max_field_size: int = DEFAULT_MAX_FIELD_SIZE
    # Directory for per-run JSON stats; None disables them.
    stats_dir: Optional[str] = None

    def __post_init__(self):
        self.layout = ColumnLayout.parse(self.layout)
        if self.batch_size < 1:
            raise ValueError("indexer.build.batch_size must be >= 1")
        if self.workers < 1:
            raise ValueError("indexer.build.workers must be >= 1")
        if len(self.delimiter) != 1:
            raise ValueError("indexer.build.delimiter must be a single character")
        # tantivy refuses writer budgets below 15MB per indexing thread.
        if self.buffer_budget_bytes < 15_000_000:
            raise ValueError("indexer.build.buffer_budget_bytes must be >= 15000000")
        if self.max_field_size < 1:
            raise ValueError("indexer.build.max_field_size must be >= 1")


@dataclass
class IndexerQueryConfig:
    index_dir: str
    top_k: int = 10
    field_boosts: Dict[str, float] = field(default_factory=dict)
    # Query run by main.py against an existing index when none is given on
    # the command line. Empty disables it.
    default_query: Optional[str] = None

    def __post_init__(self):
        if self.top_k < 1:
            raise ValueError("indexer.query.top_k must be >= 1")
        self.field_boosts = {str(k): float(v) for k, v in (self.field_boosts or {}).items()}


@dataclass
class LogsConfig:
    log_file: Optional[str] = None
    log_level: str = "INFO"


@dataclass
class IndexerConfig:
    build: IndexerBuildConfig
    query: IndexerQueryConfig
    logs: LogsConfig = field(default_factory=LogsConfig)

    @classmethod
    def from_app_config(cls, config: Dict[str, Any]) -> "IndexerConfig":
        workspace = config.get("workspace")
        indexer_section = get_section(config, "indexer")
        build_section = get_section(indexer_section, "build")
        query_section = get_section(indexer_section, "query")
        logs_section = get_section(config, "logs")

        index_dir = _resolve_config_path(
            workspace, build_section.get("index_dir") or indexer_section.get("index_dir"), "index"
        )
        corpus_root = _resolve_config_path(
            workspace, build_section.get("corpus_root") or indexer_section.get("corpus_root"), "data"
        )
        raw_stats = build_section.get("stats_dir")
        stats_dir = _resolve_config_path(workspace, raw_stats, "stats") if raw_stats else None

        try:
            build_cfg = IndexerBuildConfig(
                corpus_root=corpus_root,
                index_dir=index_dir,
                pattern=build_section.get("pattern", DEFAULT_PATTERN),
                layout=build_section.get("layout", ColumnLayout.FOUR_COLUMN.value),
                batch_size=int(build_section.get("batch_size", 1000)),
                buffer_budget_bytes=int(build_section.get("buffer_budget_bytes", DEFAULT_BUFFER_BUDGET_BYTES)),
                workers=int(build_section.get("workers", 1)),
                delimiter=str(build_section.get("delimiter", ",")),
                has_header=bool(build_section.get("has_header", True)),
                encoding=str(build_section.get("encoding", "utf-8")),
                max_field_size=int(build_section.get("max_field_size", DEFAULT_MAX_FIELD_SIZE)),
                stats_dir=stats_dir,
            )

            raw_query_index = query_section.get("index_dir")
            if raw_query_index is not None:
                query_index = _resolve_config_path(workspace, raw_query_index, "index")
            else:
                query_index = index_dir

            query_cfg = IndexerQueryConfig(
                index_dir=query_index,
                top_k=int(query_section.get("top_k", 10)),
                field_boosts=query_section.get("field_boosts") or {},
                default_query=query_section.get("default_query") or None,
            )
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"Invalid indexer configuration: {exc}") from exc

        raw_log = logs_section.get("log_file")
        logs_cfg = LogsConfig(
            log_file=_resolve_config_path(workspace, raw_log, "logs/indexer.log") if raw_log else None,
            log_level=str(logs_section.get("log_level", "INFO")),
        )

        return cls(build=build_cfg, query=query_cfg, logs=logs_cfg)

    @classmethod
    def defaults(cls, workspace: Optional[str] = None) -> "IndexerConfig":
        return cls.from_app_config({"workspace": workspace} if workspace else {})


def load_config(path: Optional[str] = None) -> IndexerConfig:
    """Load config from ``path`` (must exist) or ./config.yml (optional)."""
    app_config = load_yaml_config(path) if path else load_optional_yaml_config("config.yml")
    return IndexerConfig.from_app_config(app_config)
