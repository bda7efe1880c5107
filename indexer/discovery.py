"""Corpus discovery: enumerate input files below a root path."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Iterator, Union

from .errors import DiscoveryError

DEFAULT_PATTERN = "*.csv"


def _iter_matches(root: Path, pattern: str) -> Iterator[Path]:
    if root.is_file():
        yield root
        return
    candidates = sorted(p for p in root.glob(pattern) if p.is_file())
    for path in candidates:
        yield path


def list_files(root_path: Union[str, Path], pattern: str = DEFAULT_PATTERN) -> Iterator[Path]:
    """Yield files beneath ``root_path`` matching ``pattern`` (sorted for determinism).

    ``root_path`` may name a single file, in which case that file is the whole
    corpus. The root is validated eagerly so a bad path fails at call time
    rather than on first iteration; zero matches is not an error.
    """
    root = Path(root_path).expanduser()
    if not root.exists():
        raise DiscoveryError(f"Corpus root does not exist: {root}")
    if not os.access(root, os.R_OK) or (root.is_dir() and not os.access(root, os.X_OK)):
        raise DiscoveryError(f"Corpus root is not readable: {root}")
    return _iter_matches(root, pattern or DEFAULT_PATTERN)
