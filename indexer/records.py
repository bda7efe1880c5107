"""
Record mapping helpers for the ingestion pipeline.

Turns raw CSV rows into schema-conformant documents. Column-to-field mapping
is positional and chosen once per run through a ``ColumnLayout``; it is never
inferred per row. Short rows are padded with a placeholder instead of being
rejected, so every document carries a value for every schema field.
"""

from __future__ import annotations

import csv
import sys
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Deque, Dict, Iterator, List, Mapping, Optional, Sequence, TextIO, Tuple

from .errors import FieldMappingError, MalformedRecord
from .schema import IndexSchema

PLACEHOLDER = "NA"

# Web page bodies easily exceed csv's 128 KiB default.
DEFAULT_MAX_FIELD_SIZE = 64 * 1024 * 1024

Document = Dict[str, str]


class ColumnLayout(Enum):
    """Supported positional layouts of the input CSV files."""
    FOUR_COLUMN = "four_column"                # title,url,body,state
    SIX_COLUMN_WITH_ID = "six_column_with_id"  # index,title,url,body,id,state

    @property
    def offsets(self) -> Dict[str, int]:
        return dict(_LAYOUT_OFFSETS[self])

    @property
    def width(self) -> int:
        return max(_LAYOUT_OFFSETS[self].values()) + 1

    @classmethod
    def parse(cls, value) -> "ColumnLayout":
        """Accept a member, its value, its name, or a column count (4 / 6)."""
        if isinstance(value, cls):
            return value
        key = str(value).strip().lower().replace("-", "_")
        for layout in cls:
            if key in (layout.value, layout.name.lower(), str(layout.width)):
                return layout
        allowed = ", ".join(layout.value for layout in cls)
        raise ValueError(f"Unknown column layout {value!r}; expected one of: {allowed}")


_LAYOUT_OFFSETS: Dict[ColumnLayout, Dict[str, int]] = {
    ColumnLayout.FOUR_COLUMN: {"title": 0, "url": 1, "body": 2, "state": 3},
    ColumnLayout.SIX_COLUMN_WITH_ID: {"title": 1, "url": 2, "body": 3, "state": 5},
}


@dataclass
class RawRecord:
    """One row read from a CSV file, or the error that prevented reading it."""
    line: int
    values: Optional[List[str]] = None
    error: Optional[MalformedRecord] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def validate_layout(layout: ColumnLayout, schema: IndexSchema) -> None:
    """Raise FieldMappingError if ``layout`` maps a field ``schema`` does not declare."""
    missing = [name for name in layout.offsets if name not in schema]
    if missing:
        raise FieldMappingError(
            f"Column layout {layout.value} maps fields not declared in the schema: {', '.join(missing)}"
        )


def map_row(
    raw_record: Sequence[Optional[str]],
    layout: ColumnLayout,
    schema: Optional[IndexSchema] = None,
) -> Document:
    """Build a document with exactly one value per schema field.

    Missing cells (short rows, ``None`` values) and fields the layout does not
    cover are filled with ``PLACEHOLDER``.
    """
    schema = schema or IndexSchema.define()
    offsets: Mapping[str, int] = _LAYOUT_OFFSETS[layout]
    validate_layout(layout, schema)

    document: Document = {}
    for name in schema.field_names():
        offset = offsets.get(name)
        value = None
        if offset is not None and offset < len(raw_record):
            value = raw_record[offset]
        document[name] = value if value is not None else PLACEHOLDER
    return document


def set_field_size_limit(limit: int = DEFAULT_MAX_FIELD_SIZE) -> None:
    """Raise the csv module's per-field size limit (process-wide)."""
    try:
        csv.field_size_limit(limit)
    except OverflowError:
        csv.field_size_limit(min(limit, sys.maxsize // 2))


class _LineFeed:
    """Line iterator for csv.reader that can replay the lines of a failed record.

    Tracks the physical lines consumed by the record being parsed so that,
    when the parser rejects it, every line after its first one is read again.
    An unclosed quote therefore costs one line, not the rest of the file.
    """

    def __init__(self, handle: TextIO) -> None:
        self._source = iter(handle)
        self._replay: Deque[Tuple[int, str]] = deque()
        self._next_line = 1
        self._record: List[Tuple[int, str]] = []

    def __iter__(self) -> "_LineFeed":
        return self

    def __next__(self) -> str:
        if self._replay:
            item = self._replay.popleft()
        else:
            item = (self._next_line, next(self._source))
            self._next_line += 1
        self._record.append(item)
        return item[1]

    def start_record(self) -> None:
        self._record = []

    @property
    def record_line(self) -> int:
        """Physical line number where the current record starts."""
        return self._record[0][0] if self._record else self._next_line

    def replay_after_first(self) -> None:
        self._replay.extendleft(reversed(self._record[1:]))
        self._record = []


def iter_raw_records(
    handle: TextIO,
    *,
    delimiter: str = ",",
    has_header: bool = True,
) -> Iterator[RawRecord]:
    """Yield rows from an open CSV handle one-by-one (streaming).

    Rows the csv parser rejects (strict quoting) are yielded as RawRecord with
    ``error`` set; parsing then resumes on the line after the rejected row's
    first line.
    """
    feed = _LineFeed(handle)
    reader = csv.reader(feed, delimiter=delimiter, strict=True)
    skip_header = has_header
    while True:
        feed.start_record()
        try:
            values = next(reader)
        except StopIteration:
            return
        except csv.Error as exc:
            line = feed.record_line
            feed.replay_after_first()
            reader = csv.reader(feed, delimiter=delimiter, strict=True)
            yield RawRecord(line=line, error=MalformedRecord(str(exc), line=line))
            continue

        if skip_header:
            skip_header = False
            continue
        if not values:
            # Blank line
            continue
        yield RawRecord(line=feed.record_line, values=values)
