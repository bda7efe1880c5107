"""
Index Schema Definition.

This module defines the index schema with justification for each field.
The schema is designed to support:
- Full-text search on page title, body and state
- Retrieval of every field with search results (URL is retrieval-only)

Field capabilities:
- searchable: tokenized with the engine's default analyzer and part of the
  default query fields
- retrievable: value stored verbatim and returned with search results

The schema is fixed when an index is created. Later ingestion runs against
the same index must use an identical schema.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional

import tantivy

from .errors import UnknownField


@dataclass(frozen=True)
class FieldDefinition:
    """Definition of a single index field."""
    name: str
    searchable: bool
    retrievable: bool
    justification: str = ""

    @property
    def tokenizer(self) -> str:
        return "default" if self.searchable else "raw"


# ============================================================================
# INDEX SCHEMA DEFINITION WITH JUSTIFICATIONS
# ============================================================================

FIELD_DEFINITIONS: Dict[str, FieldDefinition] = {
    "title": FieldDefinition(
        name="title",
        searchable=True,
        retrievable=True,
        justification="""
        Page title.
        Tokenized for full-text search (e.g., "Acme Corp" matches "acme").
        Stored for display in search results.
        """
    ),

    "url": FieldDefinition(
        name="url",
        searchable=False,
        retrievable=True,
        justification="""
        Page URL.
        Stored only - used as metadata to navigate back to the source.
        Not tokenized: URLs are atomic identifiers, not query text.
        """
    ),

    "body": FieldDefinition(
        name="body",
        searchable=True,
        retrievable=True,
        justification="""
        Page body text.
        Tokenized for full-text search; primary field for relevance ranking.
        Stored so results can be shown without going back to the corpus.
        """
    ),

    "state": FieldDefinition(
        name="state",
        searchable=True,
        retrievable=True,
        justification="""
        Geographic state of the company that owns the URL (if known).
        Tokenized so "california" matches "California".
        """
    ),
}


class IndexSchema:
    """
    Index schema manager providing field definitions and engine configuration.
    """

    def __init__(self, fields: Optional[Dict[str, FieldDefinition]] = None):
        self.fields: Dict[str, FieldDefinition] = dict(fields if fields is not None else FIELD_DEFINITIONS)
        for name, field in self.fields.items():
            if name != field.name:
                raise ValueError(f"Field key {name!r} does not match definition name {field.name!r}")

    @classmethod
    def define(cls) -> "IndexSchema":
        """Return the fixed page schema."""
        return cls(FIELD_DEFINITIONS)

    def field_capabilities(self, name: str) -> FieldDefinition:
        """Get field definition by name, raising UnknownField if undeclared."""
        try:
            return self.fields[name]
        except KeyError:
            raise UnknownField(name) from None

    def get_field(self, name: str):
        return self.fields.get(name)

    def __contains__(self, name: str) -> bool:
        return name in self.fields

    def field_names(self) -> List[str]:
        return list(self.fields)

    def searchable_fields(self) -> List[str]:
        """Get names of all full-text searchable fields."""
        return [name for name, field in self.fields.items() if field.searchable]

    def retrievable_fields(self) -> List[str]:
        """Get names of all stored fields."""
        return [name for name, field in self.fields.items() if field.retrievable]

    def fingerprint(self) -> Dict[str, Dict[str, bool]]:
        """Field name -> capability flags, used to detect schema mismatch."""
        return {
            name: {"searchable": field.searchable, "retrievable": field.retrievable}
            for name, field in self.fields.items()
        }

    def to_tantivy(self) -> tantivy.Schema:
        """Build the tantivy schema for this catalog."""
        builder = tantivy.SchemaBuilder()
        for field in self.fields.values():
            builder.add_text_field(
                field.name,
                stored=field.retrievable,
                tokenizer_name=field.tokenizer,
                index_option="position" if field.searchable else "basic",
            )
        return builder.build()

    def get_schema_documentation(self) -> str:
        """Generate human-readable schema documentation."""
        lines = [
            "# Page Index Schema",
            "",
            "## Field Definitions",
            "",
        ]

        for name, field in self.fields.items():
            lines.append(f"### {name}")
            lines.append(f"- **Searchable**: {field.searchable}")
            lines.append(f"- **Retrievable**: {field.retrievable}")
            lines.append(f"- **Tokenizer**: {field.tokenizer}")
            lines.append("")
            if field.justification:
                lines.append("**Justification**:")
                lines.append(field.justification.strip())
                lines.append("")

        return "\n".join(lines)


if __name__ == "__main__":
    print(IndexSchema.define().get_schema_documentation())
