"""Parsers for resource manager status listings.

Turns the free-form tabular text printed by the status tools into record
tuples. Parsing never raises on malformed content; problems are reported
as a warning count on the result.

Exports:
    parse: Dispatch raw text to the parser for a source kind.
    ColumnLayout: Column order, header aliases and delimiter of a listing.
    ParseResult: Records plus warning and dropped-line counts.
    default_layout: The built-in layout for a source kind.
"""

from ..types import SourceKind
from . import fields, jobs, nodes
from .table import ColumnLayout, ParseResult

__all__ = [
    "ColumnLayout",
    "ParseResult",
    "default_layout",
    "fields",
    "jobs",
    "nodes",
    "parse",
]


def default_layout(kind: SourceKind) -> ColumnLayout:
    """Return the built-in column layout for ``kind``."""
    if kind is SourceKind.NODES:
        return nodes.DEFAULT_LAYOUT
    return jobs.DEFAULT_LAYOUT


def parse(
    kind: SourceKind,
    text: str,
    layout: ColumnLayout | None = None,
) -> ParseResult:
    """Parse raw listing text from the given source.

    Args:
        kind: Which listing ``text`` came from.
        text: Raw command output.
        layout: Column layout for headerless input; defaults to the
            built-in layout for ``kind``.

    Returns:
        ParseResult whose node/partition or job section is filled in.
    """
    layout = layout or default_layout(kind)
    if kind is SourceKind.NODES:
        return nodes.parse(text, layout)
    return jobs.parse(text, layout)
