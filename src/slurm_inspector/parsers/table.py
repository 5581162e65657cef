"""Column layout handling shared by the listing parsers.

Status tools print whitespace- or delimiter-separated columns with an
optional header line. When a header is present, columns are located by
label; otherwise the layout's positional order applies. Surplus tokens on
a line are folded into the last column so free-text columns (reasons,
pending-job explanations) survive whitespace splitting.
"""

import re
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field, replace

from ..types import JobRecord, NodeRecord, PartitionRecord


@dataclass(frozen=True)
class ColumnLayout:
    """How to read one listing.

    Attributes:
        columns: Field names in positional order, used for headerless input.
        aliases: Upper-cased header label -> field name.
        key: Field that identifies a record; its label marks a header line.
        delimiter: Column separator, or ``None`` for runs of whitespace.
    """

    columns: tuple[str, ...]
    aliases: Mapping[str, str]
    key: str
    delimiter: str | None = None

    def with_overrides(
        self,
        columns: tuple[str, ...] | None = None,
        delimiter: str | None = None,
    ) -> "ColumnLayout":
        """Return a copy with a deployment-specific column order or delimiter.

        Raises:
            ValueError: If a column is not a field this layout knows about,
                or the key field is missing from the column order.
        """
        if columns is not None:
            known = set(self.aliases.values())
            if unknown := [c for c in columns if c not in known]:
                msg = f"unknown columns {unknown}; expected some of {sorted(known)}"
                raise ValueError(msg)
            if self.key not in columns:
                msg = f"column layout must include the {self.key!r} column"
                raise ValueError(msg)
        return replace(
            self,
            columns=self.columns if columns is None else tuple(columns),
            delimiter=self.delimiter if delimiter is None else delimiter,
        )


@dataclass(frozen=True)
class Row:
    """One data line split into named values."""

    line_number: int
    values: dict[str, str]
    missing: tuple[str, ...] = ()


@dataclass(frozen=True)
class ParseResult:
    """Records produced from one listing.

    ``warnings`` counts lines that needed any correction; ``dropped``
    counts the subset that produced no record at all (duplicates and
    lines without a usable key). ``lines`` is the number of data lines.
    """

    nodes: tuple[NodeRecord, ...] = ()
    partitions: tuple[PartitionRecord, ...] = ()
    jobs: tuple[JobRecord, ...] = ()
    warnings: int = 0
    dropped: int = 0
    lines: int = 0
    problems: tuple[str, ...] = field(default=(), compare=False, repr=False)


def _split(line: str, delimiter: str | None, maxsplit: int) -> list[str]:
    if delimiter is None:
        return line.split(None, maxsplit)
    return [token.strip() for token in line.split(delimiter, maxsplit)]


# Status tools print column labels in upper case: NODELIST, TIME_LEFT, S:C:T.
_LABEL_RE = re.compile(r"[A-Z][A-Z0-9_:/()%.+-]*")


def _header_columns(tokens: list[str], layout: ColumnLayout) -> list[str | None] | None:
    """Map header tokens to field names, or ``None`` if this is not a header.

    A header names the key column and consists of labels only, so a data
    line for a host called ``node`` is not mistaken for one.
    """
    if not all(_LABEL_RE.fullmatch(token.strip()) for token in tokens):
        return None
    labels = [token.strip() for token in tokens]
    columns = [layout.aliases.get(label) for label in labels]
    if layout.key not in columns:
        return None
    return columns


def read_rows(text: str, layout: ColumnLayout) -> Iterator[Row]:
    """Yield a ``Row`` for each non-blank data line of ``text``."""
    columns: list[str | None] | None = None
    header_tokens: list[str] | None = None

    for line_number, raw_line in enumerate(text.splitlines(), start=1):
        line = raw_line.strip()
        if not line:
            continue

        if columns is None:
            tokens = _split(line, layout.delimiter, -1)
            header = _header_columns(tokens, layout)
            if header is not None:
                columns, header_tokens = header, tokens
                continue
            columns = list(layout.columns)
        elif header_tokens is not None:
            # Concatenated output can repeat the header; it is not data.
            if _split(line, layout.delimiter, -1) == header_tokens:
                continue

        tokens = _split(line, layout.delimiter, len(columns) - 1)
        values = {
            name: token
            for name, token in zip(columns, tokens, strict=False)
            if name is not None
        }
        missing = tuple(name for name in columns[len(tokens) :] if name is not None)
        yield Row(line_number=line_number, values=values, missing=missing)
