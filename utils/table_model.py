"""
📋 Formatted Table Model

Renderer-independent description of a report table:

- ``ColumnHeader``: a node of the column-header tree. Leaves carry a data
  ``key``; inner nodes span their ``children``.
- ``DataRow`` / ``GroupRow``: the recursive row tree. A data row holds cell
  values keyed by leaf column keys, a group row holds nested rows.
- ``FormattedTable``: title, header tree, rows and footnotes, with the
  row-header depth checked on construction.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any, Union

import pandas as pd

from config import CONFIG

RowHeader = tuple[str | None, ...]


class TableStructureError(ValueError):
    """A table violates the row-header depth invariant."""


@dataclass(frozen=True)
class ColumnHeader:
    header: str
    key: str | None = None
    children: tuple[ColumnHeader, ...] = ()
    footnote: str | None = None

    def leaves(self) -> list[ColumnHeader]:
        if not self.children:
            return [self]
        out: list[ColumnHeader] = []
        for child in self.children:
            out.extend(child.leaves())
        return out

    def depth(self) -> int:
        return 1 + max((child.depth() for child in self.children), default=0)

    def to_dict(self) -> dict[str, Any]:
        node: dict[str, Any] = {"header": self.header}
        if self.key is not None:
            node["key"] = self.key
        if self.children:
            node["children"] = [child.to_dict() for child in self.children]
        if self.footnote is not None:
            node["footnote"] = self.footnote
        return node


@dataclass(frozen=True)
class DataRow:
    header: RowHeader
    cells: dict[str, Any]
    notes: tuple[str, ...] = ()


@dataclass(frozen=True)
class GroupRow:
    header: RowHeader
    children: tuple[Row, ...]


Row = Union[DataRow, GroupRow]


def iter_rows(rows: tuple[Row, ...] | list[Row], depth: int = 0) -> Iterator[tuple[int, Row]]:
    """Depth-first walk over a row tree yielding ``(nesting level, row)``."""
    for row in rows:
        yield depth, row
        if isinstance(row, GroupRow):
            yield from iter_rows(row.children, depth + 1)


def _row_to_dict(row: Row) -> dict[str, Any]:
    node: dict[str, Any] = {"rowHeader": list(row.header)}
    if isinstance(row, GroupRow):
        node["children"] = [_row_to_dict(child) for child in row.children]
    else:
        node.update(row.cells)
        if row.notes:
            node["notes"] = list(row.notes)
    return node


@dataclass(frozen=True)
class FormattedTable:
    """
    A titled report table ready for a renderer.

    The first ``row_header_columns`` leaves of the column-header tree label
    the row-header columns; the remaining leaves name the data cells.
    """

    title: str
    column_headers: tuple[ColumnHeader, ...]
    rows: tuple[Row, ...]
    row_header_columns: int
    footnotes: tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        if CONFIG.get("validation.validate_tables", True):
            self.check_structure()

    def check_structure(self) -> None:
        """
        Verify the row tree against the declared row-header depth.

        Raises:
            TableStructureError: If a header tuple has the wrong length or a
                group row has no children.
        """
        for _level, row in iter_rows(self.rows):
            if len(row.header) != self.row_header_columns:
                raise TableStructureError(
                    f"{self.title}: row header {row.header!r} has {len(row.header)} "
                    f"entries, expected {self.row_header_columns}"
                )
            if isinstance(row, GroupRow) and not row.children:
                raise TableStructureError(f"{self.title}: group row {row.header!r} has no children")

    @property
    def leaf_columns(self) -> list[ColumnHeader]:
        leaves: list[ColumnHeader] = []
        for header in self.column_headers:
            leaves.extend(header.leaves())
        return leaves

    @property
    def data_keys(self) -> list[str]:
        return [leaf.key for leaf in self.leaf_columns[self.row_header_columns:] if leaf.key]

    def iter_data_rows(self) -> Iterator[DataRow]:
        for _level, row in iter_rows(self.rows):
            if isinstance(row, DataRow):
                yield row

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready form using the renderer's camelCase keys."""
        table: dict[str, Any] = {
            "title": self.title,
            "columnHeaders": [header.to_dict() for header in self.column_headers],
            "rows": [_row_to_dict(row) for row in self.rows],
        }
        if self.footnotes:
            table["footnotes"] = list(self.footnotes)
        return table

    def to_dataframe(self) -> pd.DataFrame:
        """
        Flatten the row tree into one record per data row.

        Row-header cells inherit the nearest non-blank value from their
        ancestors so each record is self-describing. Data columns are named
        by the path of spanning headers leading to their leaf.
        """
        header_names = [
            leaf.header or f"rowHeader{i + 1}"
            for i, leaf in enumerate(self.leaf_columns[: self.row_header_columns])
        ]
        paths = _leaf_paths(self.column_headers)[self.row_header_columns:]
        data_columns = [(key, " / ".join(path)) for key, path in paths if key]

        records: list[dict[str, Any]] = []

        def walk(rows: tuple[Row, ...], inherited: list[str | None]) -> None:
            for row in rows:
                merged = [own if own is not None else parent for own, parent in zip(row.header, inherited)]
                if isinstance(row, GroupRow):
                    walk(row.children, merged)
                    continue
                record: dict[str, Any] = dict(zip(header_names, merged))
                for key, column in data_columns:
                    record[column] = row.cells.get(key)
                records.append(record)

        walk(self.rows, [None] * self.row_header_columns)
        return pd.DataFrame.from_records(records, columns=header_names + [c for _k, c in data_columns])


def _leaf_paths(headers: tuple[ColumnHeader, ...], prefix: tuple[str, ...] = ()) -> list[tuple[str | None, tuple[str, ...]]]:
    paths: list[tuple[str | None, tuple[str, ...]]] = []
    for header in headers:
        path = prefix + ((header.header,) if header.header else ())
        if header.children:
            paths.extend(_leaf_paths(header.children, path))
        else:
            paths.append((header.key, path))
    return paths
