"""Partition dataset rows into factor-level groups."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

import pandas as pd

from logger import get_logger
from utils.explore_types import Variable, is_missing_value

logger = get_logger(__name__)

GroupKey = tuple[Any, ...]

# Key of the single implicit group used when no factor is configured
ALL_DATA: GroupKey = ()

KEY_SEPARATOR = " | "


@dataclass(frozen=True)
class Group:
    key: GroupKey
    factor_levels: dict[str, Any] = field(default_factory=dict)
    row_indices: tuple[int, ...] = ()

    @property
    def size(self) -> int:
        return len(self.row_indices)


def cell(row: Sequence[Any], column_index: int) -> Any:
    """Cell value of a row, ``None`` past the end of a short row."""
    if 0 <= column_index < len(row):
        value = row[column_index]
        return None if is_missing_value(value) else value
    return None


def group_key_label(key: GroupKey) -> str:
    """Human-readable form of a group key, used in logs and messages."""
    if key == ALL_DATA:
        return "all data"
    return KEY_SEPARATOR.join(str(part) for part in key)


def group_rows(
    rows: Sequence[Sequence[Any]],
    factor_variables: Sequence[Variable | None],
) -> dict[GroupKey, Group]:
    """
    Group rows by the combination of their factor values.

    Parameters:
        rows: The dataset, one sequence of cell values per case.
        factor_variables: Factor descriptors; an empty list, or any ``None``
            entry, yields the single ``ALL_DATA`` group.

    Returns:
        dict: Groups keyed by the tuple of factor values, in order of first
        appearance. Every row belongs to exactly one group; missing factor
        values are normalised to ``None`` and grouped together.
    """
    if not factor_variables or any(v is None for v in factor_variables):
        return {ALL_DATA: Group(key=ALL_DATA, factor_levels={}, row_indices=tuple(range(len(rows))))}

    columns = [
        pd.Series([cell(row, variable.column_index) for row in rows], dtype=object)
        for variable in factor_variables
    ]
    # Missing values get their own code so they group together
    codes = pd.DataFrame(
        {position: pd.factorize(column, use_na_sentinel=False)[0] for position, column in enumerate(columns)},
        index=range(len(rows)),
    )
    members = sorted(
        codes.groupby(list(codes.columns), sort=False).indices.values(),
        key=lambda positions: positions[0],
    )

    groups = {}
    for positions in members:
        first = int(positions[0])
        key = tuple(column.iat[first] for column in columns)
        groups[key] = Group(
            key=key,
            factor_levels={variable.name: value for variable, value in zip(factor_variables, key)},
            row_indices=tuple(int(i) for i in positions),
        )
    logger.debug(
        "Grouped %d rows into %d groups by %s",
        len(rows),
        len(groups),
        ", ".join(v.name for v in factor_variables),
    )
    return groups
