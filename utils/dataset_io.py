"""
🧾 Dataset Adapters
Convert a pandas DataFrame into the row-oriented dataset and the Variable
descriptors consumed by the Explore pipeline.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

import pandas as pd
from pandas.api import types as ptypes

from logger import get_logger
from utils.explore_types import AnalysisValidationError, Measure, ValueLabel, Variable

logger = get_logger(__name__)


def _declared_type(series: pd.Series) -> str:
    if ptypes.is_bool_dtype(series):
        return "string"
    if ptypes.is_numeric_dtype(series):
        return "numeric"
    if ptypes.is_datetime64_any_dtype(series):
        return "date"
    return "string"


def _default_measure(series: pd.Series) -> Measure:
    if isinstance(series.dtype, pd.CategoricalDtype):
        return "ordinal" if series.dtype.ordered else "nominal"
    return "unknown"


def variables_from_dataframe(
    df: pd.DataFrame,
    labels: Mapping[str, str] | None = None,
    value_labels: Mapping[str, Mapping[Any, str]] | None = None,
    measures: Mapping[str, Measure] | None = None,
    missing_values: Mapping[str, Sequence[Any]] | None = None,
) -> list[Variable]:
    """
    Describe every column of a DataFrame as a Variable.

    Parameters:
        df: Source data; column position becomes ``column_index``.
        labels: Optional display label per column name.
        value_labels: Optional ``{column: {value: label}}`` mappings.
        measures: Optional measurement level per column. Columns without one
            use ``ordinal``/``nominal`` for categorical dtypes and ``unknown``
            otherwise (resolved from the declared type downstream).
        missing_values: Optional user-defined missing codes per column.

    Returns:
        list[Variable]: One descriptor per column, in column order.

    Raises:
        AnalysisValidationError: If a column name is duplicated or a mapping
            names a column that does not exist.
    """
    names = [str(c) for c in df.columns]
    if len(set(names)) != len(names):
        raise AnalysisValidationError("Column names must be unique to build variables.")

    labels = labels or {}
    value_labels = value_labels or {}
    measures = measures or {}
    missing_values = missing_values or {}

    for mapping_name, mapping in (
        ("labels", labels),
        ("value_labels", value_labels),
        ("measures", measures),
        ("missing_values", missing_values),
    ):
        unknown = set(mapping) - set(names)
        if unknown:
            raise AnalysisValidationError(f"Unknown column(s) in {mapping_name}: {', '.join(sorted(unknown))}")

    variables = []
    for index, name in enumerate(names):
        series = df.iloc[:, index]
        variables.append(
            Variable(
                name=name,
                column_index=index,
                label=labels.get(name),
                type=_declared_type(series),
                measure=measures.get(name, _default_measure(series)),
                values=tuple(ValueLabel(value, label) for value, label in value_labels.get(name, {}).items()),
                missing_values=tuple(missing_values.get(name, ())),
            )
        )

    logger.debug("Described %d columns as variables", len(variables))
    return variables


def rows_from_dataframe(df: pd.DataFrame) -> list[list[Any]]:
    """Row-oriented copy of a DataFrame with missing cells as ``None``."""
    frame = df.astype(object).where(df.notna(), None)
    rows = frame.to_numpy().tolist()
    logger.log_data_summary("dataframe", len(rows), df.shape[1])
    return rows


def select_variables(variables: Sequence[Variable], names: Sequence[str]) -> list[Variable]:
    """
    Pick variables by name, keeping the requested order.

    Raises:
        AnalysisValidationError: If a name is not among ``variables``.
    """
    by_name = {v.name: v for v in variables}
    missing = [n for n in names if n not in by_name]
    if missing:
        raise AnalysisValidationError(f"Unknown variable(s): {', '.join(missing)}")
    return [by_name[n] for n in names]
