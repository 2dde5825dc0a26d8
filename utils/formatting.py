"""
🎨 Formatting Utilities
Numeric display and factor-label resolution for Explore tables.
Driven by central configuration from config.py
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import numpy as np
import pandas as pd

from config import CONFIG
from utils.explore_types import ExploreParams, Variable, is_missing_value

SYSTEM_MISSING_TEXT = "."


def _is_displayable(value: Any) -> bool:
    if value is None or isinstance(value, bool):
        return False
    try:
        return bool(np.isfinite(float(value)))
    except (TypeError, ValueError):
        return False


def resolve_decimals(field: str | None = None) -> int:
    """
    Decimal places for a statistic field.

    Looks up ``formatting.field_decimals[field]`` and falls back to
    ``formatting.default_decimals``.
    """
    default = CONFIG.get("formatting.default_decimals", 2)
    if field is None:
        return default
    overrides = CONFIG.get("formatting.field_decimals", {}) or {}
    return overrides.get(field, default)


def format_number(
    value: Any,
    decimals: int | None = None,
    *,
    field: str | None = None,
    missing: str | None = None,
) -> str:
    """
    Format a statistic with fixed decimals.

    Parameters:
        value: Number to format; ``None``, NaN, infinities and non-numeric
            values are treated as missing.
        decimals: Explicit precision; overrides the configured field precision.
        field: Name of the statistic family used to look up the precision
            (e.g. ``"std_error"``).
        missing: Text returned for missing values; defaults to
            ``formatting.missing_text``.

    Returns:
        str: The formatted number or the missing text.
    """
    if not _is_displayable(value):
        return CONFIG.get("formatting.missing_text", "") if missing is None else missing
    places = decimals if decimals is not None else resolve_decimals(field)
    return f"{float(value):.{places}f}"


def format_percent(count: float, total: float) -> str:
    """Percent of ``total`` with one decimal, ``"0.0%"`` when the total is zero."""
    places = CONFIG.get("formatting.percent_decimals", 1)
    if not total:
        return f"{0:.{places}f}%"
    return f"{count / total * 100:.{places}f}%"


def format_count(value: float) -> int | float:
    """Case counts as ``int`` when integral, weighted counts rounded otherwise."""
    if float(value).is_integer():
        return int(value)
    return round(float(value), resolve_decimals())


def factor_label(variable: Variable, raw_value: Any) -> str:
    """
    Display label of a raw factor value.

    Returns the label of the first value-label entry whose value stringifies
    equal to ``raw_value``; otherwise the string form of ``raw_value``.
    Unlabelled missing values render as ".".
    """
    raw_text = _value_text(raw_value)
    for value_label in variable.values:
        if _value_text(value_label.value) == raw_text and value_label.label:
            return value_label.label
    if is_missing_value(raw_value):
        return SYSTEM_MISSING_TEXT
    return raw_text


def _value_text(value: Any) -> str:
    # 1.0 and 1 label the same category
    if isinstance(value, (float, np.floating)) and not pd.isna(value) and float(value).is_integer():
        return str(int(value))
    return str(value)


def group_label(params: ExploreParams, factor_levels: Mapping[str, Any]) -> str:
    """Joined labels of every factor level of one group."""
    separator = CONFIG.get("formatting.group_label_separator", ", ")
    return separator.join(
        factor_label(variable, factor_levels.get(variable.name)) for variable in params.active_factors
    )


def factor_header(params: ExploreParams) -> str:
    """Column header naming the factor variable(s)."""
    separator = CONFIG.get("formatting.group_label_separator", ", ")
    return separator.join(variable.display_name for variable in params.active_factors)
