"""
📦 Explore Data Structures

Immutable records shared by the Explore pipeline: variable descriptors,
analysis parameters, the numeric-service request/response contract, the
per-group examine results, and the error taxonomy.

Optional statistic families on ``ExamineResult`` are modelled as explicit
``None``-able fields so formatters test presence with ``is None`` instead of
relying on truthiness.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Literal

import pandas as pd

Measure = Literal["scale", "ordinal", "nominal", "unknown"]

NUMERIC_TYPES = frozenset({"numeric", "comma", "dot", "scientific", "dollar", "restricted_numeric"})


# --- 1. Errors ---
class ErrorKind(Enum):
    """Category of a failure raised by the Explore pipeline."""

    VALIDATION = "validation"
    COMPUTATION = "computation"
    EMPTY_RESULT = "empty_result"


class ExploreError(Exception):
    """Base class for Explore pipeline errors."""

    kind: ErrorKind


class AnalysisValidationError(ExploreError):
    """Input rejected before any computation was dispatched."""

    kind = ErrorKind.VALIDATION


class ComputationError(ExploreError):
    """A single (group, dependent variable) computation failed."""

    kind = ErrorKind.COMPUTATION


class EmptyResultError(ExploreError):
    """The analysis finished without anything displayable."""

    kind = ErrorKind.EMPTY_RESULT


# --- 2. Variables and parameters ---
@dataclass(frozen=True)
class ValueLabel:
    value: Any
    label: str


@dataclass(frozen=True)
class Variable:
    """
    Column descriptor for one variable of the dataset.

    ``column_index`` addresses the cell inside each dataset row. ``values``
    holds the ordered value-label set, ``missing_values`` the user-defined
    missing codes that are excluded from the valid count.
    """

    name: str
    column_index: int
    label: str | None = None
    type: str = "numeric"
    measure: Measure = "unknown"
    values: tuple[ValueLabel, ...] = ()
    missing_values: tuple[Any, ...] = ()

    @property
    def display_name(self) -> str:
        return self.label or self.name

    @property
    def effective_measure(self) -> Measure:
        """Resolve an ``unknown`` measure from the declared type."""
        if self.measure != "unknown":
            return self.measure
        if self.type in NUMERIC_TYPES or self.type == "date":
            return "scale"
        return "nominal"

    @property
    def is_numeric_like(self) -> bool:
        """Scale and ordinal variables are summarised numerically; dates are not."""
        return self.effective_measure in ("scale", "ordinal") and self.type != "date"


@dataclass(frozen=True)
class ExploreParams:
    """
    Parameters of one Explore run.

    The plot toggles are carried for the caller and are not read by the
    aggregation core.
    """

    dependent_variables: list[Variable]
    factor_variables: list[Variable | None] = field(default_factory=list)
    label_variable: Variable | None = None
    confidence_interval: float = 95
    show_descriptives: bool = True
    show_m_estimators: bool = False
    show_outliers: bool = False
    show_percentiles: bool = False
    show_histogram: bool = False
    show_stem_and_leaf: bool = False
    boxplot_type: Literal["none", "factor_levels", "dependents"] = "factor_levels"

    @property
    def has_factors(self) -> bool:
        return len(self.factor_variables) > 0 and all(v is not None for v in self.factor_variables)

    @property
    def active_factors(self) -> list[Variable]:
        return [v for v in self.factor_variables if v is not None] if self.has_factors else []


# --- 3. Numeric service contract ---
@dataclass(frozen=True)
class ExamineOptions:
    confidence_level: float = 95
    descriptives: bool = True
    m_estimators: bool = False
    percentiles: bool = False
    extremes: bool = False
    extreme_count: int = 5
    trim_percent: float = 5
    percentile_points: tuple[int, ...] = (5, 10, 25, 50, 75, 90, 95)


@dataclass(frozen=True)
class ExamineRequest:
    variable: Variable
    values: list[Any]
    weights: list[float] | None = None
    options: ExamineOptions = field(default_factory=ExamineOptions)


@dataclass(frozen=True)
class Summary:
    valid: float
    missing: float
    total: float


@dataclass(frozen=True)
class ConfidenceInterval:
    lower: float
    upper: float
    level: float


@dataclass(frozen=True)
class Descriptives:
    mean: float | None = None
    se_mean: float | None = None
    confidence_interval: ConfidenceInterval | None = None
    median: float | None = None
    variance: float | None = None
    std_dev: float | None = None
    minimum: float | None = None
    maximum: float | None = None
    range: float | None = None
    iqr: float | None = None
    skewness: float | None = None
    se_skewness: float | None = None
    kurtosis: float | None = None
    se_kurtosis: float | None = None
    # Tukey's hinges keyed by 25 and 75
    percentiles: dict[int, float | None] = field(default_factory=dict)


@dataclass(frozen=True)
class MEstimators:
    huber: float | None
    tukey: float | None
    hampel: float | None
    andrews: float | None


@dataclass(frozen=True)
class PercentileSet:
    method: str
    values: dict[int, float | None]


@dataclass(frozen=True)
class ExtremeValue:
    case_number: int
    value: float
    is_partial: bool = False


@dataclass(frozen=True)
class ExtremeValues:
    highest: tuple[ExtremeValue, ...]
    lowest: tuple[ExtremeValue, ...]
    is_truncated: bool = False


@dataclass(frozen=True)
class ExamineResult:
    """Output of the numeric service for one (dependent variable, group) pair."""

    summary: Summary
    variable: Variable | None = None
    descriptives: Descriptives | None = None
    trimmed_mean: float | None = None
    m_estimators: MEstimators | None = None
    percentiles: PercentileSet | None = None
    extreme_values: ExtremeValues | None = None

    def with_variable(self, variable: Variable) -> ExamineResult:
        return replace(self, variable=variable)


@dataclass(frozen=True)
class ExamineResponse:
    """Either a result or an error message, never both."""

    result: ExamineResult | None = None
    error: str | None = None

    @classmethod
    def ok(cls, result: ExamineResult) -> ExamineResponse:
        return cls(result=result)

    @classmethod
    def failed(cls, message: str) -> ExamineResponse:
        return cls(error=message)


def is_missing_value(value: Any) -> bool:
    """True for ``None``, ``pd.NA``, ``NaT`` and float NaN."""
    if value is None or value is pd.NA or value is pd.NaT:
        return True
    return isinstance(value, float) and math.isnan(value)
