"""
📊 Explore Table Formatters

Turns aggregated examine results into the five Explore report tables:

1. Case Processing Summary
2. Descriptives
3. M-Estimators
4. Percentiles
5. Extreme Values

Every formatter has the signature ``format_x(results, params)`` and returns a
``FormattedTable`` or ``None`` when its toggle is off or no result carries the
statistics it needs. Dependent variables are listed in parameter order and
factor groups in order of first appearance in the dataset.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator

from config import CONFIG
from logger import get_logger
from utils.explore_runner import AggregatedResults, GroupedResult, regroup_by_dep_var
from utils.explore_types import Descriptives, ExamineResult, ExploreParams, ExtremeValue, Variable
from utils.formatting import (
    SYSTEM_MISSING_TEXT,
    factor_header,
    format_count,
    format_number,
    format_percent,
    group_label,
)
from utils.table_model import ColumnHeader, DataRow, FormattedTable, GroupRow, Row

logger = get_logger(__name__)

M_ESTIMATOR_FOOTNOTES = (
    "a. The weighting constant is 1.339.",
    "b. The weighting constant is 4.685.",
    "c. The weighting constants are 1.700, 3.400, and 8.500.",
    "d. The weighting constant is 1.340*pi.",
)

TRUNCATION_FOOTNOTE = (
    "The requested number of extreme values exceeds the number of data points. "
    "A smaller number of extremes is displayed."
)
PARTIAL_UPPER_FOOTNOTE = "a. Only a partial list of cases with the value {values} are shown in the table of upper extremes."
PARTIAL_LOWER_FOOTNOTE = "b. Only a partial list of cases with the value {values} are shown in the table of lower extremes."

WEIGHTED_AVERAGE_METHOD = "Weighted Average (Definition 1)"
TUKEY_HINGES_METHOD = "Tukey's Hinges"


# --- Shared helpers ---
def _by_dependent(
    results: AggregatedResults,
    params: ExploreParams,
) -> Iterator[tuple[Variable, list[GroupedResult]]]:
    """Yield each dependent variable with its per-group results, in parameter order."""
    regrouped = regroup_by_dep_var(results)
    for variable in params.dependent_variables:
        grouped = regrouped.get(variable.name)
        if grouped:
            yield variable, grouped


def _has_any(results: AggregatedResults, present: Callable[[ExamineResult], bool]) -> bool:
    return any(present(r) for group in results.values() for r in group.results)


def _row_header_columns(labels: list[str]) -> list[ColumnHeader]:
    return [ColumnHeader(label, key=f"rowHeader{i + 1}") for i, label in enumerate(labels)]


def _label_of(params: ExploreParams, grouped: GroupedResult) -> str:
    return group_label(params, grouped.factor_levels)


def _percent_text(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)


# --- 1. Case Processing Summary ---
def _case_cells(result: ExamineResult) -> dict[str, object]:
    valid = result.summary.valid
    missing = result.summary.missing
    total = valid + missing
    return {
        "Valid_N": format_count(valid),
        "Valid_Percent": format_percent(valid, total),
        "Missing_N": format_count(missing),
        "Missing_Percent": format_percent(missing, total),
        "Total_N": format_count(total),
        # The whole group is always 100%
        "Total_Percent": format_percent(1, 1),
    }


def format_case_processing_summary(results: AggregatedResults, params: ExploreParams) -> FormattedTable | None:
    """
    Valid, missing and total case counts per dependent variable.

    Without factors each dependent variable is one row with a single header
    column. With factors it becomes a parent row with one child per group,
    labelled by the group's factor levels in the second header column.
    """
    has_factors = params.has_factors
    rows: list[Row] = []
    for variable, grouped in _by_dependent(results, params):
        if has_factors:
            children = tuple(
                DataRow(header=(None, _label_of(params, g)), cells=_case_cells(g.result)) for g in grouped
            )
            rows.append(GroupRow(header=(variable.display_name, None), children=children))
        else:
            rows.append(DataRow(header=(variable.display_name,), cells=_case_cells(grouped[0].result)))

    if not rows:
        return None

    row_headers = _row_header_columns(["", factor_header(params)] if has_factors else [""])
    cases = ColumnHeader(
        "Cases",
        children=tuple(
            ColumnHeader(
                block,
                children=(
                    ColumnHeader("N", key=f"{block}_N"),
                    ColumnHeader("Percent", key=f"{block}_Percent"),
                ),
            )
            for block in ("Valid", "Missing", "Total")
        ),
    )
    return FormattedTable(
        title="Case Processing Summary",
        column_headers=(*row_headers, cases),
        rows=tuple(rows),
        row_header_columns=len(row_headers),
    )


# --- 2. Descriptives ---
def _statistic_lines(result: ExamineResult, d: Descriptives) -> list[tuple[str, dict[str, str]]]:
    """(label, cells) for every single-line descriptive statistic after the CI."""

    def stat(value, field: str | None = None, se=None) -> dict[str, str]:
        return {
            "statistic": format_number(value, field=field),
            "std_error": format_number(se, field="std_error"),
        }

    trim = _percent_text(CONFIG.get("analysis.trim_percent", 5))
    return [
        (f"{trim}% Trimmed Mean", stat(result.trimmed_mean)),
        ("Median", stat(d.median)),
        ("Variance", stat(d.variance)),
        ("Std. Deviation", stat(d.std_dev)),
        ("Minimum", stat(d.minimum)),
        ("Maximum", stat(d.maximum)),
        ("Range", stat(d.range)),
        ("Interquartile Range", stat(d.iqr)),
        ("Skewness", stat(d.skewness, "skewness", d.se_skewness)),
        ("Kurtosis", stat(d.kurtosis, "kurtosis", d.se_kurtosis)),
    ]


def _descriptive_rows(result: ExamineResult, ci_label: str, with_factors: bool) -> list[Row]:
    d = result.descriptives
    mean_cells = {
        "statistic": format_number(d.mean),
        "std_error": format_number(d.se_mean, field="std_error"),
    }
    ci = d.confidence_interval
    lower_cells = {"statistic": format_number(ci.lower if ci else None), "std_error": ""}
    upper_cells = {"statistic": format_number(ci.upper if ci else None), "std_error": ""}

    rows: list[Row] = []
    if with_factors:
        rows.append(DataRow(header=(None, None, "Mean", None), cells=mean_cells))
        if ci is not None:
            rows.append(DataRow(header=(None, None, ci_label, "Lower Bound"), cells=lower_cells))
            rows.append(DataRow(header=(None, None, None, "Upper Bound"), cells=upper_cells))
        rows.extend(DataRow(header=(None, None, label, None), cells=cells) for label, cells in _statistic_lines(result, d))
    else:
        rows.append(DataRow(header=(None, "Mean"), cells=mean_cells))
        if ci is not None:
            rows.append(
                GroupRow(
                    header=(None, ci_label),
                    children=(
                        DataRow(header=(None, "Lower Bound"), cells=lower_cells),
                        DataRow(header=(None, "Upper Bound"), cells=upper_cells),
                    ),
                )
            )
        rows.extend(DataRow(header=(None, label), cells=cells) for label, cells in _statistic_lines(result, d))
    return rows


def format_descriptives_table(results: AggregatedResults, params: ExploreParams) -> FormattedTable | None:
    """
    Descriptive statistics with standard errors.

    With factors the row header has four columns (dependent variable, factor
    level, statistic, sub-label): one parent row per dependent variable, one
    child per group, one grandchild per statistic. Without factors it has two
    columns (dependent variable, statistic) and the confidence bounds nest
    under their own group row.
    """
    if not params.show_descriptives:
        return None
    if not _has_any(results, lambda r: r.descriptives is not None):
        return None

    has_factors = params.has_factors
    ci_label = f"{_percent_text(params.confidence_interval)}% Confidence Interval for Mean"
    width = 4 if has_factors else 2

    rows: list[Row] = []
    for variable, grouped in _by_dependent(results, params):
        with_data = [g for g in grouped if g.result.descriptives is not None]
        if not with_data:
            continue
        if has_factors:
            children = tuple(
                GroupRow(
                    header=(None, _label_of(params, g), None, None),
                    children=tuple(_descriptive_rows(g.result, ci_label, with_factors=True)),
                )
                for g in with_data
            )
        else:
            children = tuple(_descriptive_rows(with_data[0].result, ci_label, with_factors=False))
        rows.append(GroupRow(header=(variable.display_name,) + (None,) * (width - 1), children=children))

    if not rows:
        return None

    labels = ["", factor_header(params), "", ""] if has_factors else ["", ""]
    return FormattedTable(
        title="Descriptives",
        column_headers=(
            *_row_header_columns(labels),
            ColumnHeader("Statistic", key="statistic"),
            ColumnHeader("Std. Error", key="std_error"),
        ),
        rows=tuple(rows),
        row_header_columns=width,
    )


# --- 3. M-Estimators ---
def _m_cells(result: ExamineResult) -> dict[str, str]:
    m = result.m_estimators
    return {
        "huber": format_number(m.huber),
        "tukey": format_number(m.tukey),
        "hampel": format_number(m.hampel),
        "andrews": format_number(m.andrews),
    }


def format_m_estimators_table(results: AggregatedResults, params: ExploreParams) -> FormattedTable | None:
    """Robust location estimates with the four fixed weighting-constant footnotes."""
    if not params.show_m_estimators:
        return None

    has_factors = params.has_factors
    rows: list[Row] = []
    for variable, grouped in _by_dependent(results, params):
        with_data = [g for g in grouped if g.result.m_estimators is not None]
        if not with_data:
            continue
        if has_factors:
            children = tuple(
                DataRow(header=(None, _label_of(params, g)), cells=_m_cells(g.result)) for g in with_data
            )
            rows.append(GroupRow(header=(variable.display_name, None), children=children))
        else:
            rows.append(DataRow(header=(variable.display_name,), cells=_m_cells(with_data[0].result)))

    if not rows:
        return None

    row_headers = _row_header_columns(["", factor_header(params)] if has_factors else [""])
    return FormattedTable(
        title="M-Estimators",
        column_headers=(
            *row_headers,
            ColumnHeader("Huber's M-Estimator", key="huber", footnote="a"),
            ColumnHeader("Tukey's Biweight", key="tukey", footnote="b"),
            ColumnHeader("Hampel's M-Estimator", key="hampel", footnote="c"),
            ColumnHeader("Andrews' Wave", key="andrews", footnote="d"),
        ),
        rows=tuple(rows),
        row_header_columns=len(row_headers),
        footnotes=M_ESTIMATOR_FOOTNOTES,
    )


# --- 4. Percentiles ---
def _percentile_points() -> list[int]:
    configured = CONFIG.get("analysis.percentile_points", [5, 10, 25, 50, 75, 90, 95])
    return sorted({int(p) for p in configured} | {25, 50, 75})


def _weighted_average_cells(result: ExamineResult) -> dict[str, str] | None:
    if result.percentiles is None:
        return None
    return {
        f"p{point}": format_number(value, missing=SYSTEM_MISSING_TEXT)
        for point, value in sorted(result.percentiles.values.items())
    }


def _tukey_hinge_cells(result: ExamineResult) -> dict[str, str] | None:
    d = result.descriptives
    if d is None:
        return None
    return {
        "p25": format_number(d.percentiles.get(25), missing=SYSTEM_MISSING_TEXT),
        # Tukey's 50th percentile is the median
        "p50": format_number(d.median, missing=SYSTEM_MISSING_TEXT),
        "p75": format_number(d.percentiles.get(75), missing=SYSTEM_MISSING_TEXT),
    }


def format_percentiles_table(results: AggregatedResults, params: ExploreParams) -> FormattedTable | None:
    """
    Percentiles by the weighted-average method and by Tukey's hinges.

    The row header is (method, dependent variable) without factors and
    (method, dependent variable, factor level) with them.
    """
    if not params.show_percentiles:
        return None

    has_factors = params.has_factors
    methods: list[tuple[str, Callable[[ExamineResult], dict[str, str] | None]]] = [
        (WEIGHTED_AVERAGE_METHOD, _weighted_average_cells),
        (TUKEY_HINGES_METHOD, _tukey_hinge_cells),
    ]

    rows: list[Row] = []
    for method_name, cells_of in methods:
        method_children: list[Row] = []
        for variable, grouped in _by_dependent(results, params):
            if has_factors:
                factor_rows = []
                for g in grouped:
                    cells = cells_of(g.result)
                    if cells is not None:
                        factor_rows.append(DataRow(header=(None, None, _label_of(params, g)), cells=cells))
                if factor_rows:
                    method_children.append(
                        GroupRow(header=(None, variable.display_name, None), children=tuple(factor_rows))
                    )
            else:
                cells = cells_of(grouped[0].result)
                if cells is not None:
                    method_children.append(DataRow(header=(None, variable.display_name), cells=cells))
        if method_children:
            header = (method_name, None, None) if has_factors else (method_name, None)
            rows.append(GroupRow(header=header, children=tuple(method_children)))

    if not rows:
        return None

    labels = ["", "", factor_header(params)] if has_factors else ["", ""]
    percentiles = ColumnHeader(
        "Percentiles",
        children=tuple(ColumnHeader(str(p), key=f"p{p}") for p in _percentile_points()),
    )
    return FormattedTable(
        title="Percentiles",
        column_headers=(*_row_header_columns(labels), percentiles),
        rows=tuple(rows),
        row_header_columns=len(labels),
    )


# --- 5. Extreme Values ---
class _ExtremeNotes:
    """Footnote state gathered while walking extreme-value lists."""

    def __init__(self) -> None:
        self.truncated = False
        self.partial_upper: list[str] = []
        self.partial_lower: list[str] = []

    def footnotes(self) -> tuple[str, ...]:
        notes = []
        if self.truncated:
            notes.append(TRUNCATION_FOOTNOTE)
        if self.partial_upper:
            notes.append(PARTIAL_UPPER_FOOTNOTE.format(values=", ".join(self.partial_upper)))
        if self.partial_lower:
            notes.append(PARTIAL_LOWER_FOOTNOTE.format(values=", ".join(self.partial_lower)))
        return tuple(notes)


def _ranked_rows(
    entries: tuple[ExtremeValue, ...] | list[ExtremeValue],
    width: int,
    marker: str,
    partial_values: list[str],
) -> tuple[DataRow, ...]:
    rows = []
    for rank, entry in enumerate(entries, start=1):
        value_text = format_number(entry.value)
        notes: tuple[str, ...] = ()
        if entry.is_partial:
            notes = (marker,)
            if value_text not in partial_values:
                partial_values.append(value_text)
        rows.append(
            DataRow(
                header=(None,) * (width - 1) + (str(rank),),
                cells={"case_number": entry.case_number, "value": value_text},
                notes=notes,
            )
        )
    return tuple(rows)


def _extreme_blocks(result: ExamineResult, width: int, notes: _ExtremeNotes) -> list[Row]:
    ex = result.extreme_values
    if ex is None:
        return []
    if ex.is_truncated:
        notes.truncated = True

    blank = (None,) * (width - 2)
    blocks: list[Row] = []
    if ex.highest:
        blocks.append(
            GroupRow(
                header=blank + ("Highest", None),
                children=_ranked_rows(ex.highest, width, "a", notes.partial_upper),
            )
        )
    if ex.lowest:
        # Lowest values are listed by case number, highest case first
        lowest = sorted(ex.lowest, key=lambda e: e.case_number, reverse=True)
        blocks.append(
            GroupRow(
                header=blank + ("Lowest", None),
                children=_ranked_rows(lowest, width, "b", notes.partial_lower),
            )
        )
    return blocks


def format_extreme_values_table(results: AggregatedResults, params: ExploreParams) -> FormattedTable | None:
    """
    Highest and lowest cases per dependent variable (and group).

    Highest values keep the service's rank order; lowest values are listed by
    case number, descending. A truncated list adds the general footnote and
    a boundary tie adds footnote "a" (upper) or "b" (lower), with the
    matching marker on the tied row.
    """
    if not params.show_outliers:
        return None

    has_factors = params.has_factors
    width = 4 if has_factors else 3
    notes = _ExtremeNotes()

    rows: list[Row] = []
    for variable, grouped in _by_dependent(results, params):
        if has_factors:
            children: list[Row] = []
            for g in grouped:
                blocks = _extreme_blocks(g.result, width, notes)
                if blocks:
                    children.append(GroupRow(header=(None, _label_of(params, g), None, None), children=tuple(blocks)))
        else:
            children = _extreme_blocks(grouped[0].result, width, notes)
        if children:
            rows.append(GroupRow(header=(variable.display_name,) + (None,) * (width - 1), children=tuple(children)))

    if not rows:
        return None

    labels = ["", factor_header(params), "", ""] if has_factors else ["", "", ""]
    return FormattedTable(
        title="Extreme Values",
        column_headers=(
            *_row_header_columns(labels),
            ColumnHeader("Case Number", key="case_number"),
            ColumnHeader("Value", key="value"),
        ),
        rows=tuple(rows),
        row_header_columns=width,
        footnotes=notes.footnotes(),
    )


# --- Entry point ---
FORMATTERS: tuple[tuple[str, Callable[[AggregatedResults, ExploreParams], FormattedTable | None]], ...] = (
    ("case_processing_summary", format_case_processing_summary),
    ("descriptives", format_descriptives_table),
    ("m_estimators", format_m_estimators_table),
    ("percentiles", format_percentiles_table),
    ("extreme_values", format_extreme_values_table),
)


def format_explore_tables(results: AggregatedResults, params: ExploreParams) -> list[FormattedTable]:
    """Run every formatter in report order and keep the tables they produce."""
    tables: list[FormattedTable] = []
    for name, formatter in FORMATTERS:
        with logger.track_time(f"format_{name}"):
            table = formatter(results, params)
        if table is not None:
            tables.append(table)
    logger.debug("Formatted %d Explore tables", len(tables))
    return tables
