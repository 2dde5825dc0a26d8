"""
🧪 Unit Tests for the Explore Table Formatters
File: tests/unit/test_explore_formatters.py

Tests utils/explore_formatters.py:
- format_case_processing_summary
- format_descriptives_table
- format_m_estimators_table
- format_percentiles_table
- format_extreme_values_table
- format_explore_tables

Run with: pytest tests/unit/test_explore_formatters.py -v
"""

import pytest

from utils.examine_lib import ExamineCalculator
from utils.explore_formatters import (
    M_ESTIMATOR_FOOTNOTES,
    TRUNCATION_FOOTNOTE,
    format_case_processing_summary,
    format_descriptives_table,
    format_explore_tables,
    format_extreme_values_table,
    format_m_estimators_table,
    format_percentiles_table,
)
from utils.explore_runner import AggregatedGroup
from utils.explore_types import (
    ExamineOptions,
    ExamineRequest,
    ExamineResult,
    ExploreParams,
    ExtremeValue,
    ExtremeValues,
    PercentileSet,
    Summary,
)
from utils.grouping import ALL_DATA
from utils.table_model import DataRow, GroupRow, iter_rows

pytestmark = pytest.mark.unit

FULL_OPTIONS = ExamineOptions(descriptives=True, m_estimators=True, percentiles=True, extremes=True)


def _computed(variable, values, options=FULL_OPTIONS):
    request = ExamineRequest(variable=variable, values=values, options=options)
    return ExamineCalculator(request).compute().with_variable(variable)


def _aggregate(variable, groups, options=FULL_OPTIONS, factor_name="group"):
    """Build aggregated results from ``{level or None: values}``."""
    aggregated = {}
    for level, values in groups.items():
        key = ALL_DATA if level is None else (level,)
        levels = {} if level is None else {factor_name: level}
        aggregated[key] = AggregatedGroup(key=key, factor_levels=levels, results=[_computed(variable, values, options)])
    return aggregated


def _single(variable, result):
    return {ALL_DATA: AggregatedGroup(key=ALL_DATA, factor_levels={}, results=[result.with_variable(variable)])}


def _header_lengths(table):
    return {len(row.header) for _level, row in iter_rows(table.rows)}


@pytest.fixture
def plain_results(score_variable):
    return _aggregate(score_variable, {None: [10, 20, 15, 25]})


@pytest.fixture
def factor_results(score_variable):
    return _aggregate(score_variable, {"A": [10, 15], "B": [20, 25]})


@pytest.fixture
def plain_params(score_variable):
    return ExploreParams(
        dependent_variables=[score_variable],
        show_m_estimators=True,
        show_outliers=True,
        show_percentiles=True,
    )


@pytest.fixture
def factor_params(score_variable, group_variable):
    return ExploreParams(
        dependent_variables=[score_variable],
        factor_variables=[group_variable],
        show_m_estimators=True,
        show_outliers=True,
        show_percentiles=True,
    )


# ============================================================================
# Case Processing Summary
# ============================================================================


class TestCaseProcessingSummary:
    """Tests for format_case_processing_summary."""

    def test_without_factors(self, plain_results, plain_params):
        """
        Given: One dependent variable with four valid cases and no factor
        When: The summary is formatted
        Then: One row reports 4 valid, 0 missing, 4 total with matching percents
        """
        table = format_case_processing_summary(plain_results, plain_params)

        assert table.title == "Case Processing Summary"
        assert table.row_header_columns == 1
        row = table.rows[0]
        assert isinstance(row, DataRow)
        assert row.header == ("Test Score",)
        assert row.cells == {
            "Valid_N": 4,
            "Valid_Percent": "100.0%",
            "Missing_N": 0,
            "Missing_Percent": "0.0%",
            "Total_N": 4,
            "Total_Percent": "100.0%",
        }

    def test_column_tree(self, plain_results, plain_params):
        table = format_case_processing_summary(plain_results, plain_params)
        cases = table.column_headers[-1]

        assert cases.header == "Cases"
        assert [c.header for c in cases.children] == ["Valid", "Missing", "Total"]
        assert cases.depth() == 3
        assert table.data_keys == [
            "Valid_N",
            "Valid_Percent",
            "Missing_N",
            "Missing_Percent",
            "Total_N",
            "Total_Percent",
        ]

    def test_with_factors(self, factor_results, factor_params):
        table = format_case_processing_summary(factor_results, factor_params)

        assert table.row_header_columns == 2
        assert table.column_headers[1].header == "Group"
        parent = table.rows[0]
        assert isinstance(parent, GroupRow)
        assert parent.header == ("Test Score", None)
        assert [child.header for child in parent.children] == [(None, "Arm A"), (None, "Arm B")]
        assert [child.cells["Valid_N"] for child in parent.children] == [2, 2]

    def test_missing_cases(self, score_variable, plain_params):
        results = _aggregate(score_variable, {None: [10, None, 15, None]})
        cells = format_case_processing_summary(results, plain_params).rows[0].cells

        assert cells["Valid_N"] + cells["Missing_N"] == 4
        assert cells["Valid_Percent"] == "50.0%"
        assert cells["Missing_Percent"] == "50.0%"
        assert cells["Total_Percent"] == "100.0%"

    def test_zero_total(self, score_variable, plain_params):
        results = _single(score_variable, ExamineResult(summary=Summary(valid=0, missing=0, total=0)))
        cells = format_case_processing_summary(results, plain_params).rows[0].cells

        assert cells["Valid_Percent"] == "0.0%"
        assert cells["Missing_Percent"] == "0.0%"
        assert cells["Total_Percent"] == "100.0%"

    def test_empty_results(self, plain_params):
        assert format_case_processing_summary({}, plain_params) is None


# ============================================================================
# Descriptives
# ============================================================================


class TestDescriptives:
    """Tests for format_descriptives_table."""

    def test_without_factors(self, plain_results, plain_params):
        """
        Given: Scores [10, 20, 15, 25] and no factor
        When: Descriptives are formatted
        Then: Every row header has two entries and the statistics appear in order
        """
        table = format_descriptives_table(plain_results, plain_params)

        assert table.row_header_columns == 2
        assert _header_lengths(table) == {2}
        parent = table.rows[0]
        assert parent.header == ("Test Score", None)
        assert [row.header[1] for row in parent.children] == [
            "Mean",
            "95% Confidence Interval for Mean",
            "5% Trimmed Mean",
            "Median",
            "Variance",
            "Std. Deviation",
            "Minimum",
            "Maximum",
            "Range",
            "Interquartile Range",
            "Skewness",
            "Kurtosis",
        ]

        rows = {row.header[1]: row for row in parent.children}
        assert rows["Mean"].cells == {"statistic": "17.50", "std_error": "3.227"}
        assert rows["Variance"].cells["statistic"] == "41.67"
        assert rows["Interquartile Range"].cells["statistic"] == "10.00"
        assert rows["Skewness"].cells == {"statistic": "0.000", "std_error": "1.014"}
        assert rows["Kurtosis"].cells == {"statistic": "-1.200", "std_error": "2.619"}

    def test_confidence_bounds_nest_under_group_row(self, plain_results, plain_params):
        ci = format_descriptives_table(plain_results, plain_params).rows[0].children[1]

        assert isinstance(ci, GroupRow)
        assert [child.header for child in ci.children] == [(None, "Lower Bound"), (None, "Upper Bound")]
        assert all(child.cells["std_error"] == "" for child in ci.children)

    def test_with_factors(self, factor_results, factor_params):
        """
        Given: Factor levels A and B
        When: Descriptives are formatted
        Then: Headers have four entries: variable, factor level, statistic, sub-label
        """
        table = format_descriptives_table(factor_results, factor_params)

        assert table.row_header_columns == 4
        assert _header_lengths(table) == {4}
        parent = table.rows[0]
        assert parent.header == ("Test Score", None, None, None)
        assert [child.header for child in parent.children] == [
            (None, "Arm A", None, None),
            (None, "Arm B", None, None),
        ]
        stats_a = parent.children[0].children
        assert stats_a[0].header == (None, None, "Mean", None)
        assert stats_a[0].cells["statistic"] == "12.50"
        assert stats_a[1].header == (None, None, "95% Confidence Interval for Mean", "Lower Bound")
        assert stats_a[2].header == (None, None, None, "Upper Bound")
        assert [c.header for c in table.column_headers[-2:]] == ["Statistic", "Std. Error"]

    def test_confidence_level_in_label(self, plain_results, score_variable):
        params = ExploreParams(dependent_variables=[score_variable], confidence_interval=90)
        ci = format_descriptives_table(plain_results, params).rows[0].children[1]
        assert ci.header[1] == "90% Confidence Interval for Mean"

    def test_none_without_descriptives(self, score_variable, plain_params):
        results = _aggregate(score_variable, {None: [1, 2, 3]}, options=ExamineOptions(descriptives=False))
        assert format_descriptives_table(results, plain_params) is None

    def test_none_when_toggle_off(self, plain_results, score_variable):
        params = ExploreParams(dependent_variables=[score_variable], show_descriptives=False)
        assert format_descriptives_table(plain_results, params) is None


# ============================================================================
# M-Estimators
# ============================================================================


class TestMEstimators:
    """Tests for format_m_estimators_table."""

    def test_gated_on_toggle(self, plain_results, score_variable):
        params = ExploreParams(dependent_variables=[score_variable], show_m_estimators=False)
        assert format_m_estimators_table(plain_results, params) is None

    def test_without_factors(self, plain_results, plain_params):
        table = format_m_estimators_table(plain_results, plain_params)

        assert table.title == "M-Estimators"
        assert table.footnotes == M_ESTIMATOR_FOOTNOTES
        assert table.footnotes[2] == "c. The weighting constants are 1.700, 3.400, and 8.500."
        assert [leaf.footnote for leaf in table.leaf_columns[1:]] == ["a", "b", "c", "d"]
        row = table.rows[0]
        assert row.header == ("Test Score",)
        assert row.cells["huber"] == "17.50"
        assert set(row.cells) == {"huber", "tukey", "hampel", "andrews"}

    def test_with_factors(self, factor_results, factor_params):
        table = format_m_estimators_table(factor_results, factor_params)

        assert _header_lengths(table) == {2}
        assert [child.header for child in table.rows[0].children] == [(None, "Arm A"), (None, "Arm B")]

    def test_none_without_estimates(self, score_variable, plain_params):
        results = _aggregate(score_variable, {None: [1, 2, 3]}, options=ExamineOptions())
        assert format_m_estimators_table(results, plain_params) is None


# ============================================================================
# Percentiles
# ============================================================================


class TestPercentiles:
    """Tests for format_percentiles_table."""

    def test_gated_on_toggle(self, plain_results, score_variable):
        params = ExploreParams(dependent_variables=[score_variable], show_percentiles=False)
        assert format_percentiles_table(plain_results, params) is None

    def test_two_method_blocks(self, plain_results, plain_params):
        """
        Given: Scores [10, 20, 15, 25]
        When: Percentiles are formatted
        Then: Weighted-average and Tukey blocks appear, Tukey's 50th being the median
        """
        table = format_percentiles_table(plain_results, plain_params)

        assert table.row_header_columns == 2
        assert [row.header for row in table.rows] == [
            ("Weighted Average (Definition 1)", None),
            ("Tukey's Hinges", None),
        ]
        weighted = table.rows[0].children[0]
        assert weighted.header == (None, "Test Score")
        assert weighted.cells["p5"] == "10.00"
        assert weighted.cells["p50"] == "15.00"
        assert weighted.cells["p90"] == "23.00"
        tukey = table.rows[1].children[0]
        assert tukey.cells == {"p25": "12.50", "p50": "17.50", "p75": "22.50"}
        assert table.data_keys == ["p5", "p10", "p25", "p50", "p75", "p90", "p95"]

    def test_missing_percentile_renders_dot(self, score_variable, plain_params):
        result = ExamineResult(
            summary=Summary(valid=1, missing=0, total=1),
            percentiles=PercentileSet(method="waverage", values={5: None, 50: 3.0}),
        )
        table = format_percentiles_table(_single(score_variable, result), plain_params)

        assert table.rows[0].children[0].cells == {"p5": ".", "p50": "3.00"}

    def test_with_factors(self, factor_results, factor_params):
        table = format_percentiles_table(factor_results, factor_params)

        assert table.row_header_columns == 3
        assert _header_lengths(table) == {3}
        dep_row = table.rows[0].children[0]
        assert dep_row.header == (None, "Test Score", None)
        assert [child.header for child in dep_row.children] == [(None, None, "Arm A"), (None, None, "Arm B")]


# ============================================================================
# Extreme Values
# ============================================================================


def _extreme_result(highest, lowest, truncated=False):
    return ExamineResult(
        summary=Summary(valid=4, missing=0, total=4),
        extreme_values=ExtremeValues(highest=tuple(highest), lowest=tuple(lowest), is_truncated=truncated),
    )


class TestExtremeValues:
    """Tests for format_extreme_values_table."""

    def test_gated_on_toggle(self, plain_results, score_variable):
        params = ExploreParams(dependent_variables=[score_variable], show_outliers=False)
        assert format_extreme_values_table(plain_results, params) is None

    def test_highest_keeps_order_lowest_by_case_descending(self, score_variable, plain_params):
        """
        Given: Lowest values returned in ascending value order
        When: The table is formatted
        Then: Highest rows keep service order and lowest rows run by descending case number
        """
        result = _extreme_result(
            highest=[ExtremeValue(4, 25), ExtremeValue(2, 20)],
            lowest=[ExtremeValue(1, 10), ExtremeValue(3, 15), ExtremeValue(2, 20)],
        )
        table = format_extreme_values_table(_single(score_variable, result), plain_params)

        assert table.row_header_columns == 3
        assert _header_lengths(table) == {3}
        highest, lowest = table.rows[0].children
        assert highest.header == (None, "Highest", None)
        assert [r.cells["case_number"] for r in highest.children] == [4, 2]
        assert lowest.header == (None, "Lowest", None)
        assert [r.cells["case_number"] for r in lowest.children] == [3, 2, 1]
        assert [r.header for r in lowest.children] == [(None, None, "1"), (None, None, "2"), (None, None, "3")]
        assert lowest.children[0].cells["value"] == "15.00"
        assert table.footnotes == ()

    def test_truncation_and_partial_footnotes(self, score_variable, plain_params):
        result = _extreme_result(
            highest=[ExtremeValue(4, 25)],
            lowest=[ExtremeValue(1, 10), ExtremeValue(2, 20, is_partial=True)],
            truncated=True,
        )
        table = format_extreme_values_table(_single(score_variable, result), plain_params)

        assert table.footnotes == (
            TRUNCATION_FOOTNOTE,
            "b. Only a partial list of cases with the value 20.00 are shown in the table of lower extremes.",
        )
        lowest = table.rows[0].children[1]
        assert [r.notes for r in lowest.children] == [("b",), ()]

    def test_partial_upper_footnote(self, score_variable, plain_params):
        result = _extreme_result(highest=[ExtremeValue(4, 25, is_partial=True)], lowest=[ExtremeValue(1, 10)])
        table = format_extreme_values_table(_single(score_variable, result), plain_params)

        assert table.footnotes == (
            "a. Only a partial list of cases with the value 25.00 are shown in the table of upper extremes.",
        )
        assert table.rows[0].children[0].children[0].notes == ("a",)

    def test_with_factors(self, factor_results, factor_params):
        table = format_extreme_values_table(factor_results, factor_params)

        assert table.row_header_columns == 4
        assert _header_lengths(table) == {4}
        group_a = table.rows[0].children[0]
        assert group_a.header == (None, "Arm A", None, None)
        assert [block.header[2] for block in group_a.children] == ["Highest", "Lowest"]
        assert TRUNCATION_FOOTNOTE in table.footnotes


# ============================================================================
# All tables
# ============================================================================


class TestFormatExploreTables:
    """Tests for format_explore_tables."""

    def test_all_toggles(self, plain_results, plain_params):
        titles = [t.title for t in format_explore_tables(plain_results, plain_params)]
        assert titles == ["Case Processing Summary", "Descriptives", "M-Estimators", "Percentiles", "Extreme Values"]

    def test_defaults(self, plain_results, score_variable):
        params = ExploreParams(dependent_variables=[score_variable])
        titles = [t.title for t in format_explore_tables(plain_results, params)]
        assert titles == ["Case Processing Summary", "Descriptives"]

    def test_empty_results(self, plain_params):
        assert format_explore_tables({}, plain_params) == []
