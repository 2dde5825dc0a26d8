"""
Explore Analysis Entry Points

Runs the full Explore pipeline for one invocation:

    rows + params → group_rows → run_examine_tasks → aggregate_results
        → format_explore_tables → ExploreReport

Usage:
    from explore import run_explore

    report = run_explore(rows, params)
    for table in report.tables:
        print(table.to_dict())
    if report.error_message:
        print(report.error_message)
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from config import CONFIG
from logger import get_logger
from utils.examine_lib import LocalExamineService
from utils.explore_formatters import format_explore_tables
from utils.explore_runner import (
    AggregatedResults,
    ExamineService,
    TaskFailure,
    aggregate_results,
    build_examine_options,
    run_examine_tasks,
)
from utils.explore_types import AnalysisValidationError, EmptyResultError, ExploreParams
from utils.formatting import group_label
from utils.grouping import group_rows
from utils.table_model import FormattedTable

logger = get_logger(__name__)


@dataclass
class ExploreReport:
    """
    Outcome of one Explore run.

    ``tables`` hold everything that could be computed; ``failures`` list the
    (group, variable) combinations whose computation failed.
    """

    tables: list[FormattedTable]
    failures: list[TaskFailure] = field(default_factory=list)
    aggregated: AggregatedResults = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)
    task_count: int = 0

    @property
    def ok(self) -> bool:
        return not self.failures

    @property
    def error_message(self) -> str | None:
        """Summary of failed computations, or ``None`` when all succeeded."""
        if not self.failures:
            return None
        details = "; ".join(f.describe() for f in self.failures)
        return (
            f"Computation failed for {len(self.failures)} of {self.task_count} "
            f"group/variable combinations: {details}"
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "tables": [table.to_dict() for table in self.tables],
            "warnings": list(self.warnings),
            "error": self.error_message,
        }


def validate_explore_inputs(
    rows: Sequence[Sequence[Any]],
    params: ExploreParams,
    weights: Sequence[float] | None = None,
) -> None:
    """
    Reject inputs that cannot produce an analysis.

    Raises:
        AnalysisValidationError: With a user-facing message.
    """
    if not params.dependent_variables:
        raise AnalysisValidationError("Please select at least one dependent variable.")
    if not rows:
        raise AnalysisValidationError("The dataset contains no cases.")
    if weights is not None and len(weights) != len(rows):
        raise AnalysisValidationError(
            f"Case weights have {len(weights)} entries but the dataset has {len(rows)} cases."
        )
    if not 0 < params.confidence_interval < 100:
        raise AnalysisValidationError(
            f"Confidence interval must be between 0 and 100, got {params.confidence_interval}."
        )

    width = max(len(row) for row in rows)
    for variable in [*params.dependent_variables, *params.active_factors]:
        if not 0 <= variable.column_index < width:
            raise AnalysisValidationError(
                f"Variable '{variable.name}' points at column {variable.column_index}, "
                f"but the dataset has {width} columns."
            )


def _collect_warnings(report: ExploreReport, params: ExploreParams) -> list[str]:
    warnings = []
    for variable in params.dependent_variables:
        if not variable.is_numeric_like:
            warnings.append(f"'{variable.display_name}' is not a scale variable; only case counts are reported.")
    for group in report.aggregated.values():
        for result in group.results:
            if result.variable is not None and result.summary.valid <= 0:
                where = group_label(params, group.factor_levels) or "all cases"
                warnings.append(f"'{result.variable.display_name}' has no valid cases in {where}.")
    if report.failures:
        warnings.append(report.error_message)
    return warnings


async def run_explore_async(
    rows: Sequence[Sequence[Any]],
    params: ExploreParams,
    *,
    weights: Sequence[float] | None = None,
    service: ExamineService | None = None,
    timeout: float | None = None,
) -> ExploreReport:
    """
    Run an Explore analysis.

    Parameters:
        rows: Dataset rows addressed by column index.
        params: Variables and toggles of the analysis.
        weights: Optional case weights aligned with ``rows``.
        service: Numeric service; a thread-pool ``LocalExamineService`` is
            created (and closed) when omitted.
        timeout: Per-task timeout in seconds; defaults to
            ``analysis.task_timeout``.

    Returns:
        ExploreReport: Tables for every successful computation plus the
        recorded failures.

    Raises:
        AnalysisValidationError: If the inputs are rejected.
        EmptyResultError: If every computation failed or no table was
            produced.
    """
    if CONFIG.get("validation.validate_inputs", True):
        validate_explore_inputs(rows, params, weights)

    groups = group_rows(rows, params.factor_variables)
    logger.log_analysis("Explore", len(params.dependent_variables), len(groups), len(rows))

    owns_service = service is None
    if service is None:
        service = LocalExamineService()
    if timeout is None:
        timeout = CONFIG.get("analysis.task_timeout")

    try:
        outcomes, failures = await run_examine_tasks(
            service,
            rows,
            groups,
            params.dependent_variables,
            weights=weights,
            options=build_examine_options(params),
            timeout=timeout,
        )
    finally:
        if owns_service:
            service.close()

    task_count = len(groups) * len(params.dependent_variables)
    if not outcomes:
        details = "; ".join(f.describe() for f in failures)
        logger.log_operation("explore", "failed", tasks=task_count)
        raise EmptyResultError(f"Analysis produced no results. All {task_count} computations failed: {details}")

    aggregated = aggregate_results(outcomes, params.dependent_variables)
    with logger.track_time("format_explore_tables"):
        tables = format_explore_tables(aggregated, params)
    if not tables:
        raise EmptyResultError("Analysis produced no results to display.")

    report = ExploreReport(tables=tables, failures=failures, aggregated=aggregated, task_count=task_count)
    report.warnings = _collect_warnings(report, params)
    logger.log_operation("explore", "completed", tables=len(tables), failures=len(failures))
    return report


def run_explore(
    rows: Sequence[Sequence[Any]],
    params: ExploreParams,
    *,
    weights: Sequence[float] | None = None,
    service: ExamineService | None = None,
    timeout: float | None = None,
) -> ExploreReport:
    """Blocking wrapper around ``run_explore_async`` for callers without an event loop."""
    return asyncio.run(run_explore_async(rows, params, weights=weights, service=service, timeout=timeout))
