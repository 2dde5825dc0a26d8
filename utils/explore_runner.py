"""
⚙️ Explore Task Runner

Dispatches one numeric-service call per (group × dependent variable),
collects every outcome without failing fast, and regroups the successful
results for the table formatters.

Flow:
    groups + dependent variables
        → run_examine_tasks (asyncio.gather, per-task timeout)
        → aggregate_results (keyed by group key and variable name)
        → regroup_by_dep_var (one block per dependent variable)
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

from config import CONFIG
from logger import get_logger
from utils.explore_types import (
    ComputationError,
    ExamineOptions,
    ExamineRequest,
    ExamineResponse,
    ExamineResult,
    ExploreParams,
    Variable,
)
from utils.grouping import Group, GroupKey, cell, group_key_label

logger = get_logger(__name__)


class ExamineService(Protocol):
    """Async numeric service computing one ``ExamineResult`` per request."""

    async def examine(self, request: ExamineRequest) -> ExamineResponse: ...


@dataclass(frozen=True)
class TaskOutcome:
    group: Group
    variable: Variable
    result: ExamineResult


@dataclass(frozen=True)
class TaskFailure:
    group: Group
    variable: Variable
    message: str

    def describe(self) -> str:
        return f"{self.variable.name} [{group_key_label(self.group.key)}]: {self.message}"


@dataclass
class AggregatedGroup:
    key: GroupKey
    factor_levels: dict[str, Any] = field(default_factory=dict)
    results: list[ExamineResult] = field(default_factory=list)


AggregatedResults = dict[GroupKey, AggregatedGroup]


@dataclass(frozen=True)
class GroupedResult:
    """One group's result for a dependent variable, with its factor levels."""

    result: ExamineResult
    factor_levels: dict[str, Any]
    group_key: GroupKey


def build_examine_options(params: ExploreParams) -> ExamineOptions:
    """
    Translate analysis toggles into service options.

    Descriptives are also requested for the percentile table because its
    Tukey's Hinges block reads the hinges and median from them.
    """
    return ExamineOptions(
        confidence_level=params.confidence_interval,
        descriptives=params.show_descriptives or params.show_percentiles,
        m_estimators=params.show_m_estimators,
        percentiles=params.show_percentiles,
        extremes=params.show_outliers,
        extreme_count=int(CONFIG.get("analysis.extreme_count", 5)),
        trim_percent=float(CONFIG.get("analysis.trim_percent", 5)),
        percentile_points=tuple(CONFIG.get("analysis.percentile_points", (5, 10, 25, 50, 75, 90, 95))),
    )


# --- 1. Adapter ---
async def examine_group(
    service: ExamineService,
    rows: Sequence[Sequence[Any]],
    group: Group,
    variable: Variable,
    *,
    weights: Sequence[float] | None = None,
    options: ExamineOptions | None = None,
    timeout: float | None = None,
) -> ExamineResult:
    """
    Compute the statistics of one dependent variable for one group.

    Values are taken in dataset order, so the service's case numbers are
    1-based positions within the group.

    Parameters:
        service: The numeric service.
        rows: Full dataset rows.
        group: The group whose rows are analysed.
        variable: Dependent variable descriptor.
        weights: Optional case weights aligned with ``rows``.
        options: Service options; defaults to ``ExamineOptions()``.
        timeout: Seconds to wait for the service; ``None`` waits forever.

    Returns:
        ExamineResult: The service result with ``variable`` attached.

    Raises:
        ComputationError: If the service returns an error payload, raises,
            returns nothing, or does not answer within ``timeout``.
    """
    request = ExamineRequest(
        variable=variable,
        values=[cell(rows[i], variable.column_index) for i in group.row_indices],
        weights=[weights[i] for i in group.row_indices] if weights is not None else None,
        options=options or ExamineOptions(),
    )
    where = f"'{variable.name}' ({group_key_label(group.key)})"

    try:
        response = await asyncio.wait_for(service.examine(request), timeout=timeout)
    except asyncio.TimeoutError as e:
        raise ComputationError(f"Computation for {where} timed out after {timeout}s") from e
    except ComputationError:
        raise
    except Exception as e:
        raise ComputationError(f"Computation for {where} failed: {e}") from e

    if response is None or response.error is not None:
        message = response.error if response is not None else "no response"
        raise ComputationError(f"Computation for {where} failed: {message}")
    if response.result is None:
        raise ComputationError(f"Computation for {where} failed: empty result")
    return response.result.with_variable(variable)


async def run_examine_tasks(
    service: ExamineService,
    rows: Sequence[Sequence[Any]],
    groups: Mapping[GroupKey, Group],
    dependent_variables: Sequence[Variable],
    *,
    weights: Sequence[float] | None = None,
    options: ExamineOptions | None = None,
    timeout: float | None = None,
) -> tuple[list[TaskOutcome], list[TaskFailure]]:
    """
    Run every (group × dependent variable) computation concurrently.

    All tasks run to completion; a failed task is recorded and never
    cancels its siblings.

    Returns:
        tuple: ``(outcomes, failures)``, each in dispatch order.
    """
    pairs = [(group, variable) for group in groups.values() for variable in dependent_variables]
    logger.log_operation("examine_tasks", "started", tasks=len(pairs), groups=len(groups))

    settled = await asyncio.gather(
        *(
            examine_group(service, rows, group, variable, weights=weights, options=options, timeout=timeout)
            for group, variable in pairs
        ),
        return_exceptions=True,
    )

    outcomes: list[TaskOutcome] = []
    failures: list[TaskFailure] = []
    for (group, variable), settled_item in zip(pairs, settled):
        if isinstance(settled_item, ExamineResult):
            outcomes.append(TaskOutcome(group=group, variable=variable, result=settled_item))
        elif isinstance(settled_item, Exception):
            failures.append(TaskFailure(group=group, variable=variable, message=str(settled_item)))
            logger.warning("Examine task failed: %s", settled_item)
        else:
            # KeyboardInterrupt, CancelledError and friends are not task failures
            raise settled_item

    logger.log_operation(
        "examine_tasks",
        "completed",
        succeeded=len(outcomes),
        failed=len(failures),
    )
    return outcomes, failures


# --- 2. Aggregation ---
def aggregate_results(
    outcomes: Sequence[TaskOutcome],
    dependent_variables: Sequence[Variable],
) -> AggregatedResults:
    """
    Build the group-keyed aggregated results.

    Outcomes are matched by (group key, variable name) so arrival order does
    not matter. Each group lists its results in dependent-variable order;
    combinations without an outcome are omitted and groups without any
    outcome are dropped.
    """
    by_identity: dict[tuple[GroupKey, str], ExamineResult] = {}
    group_order: dict[GroupKey, Group] = {}
    for outcome in outcomes:
        by_identity[(outcome.group.key, outcome.variable.name)] = outcome.result
        group_order.setdefault(outcome.group.key, outcome.group)

    aggregated: AggregatedResults = {}
    for key, group in group_order.items():
        results = [
            by_identity[(key, variable.name)]
            for variable in dependent_variables
            if (key, variable.name) in by_identity
        ]
        if results:
            aggregated[key] = AggregatedGroup(key=key, factor_levels=dict(group.factor_levels), results=results)
    return aggregated


def regroup_by_dep_var(results: AggregatedResults) -> dict[str, list[GroupedResult]]:
    """
    Invert the aggregated results into one entry per dependent variable.

    Variables appear in the order they are first seen across groups (which
    is the dependent-variable order); each list keeps group order.
    """
    by_variable: dict[str, list[GroupedResult]] = {}
    for key, group in results.items():
        for result in group.results:
            name = result.variable.name if result.variable is not None else ""
            by_variable.setdefault(name, []).append(
                GroupedResult(result=result, factor_levels=group.factor_levels, group_key=key)
            )
    return by_variable
