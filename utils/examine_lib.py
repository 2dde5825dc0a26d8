"""
🔬 Examine Statistics Library

In-process implementation of the numeric service behind the Explore
analysis. For one dependent variable restricted to one factor group it
computes:

- Case summary (valid / missing / total, weighted)
- Descriptives with SPSS bias-corrected skewness and kurtosis
- t-based confidence interval for the mean
- 5% trimmed mean (fractional trimming)
- Weighted-average (Definition 1) and HAVERAGE percentiles
- Tukey's hinges
- Huber, Tukey biweight, Hampel and Andrews M-estimators (IRLS, MAD scale)
- Highest / lowest extreme values with partial-tie and truncation flags

``LocalExamineService`` runs the calculator on a thread pool behind the
async ``examine(request)`` contract and reports failures as error payloads.
"""

from __future__ import annotations

import asyncio
import math
from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pandas as pd
from scipy import stats
from statsmodels.robust import norms

from config import CONFIG
from logger import get_logger
from utils.explore_types import (
    ConfidenceInterval,
    Descriptives,
    ExamineRequest,
    ExamineResponse,
    ExamineResult,
    ExtremeValue,
    ExtremeValues,
    MEstimators,
    PercentileSet,
    Summary,
    is_missing_value,
)

logger = get_logger(__name__)

WAVERAGE = "waverage"
HAVERAGE = "haverage"

# Normal-consistency constant for the median absolute deviation
MAD_CONSTANT = float(stats.norm.ppf(0.75))

M_ESTIMATOR_NORMS = {
    "huber": lambda: norms.HuberT(t=1.339),
    "tukey": lambda: norms.TukeyBiweight(c=4.685),
    "hampel": lambda: norms.Hampel(a=1.7, b=3.4, c=8.5),
    "andrews": lambda: norms.AndrewWave(a=1.34),
}


# --- 1. Order statistics ---
def _sorted(values, weights) -> tuple[np.ndarray, np.ndarray]:
    x = np.asarray(values, dtype=float)
    w = np.asarray(weights, dtype=float)
    order = np.argsort(x, kind="mergesort")
    return x[order], w[order]


def weighted_percentile(values, weights, p: float, method: str = HAVERAGE) -> float | None:
    """
    Weighted percentile by one of the SPSS definitions.

    Parameters:
        values: Observations (any order).
        weights: Case weights, same length as ``values``.
        p (float): Percentile in [0, 100].
        method (str): ``"waverage"`` interpolates at ``W*p`` (Definition 1);
            ``"haverage"`` interpolates at ``(W+1)*p``.

    Returns:
        float | None: The percentile, or None when there is no positive weight.

    Raises:
        ValueError: For an unknown method or ``p`` outside [0, 100].
    """
    if not 0 <= p <= 100:
        raise ValueError(f"Percentile must be between 0 and 100, got {p}")
    x, w = _sorted(values, weights)
    if x.size == 0:
        return None
    total = w.sum()
    if total <= 0:
        return None

    if method == WAVERAGE:
        target = total * p / 100
    elif method == HAVERAGE:
        target = (total + 1) * p / 100
    else:
        raise ValueError(f"Unknown percentile method: {method}")

    cc = np.cumsum(w)
    if target <= cc[0]:
        return float(x[0])
    if target >= cc[-1]:
        return float(x[-1])

    # cc[k] <= target < cc[k + 1]
    k = int(np.searchsorted(cc, target, side="right")) - 1
    g_star = target - cc[k]
    if g_star >= 1:
        return float(x[k + 1])
    next_weight = w[k + 1]
    g = g_star if next_weight >= 1 else g_star / next_weight
    return float((1 - g) * x[k] + g * x[k + 1])


def trimmed_mean(values, weights, percent: float = 5) -> float | None:
    """
    Mean after removing ``percent`` of the total weight from each tail.

    Cases straddling a trim boundary keep only their untrimmed fraction.
    """
    x, w = _sorted(values, weights)
    total = w.sum()
    if x.size == 0 or total <= 0:
        return None
    trim = percent / 100 * total
    cc = np.cumsum(w)
    kept = np.clip(np.minimum(cc, total - trim) - np.maximum(cc - w, trim), 0, None)
    kept_total = kept.sum()
    if kept_total <= 0:
        return None
    return float((kept * x).sum() / kept_total)


def tukey_hinges(values, weights) -> tuple[float, float] | None:
    """
    Lower and upper hinges by Tukey's depth rule.

    Weighted cases are expanded by their rounded weight (at least one copy).
    """
    x, w = _sorted(values, weights)
    if x.size == 0:
        return None
    expanded = np.repeat(x, np.maximum(1, np.rint(w).astype(int)))
    n = expanded.size
    depth = (math.floor((n + 1) / 2) + 1) / 2
    lo, hi = math.floor(depth), math.ceil(depth)
    lower = (expanded[lo - 1] + expanded[hi - 1]) / 2
    upper = (expanded[n - lo] + expanded[n - hi]) / 2
    return float(lower), float(upper)


def m_estimate(values, weights, norm, max_iter: int = 30, tol: float = 1e-6) -> float | None:
    """
    Location M-estimate by iteratively reweighted means.

    Starts from the median with the MAD (scaled for normal consistency)
    held fixed as the scale; returns the median when the MAD is zero.
    """
    x = np.asarray(values, dtype=float)
    w = np.asarray(weights, dtype=float)
    if x.size == 0:
        return None
    center = weighted_percentile(x, w, 50, HAVERAGE)
    mad = weighted_percentile(np.abs(x - center), w, 50, HAVERAGE)
    scale = mad / MAD_CONSTANT if mad else 0.0
    if scale == 0:
        return center

    for _ in range(max_iter):
        psi_weights = np.asarray(norm.weights((x - center) / scale), dtype=float) * w
        denominator = psi_weights.sum()
        if denominator <= 0:
            break
        updated = float((psi_weights * x).sum() / denominator)
        converged = abs(updated - center) < tol * max(1.0, abs(center))
        center = updated
        if converged:
            break
    return center


# --- 2. Extreme values ---
def _take_ranked(ranked: list[tuple[int, float]], count: int) -> tuple[ExtremeValue, ...]:
    chosen = ranked[:count]
    # Ties with the last listed value that did not fit in the list
    partial = bool(chosen) and len(ranked) > len(chosen) and ranked[len(chosen)][1] == chosen[-1][1]
    return tuple(
        ExtremeValue(
            case_number=case,
            value=value,
            is_partial=partial and i == len(chosen) - 1,
        )
        for i, (case, value) in enumerate(chosen)
    )


def extreme_values(values, weights, case_numbers, count: int) -> ExtremeValues | None:
    """
    Highest and lowest ``count`` cases.

    ``highest`` is ranked by value descending and ``lowest`` by value
    ascending; ties keep case order. The last listed case is flagged partial
    when an unlisted case shares its value.
    """
    entries = [
        (int(case), float(value))
        for case, value, weight in zip(case_numbers, values, weights)
        if weight > 0
    ]
    if not entries:
        return None
    ascending = sorted(entries, key=lambda e: e[1])
    descending = sorted(entries, key=lambda e: -e[1])
    return ExtremeValues(
        highest=_take_ranked(descending, count),
        lowest=_take_ranked(ascending, count),
        is_truncated=count > len(entries),
    )


# --- 3. Calculator ---
class ExamineCalculator:
    """
    EXAMINE statistics for one variable over one group of cases.

    Values are read in request order; the case number of a value is its
    1-based position in ``request.values``. Cases with a non-positive or
    non-finite weight are ignored entirely; a missing weight counts as 1.
    """

    def __init__(self, request: ExamineRequest):
        self.variable = request.variable
        self.options = request.options

        raw = pd.Series(list(request.values), dtype=object)
        n = len(raw)
        if request.weights is None:
            weights = pd.Series(np.ones(n), dtype=float)
        else:
            weights = pd.to_numeric(pd.Series(list(request.weights), dtype=object), errors="coerce").fillna(1.0)
        usable = (weights > 0) & np.isfinite(weights)

        self.is_numeric = self.variable.is_numeric_like
        if self.is_numeric:
            numeric = pd.to_numeric(raw, errors="coerce").astype(float)
            valid = usable & numeric.notna() & np.isfinite(numeric) & ~numeric.isin(self._numeric_missing_codes())
        else:
            text = raw.map(lambda v: None if is_missing_value(v) else str(v).strip())
            numeric = None
            valid = usable & text.notna() & (text != "") & ~text.isin([str(m) for m in self.variable.missing_values])

        self.total_weight = float(weights[usable].sum())
        self.valid_weight = float(weights[valid].sum())

        mask = valid.to_numpy(dtype=bool)
        self.case_numbers = np.arange(1, n + 1)[mask]
        self.weights = weights.to_numpy(dtype=float)[mask]
        self.values = numeric.to_numpy(dtype=float)[mask] if numeric is not None else np.empty(0)

    def _numeric_missing_codes(self) -> list[float]:
        codes = []
        for code in self.variable.missing_values:
            try:
                codes.append(float(code))
            except (TypeError, ValueError):
                continue
        return codes

    def summary(self) -> Summary:
        return Summary(
            valid=self.valid_weight,
            missing=self.total_weight - self.valid_weight,
            total=self.total_weight,
        )

    def compute(self) -> ExamineResult:
        summary = self.summary()
        if not self.is_numeric or self.values.size == 0:
            return ExamineResult(summary=summary)

        opts = self.options
        hinges = tukey_hinges(self.values, self.weights)

        descriptives = self.descriptives(hinges) if opts.descriptives else None
        return ExamineResult(
            summary=summary,
            descriptives=descriptives,
            trimmed_mean=trimmed_mean(self.values, self.weights, opts.trim_percent) if opts.descriptives else None,
            m_estimators=self.m_estimators() if opts.m_estimators else None,
            percentiles=self.percentiles() if opts.percentiles else None,
            extreme_values=(
                extreme_values(self.values, self.weights, self.case_numbers, opts.extreme_count)
                if opts.extremes
                else None
            ),
        )

    def descriptives(self, hinges: tuple[float, float] | None) -> Descriptives:
        x, w = self.values, self.weights
        W = w.sum()
        mean = float((w * x).sum() / W)
        delta = x - mean
        m2 = float((w * delta**2).sum())
        m3 = float((w * delta**3).sum())
        m4 = float((w * delta**4).sum())

        variance = m2 / (W - 1) if W > 1 else None
        std_dev = math.sqrt(variance) if variance is not None else None
        se_mean = std_dev / math.sqrt(W) if std_dev is not None else None

        skewness = None
        se_skewness = None
        if W >= 3:
            se_skewness = math.sqrt(6 * W * (W - 1) / ((W - 2) * (W + 1) * (W + 3)))
            if variance:
                skewness = W * m3 / ((W - 1) * (W - 2) * std_dev**3)

        kurtosis = None
        se_kurtosis = None
        if W >= 4:
            se_kurtosis = math.sqrt(4 * (W**2 - 1) * se_skewness**2 / ((W - 3) * (W + 5)))
            if variance:
                numerator = W * (W + 1) * m4 - 3 * m2**2 * (W - 1)
                kurtosis = numerator / ((W - 1) * (W - 2) * (W - 3) * std_dev**4)

        interval = None
        level = self.options.confidence_level
        if se_mean is not None and W > 1:
            alpha = (100 - level) / 100
            t_critical = float(stats.t.ppf(1 - alpha / 2, W - 1))
            interval = ConfidenceInterval(
                lower=mean - t_critical * se_mean,
                upper=mean + t_critical * se_mean,
                level=level,
            )

        q1, q3 = hinges if hinges is not None else (None, None)
        minimum, maximum = float(x.min()), float(x.max())
        return Descriptives(
            mean=mean,
            se_mean=se_mean,
            confidence_interval=interval,
            median=weighted_percentile(x, w, 50, HAVERAGE),
            variance=variance,
            std_dev=std_dev,
            minimum=minimum,
            maximum=maximum,
            range=maximum - minimum,
            iqr=(q3 - q1) if hinges is not None else None,
            skewness=skewness,
            se_skewness=se_skewness,
            kurtosis=kurtosis,
            se_kurtosis=se_kurtosis,
            percentiles={25: q1, 75: q3},
        )

    def m_estimators(self) -> MEstimators:
        estimates = {
            name: m_estimate(self.values, self.weights, make_norm())
            for name, make_norm in M_ESTIMATOR_NORMS.items()
        }
        return MEstimators(**estimates)

    def percentiles(self) -> PercentileSet:
        return PercentileSet(
            method=WAVERAGE,
            values={
                int(p): weighted_percentile(self.values, self.weights, p, WAVERAGE)
                for p in self.options.percentile_points
            },
        )


def examine(request: ExamineRequest) -> ExamineResponse:
    """
    Run the calculator for one request, turning failures into an error payload.
    """
    try:
        return ExamineResponse.ok(ExamineCalculator(request).compute())
    except Exception as e:
        logger.exception("Examine failed for variable '%s'", request.variable.name)
        return ExamineResponse.failed(f"Examine failed for '{request.variable.name}': {e}")


class LocalExamineService:
    """
    Thread-pool backed numeric service.

    Each ``examine`` call runs on a worker thread so several groups can be
    computed while the event loop keeps collecting outcomes.
    """

    def __init__(self, max_workers: int | None = None):
        workers = max_workers or CONFIG.get("performance.num_threads", 4)
        self._executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="examine")
        logger.debug("Local examine service started with %d workers", workers)

    async def examine(self, request: ExamineRequest) -> ExamineResponse:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, examine, request)

    def close(self) -> None:
        """
        Release the worker threads without waiting on calls still in flight.

        A call abandoned by a task timeout keeps its thread until it returns;
        queued calls are cancelled so closing never blocks the event loop.
        """
        self._executor.shutdown(wait=False, cancel_futures=True)

    def __enter__(self) -> LocalExamineService:
        return self

    def __exit__(self, *exc) -> None:
        self.close()
