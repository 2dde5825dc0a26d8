"""
🧪 Pytest Configuration for the Explore Test Suite

Shared fixtures:
- Variable descriptors and the small reference dataset
- Stub numeric services (recording, failing, slow, scripted)
- Runtime config overrides restored after each test
"""

import asyncio

import pytest

from config import CONFIG
from utils.examine_lib import examine
from utils.explore_types import ExamineResponse, ExploreParams, ValueLabel, Variable

# ============================================================================
# 📦 Variables and datasets
# ============================================================================


@pytest.fixture
def score_variable():
    """Numeric scale dependent variable in column 0."""
    return Variable(name="score", column_index=0, label="Test Score", type="numeric", measure="scale")


@pytest.fixture
def group_variable():
    """Nominal factor in column 1 with labels for both levels."""
    return Variable(
        name="group",
        column_index=1,
        label="Group",
        type="string",
        measure="nominal",
        values=(ValueLabel("A", "Arm A"), ValueLabel("B", "Arm B")),
    )


@pytest.fixture
def plain_group_variable():
    """Nominal factor in column 1 without value labels."""
    return Variable(name="group", column_index=1, type="string", measure="nominal")


@pytest.fixture
def explore_rows():
    """Four cases: score [10, 20, 15, 25] split over groups A, B, A, B."""
    return [
        [10, "A"],
        [20, "B"],
        [15, "A"],
        [25, "B"],
    ]


@pytest.fixture
def all_tables_params(score_variable):
    """Every table toggle on, no factors."""
    return ExploreParams(
        dependent_variables=[score_variable],
        show_m_estimators=True,
        show_outliers=True,
        show_percentiles=True,
    )


# ============================================================================
# 🤖 Stub numeric services
# ============================================================================


class RecordingService:
    """Computes real results in-line and remembers every request."""

    def __init__(self):
        self.requests = []

    async def examine(self, request):
        self.requests.append(request)
        await asyncio.sleep(0)
        return examine(request)


class FailingService(RecordingService):
    """Raises for any request whose values contain one of ``fail_on``."""

    def __init__(self, fail_on, message="Calculation failed in worker"):
        super().__init__()
        self.fail_on = set(fail_on)
        self.message = message

    async def examine(self, request):
        if self.fail_on & set(request.values):
            self.requests.append(request)
            raise RuntimeError(self.message)
        return await super().examine(request)


class ErrorPayloadService(RecordingService):
    """Answers every request with an error payload."""

    async def examine(self, request):
        self.requests.append(request)
        return ExamineResponse.failed("worker reported an error")


class SlowService(RecordingService):
    """Never answers within a short timeout."""

    async def examine(self, request):
        self.requests.append(request)
        await asyncio.sleep(5)
        return examine(request)


@pytest.fixture
def recording_service():
    return RecordingService()


@pytest.fixture
def failing_service_factory():
    return FailingService


@pytest.fixture
def error_payload_service():
    return ErrorPayloadService()


@pytest.fixture
def slow_service():
    return SlowService()


# ============================================================================
# ⚙️ Config overrides
# ============================================================================


@pytest.fixture
def config_override():
    """
    Yield ``CONFIG.update`` and restore the full configuration afterwards.
    """
    saved = CONFIG.to_dict()
    yield CONFIG.update
    CONFIG._config = saved
