from pathlib import Path
from typing import List, Optional, Tuple

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from alloymodelsets.alloy.commands import parse_command
from alloymodelsets.search.quota import QuotaState
from alloymodelsets.search.scope_search import ScopeSearch, SearchStatus
from alloymodelsets.solver.runner import RunResult, Status
from solver_stubs import StubRunner, cost_outcome, fixed_outcome

MODEL = Path("model.als")
COMMAND = parse_command("run show for 5", 0)


class RecordingLedger:
    def __init__(self) -> None:
        self.failures: List[Tuple[str, int, str, str]] = []

    def record_failure(self, file_path: str, command_index: int, command_text: str, reason: str) -> None:
        self.failures.append((file_path, command_index, command_text, reason))


def _search(runner: StubRunner, floor: int, ceiling: int, quota: Optional[QuotaState] = None):
    ledger = RecordingLedger()
    quota = quota or QuotaState(num_sat_wanted=1000, num_unsat_wanted=1000)
    search = ScopeSearch(runner, quota, ledger, floor=floor, ceiling=ceiling)  # type: ignore[arg-type]
    return search, ledger


@settings(max_examples=200, deadline=None)
@given(
    lower=st.integers(min_value=0, max_value=120),
    width=st.integers(min_value=0, max_value=40),
    min_scope=st.integers(min_value=0, max_value=100),
    span=st.integers(min_value=0, max_value=100),
)
def test_bisection_finds_in_window_scope_iff_one_exists(
    lower: int, width: int, min_scope: int, span: int
) -> None:
    upper = lower + width
    max_scope = min_scope + span
    runner = StubRunner(cost_outcome(lower, upper))
    search, ledger = _search(runner, min_scope, max_scope)
    result = search.search(MODEL, COMMAND, min_scope, max_scope)
    exists = max(lower, min_scope) <= min(upper, max_scope)
    if result.found:
        assert result.scope is not None
        assert lower <= result.scope <= upper
        assert min_scope <= result.scope <= max_scope
        assert result.result is not None and result.result.status is Status.SUCCESS
        assert ledger.failures == []
    else:
        assert not exists
        assert result.status is SearchStatus.NOT_FOUND
        assert len(ledger.failures) == 1
    assert result.found == exists
    # One sample per bisection step.
    assert len(runner.calls) <= (span + 1).bit_length() + 1
    assert len(runner.calls) == result.samples


def test_too_short_everywhere_reports_ceiling() -> None:
    runner = StubRunner(cost_outcome(500, 600))
    search, ledger = _search(runner, 10, 300)
    result = search.search(MODEL, COMMAND, 10, 300)
    assert result.status is SearchStatus.NOT_FOUND
    assert result.reason == "Scope not found under 300"
    assert ledger.failures == [("model.als", 0, "run show for 5", "Scope not found under 300")]


def test_timeout_everywhere_reports_floor() -> None:
    runner = StubRunner(cost_outcome(1, 5))
    search, ledger = _search(runner, 10, 300)
    result = search.search(MODEL, COMMAND, 10, 300)
    assert result.reason == "Scope not found above 10"
    assert len(ledger.failures) == 1


def test_gap_inside_configured_bounds() -> None:
    runner = StubRunner(cost_outcome(100, 200))
    search, ledger = _search(runner, 0, 300)
    result = search.search(MODEL, COMMAND, 5, 20)
    assert result.reason == "Cannot find after binary search"
    assert [call[2] for call in runner.calls] == [12, 16, 18, 19, 20]


def test_midpoint_sequence() -> None:
    runner = StubRunner(cost_outcome(12, 1000))
    search, _ = _search(runner, 10, 300)
    result = search.search(MODEL, COMMAND, 6, 300)
    assert result.found
    assert result.scope == 153
    assert runner.calls == [("model.als", 0, 153)]


def test_empty_interval_runs_nothing() -> None:
    runner = StubRunner(cost_outcome(1, 2))
    search, ledger = _search(runner, 10, 300)
    result = search.search(MODEL, COMMAND, 10, 4)
    assert not result.found
    assert runner.calls == []
    assert len(ledger.failures) == 1


@pytest.mark.parametrize("status", [Status.EXCEPTION, Status.UNKNOWN])
def test_exception_aborts_on_first_sample(status: Status) -> None:
    runner = StubRunner(fixed_outcome(status))
    search, ledger = _search(runner, 10, 300)
    result = search.search(MODEL, COMMAND, 10, 300)
    assert result.status is SearchStatus.ABORTED
    assert result.reason == "Other exceptions or unknown state"
    assert len(runner.calls) == 1
    assert len(ledger.failures) == 1


def test_quota_met_for_sat_aborts_search() -> None:
    quota = QuotaState(num_sat_wanted=1, num_unsat_wanted=5, num_sat=1)
    runner = StubRunner(cost_outcome(10, 20))
    search, ledger = _search(runner, 0, 40, quota)
    result = search.search(MODEL, COMMAND, 0, 40)
    assert result.status is SearchStatus.QUOTA_MET
    assert result.reason == "Enough sat models"
    assert len(runner.calls) == 1
    assert quota.num_sat == 1
    assert ledger.failures[0][3] == "Enough sat models"


def test_quota_met_for_unsat_aborts_even_when_too_short() -> None:
    quota = QuotaState(num_sat_wanted=5, num_unsat_wanted=0)
    runner = StubRunner(cost_outcome(100, 200, verdict=lambda path, scope: "UNSAT"))
    search, _ = _search(runner, 0, 40, quota)
    result = search.search(MODEL, COMMAND, 0, 40)
    assert result.reason == "Enough unsat models"
    assert len(runner.calls) == 1
    assert quota.num_unsat == 0


def test_timeout_samples_skip_quota_gate() -> None:
    quota = QuotaState(num_sat_wanted=0, num_unsat_wanted=0)
    runner = StubRunner(fixed_outcome(Status.TIMEOUT))
    search, _ = _search(runner, 0, 7, quota)
    result = search.search(MODEL, COMMAND, 0, 7)
    assert result.status is SearchStatus.NOT_FOUND
    assert len(runner.calls) == 3


def test_single_noisy_sample_misdirects_search() -> None:
    """Known limitation: each midpoint is trusted after one run."""
    in_window = cost_outcome(30, 35)

    def noisy(model_path: Path, command_index: int, overall_scope: int) -> RunResult:
        if overall_scope == 20:
            return RunResult(Status.TIMEOUT, detail="system load")
        return in_window(model_path, command_index, overall_scope)

    runner = StubRunner(noisy)
    search, _ = _search(runner, 0, 40)
    result = search.search(MODEL, COMMAND, 0, 40)
    assert not result.found
    scopes = [call[2] for call in runner.calls]
    assert scopes[0] == 20
    assert len(scopes) == len(set(scopes))
