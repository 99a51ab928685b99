from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional, Tuple

from ..alloy.commands import Command
from ..ledger.results import (
    REASON_EXCEPTION,
    REASON_NOT_FOUND,
    ResultLedger,
    reason_not_found_above,
    reason_not_found_under,
)
from ..solver.runner import BaseRunner, RunResult, Status
from .quota import QuotaState

logger = logging.getLogger(__name__)


class SearchStatus(str, Enum):
    FOUND = "FOUND"
    NOT_FOUND = "NOT_FOUND"
    QUOTA_MET = "QUOTA_MET"
    ABORTED = "ABORTED"
    REJECTED = "REJECTED"


@dataclass(frozen=True)
class SearchResult:
    status: SearchStatus
    scope: Optional[int] = None
    result: Optional[RunResult] = None
    reason: str = ""
    samples: int = 0

    @property
    def found(self) -> bool:
        return self.status is SearchStatus.FOUND


class ScopeSearch:
    """Bisection for a scope whose solving time lands inside the time window.

    Solving time is assumed non-decreasing in the scope and each midpoint is
    sampled exactly once, so one noisy run can steer the search the wrong way.
    """

    def __init__(
        self,
        runner: BaseRunner,
        quota: QuotaState,
        ledger: ResultLedger,
        *,
        floor: int,
        ceiling: int,
    ) -> None:
        self.runner = runner
        self.quota = quota
        self.ledger = ledger
        self.floor = floor
        self.ceiling = ceiling

    def sample(
        self, model_path: Path, command: Command, scope: int
    ) -> Tuple[RunResult, Optional[str]]:
        result = self.runner.run(model_path, command.index, scope)
        return result, self.quota.exhausted_reason(result.satisfiable)

    def fail(
        self,
        file_path: str,
        command: Command,
        reason: str,
        status: SearchStatus,
        samples: int = 0,
    ) -> SearchResult:
        logger.info("command %d of %s: %s", command.index, file_path, reason)
        self.ledger.record_failure(file_path, command.index, command.text, reason)
        return SearchResult(status=status, reason=reason, samples=samples)

    def search(
        self,
        model_path: Path,
        command: Command,
        min_scope: int,
        max_scope: int,
        *,
        file_path: Optional[str] = None,
    ) -> SearchResult:
        file_path = file_path or str(model_path)
        lo, hi = max(min_scope, 0), max_scope
        samples = 0
        logger.info("searching scopes [%d, %d] for command %d of %s", lo, hi, command.index, file_path)
        while lo <= hi:
            mid = lo + (hi - lo) // 2
            result, quota_reason = self.sample(model_path, command, mid)
            samples += 1
            if quota_reason is not None:
                return self.fail(file_path, command, quota_reason, SearchStatus.QUOTA_MET, samples)
            if result.status is Status.SUCCESS:
                return SearchResult(
                    status=SearchStatus.FOUND, scope=mid, result=result, samples=samples
                )
            if result.status is Status.TIMEOUT:
                hi = mid - 1
            elif result.status is Status.TOOSHORT:
                lo = mid + 1
            else:
                logger.warning(
                    "%s during search at scope %d for command %d of %s",
                    result.status.value,
                    mid,
                    command.index,
                    file_path,
                )
                return self.fail(file_path, command, REASON_EXCEPTION, SearchStatus.ABORTED, samples)
        if hi < self.floor:
            reason = reason_not_found_above(lo)
        elif lo > self.ceiling:
            reason = reason_not_found_under(hi)
        else:
            reason = REASON_NOT_FOUND
        return self.fail(file_path, command, reason, SearchStatus.NOT_FOUND, samples)
