from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from ..ledger.results import REASON_ENOUGH_SAT, REASON_ENOUGH_UNSAT

SAT = "SAT"
UNSAT = "UNSAT"


@dataclass
class QuotaState:
    num_sat_wanted: int
    num_unsat_wanted: int
    num_sat: int = 0
    num_unsat: int = 0

    @property
    def sat_met(self) -> bool:
        return self.num_sat >= self.num_sat_wanted

    @property
    def unsat_met(self) -> bool:
        return self.num_unsat >= self.num_unsat_wanted

    @property
    def all_met(self) -> bool:
        return self.sat_met and self.unsat_met

    def exhausted_reason(self, satisfiable: str) -> Optional[str]:
        if satisfiable == SAT and self.sat_met:
            return REASON_ENOUGH_SAT
        if satisfiable == UNSAT and self.unsat_met:
            return REASON_ENOUGH_UNSAT
        return None

    def record(self, satisfiable: str) -> None:
        if satisfiable == SAT:
            self.num_sat += 1
        elif satisfiable == UNSAT:
            self.num_unsat += 1
        else:
            raise ValueError(f"unknown satisfiability verdict: {satisfiable!r}")
