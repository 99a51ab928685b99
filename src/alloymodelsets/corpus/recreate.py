from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional

from ..alloy.rewrite import rewrite_model_file
from ..errors import ModelSetError
from ..extraction.progress import SAT_LIST_NAME, UNSAT_LIST_NAME, ModelList
from ..ledger.results import SUMMARY_HEADER, CsvSink
from ..search.quota import SAT
from .readme import ReadmeNotes

logger = logging.getLogger(__name__)

RESULT_NAME = "result.csv"
STATUS_SUCCESS = "success"
STATUS_NOT_FOUND = "file not found"


class RecreateResult(CsvSink):
    header = ["File Path", "Status"]

    def record(self, file_path: str, status: str) -> None:
        self._write([file_path, status])


@dataclass
class RecreateReport:
    num_sat: int = 0
    num_unsat: int = 0
    statuses: Dict[str, str] = field(default_factory=dict)


def recreate_model_set(
    model_set_dir: Path, summary_path: Path, readme: Optional[ReadmeNotes] = None
) -> RecreateReport:
    """Re-pin every model listed in a ``model_summary.csv`` to its recorded command."""
    rows = CsvSink.read_rows(summary_path)
    if not rows:
        raise ModelSetError(f"{summary_path} has no model rows")
    missing = [column for column in SUMMARY_HEADER if column not in rows[0]]
    if missing:
        raise ModelSetError(f"{summary_path} lacks columns {missing}")
    for name in (RESULT_NAME, SAT_LIST_NAME, UNSAT_LIST_NAME):
        (model_set_dir / name).unlink(missing_ok=True)
    sat_list = ModelList(model_set_dir / SAT_LIST_NAME)
    unsat_list = ModelList(model_set_dir / UNSAT_LIST_NAME)
    report = RecreateReport()
    with RecreateResult(model_set_dir / RESULT_NAME) as result:
        for row in rows:
            file_path = row["File Path"]
            model_path = model_set_dir / file_path
            if not model_path.exists():
                logger.warning("%s listed in %s was not found", file_path, summary_path)
                result.record(file_path, STATUS_NOT_FOUND)
                report.statuses[file_path] = STATUS_NOT_FOUND
                continue
            try:
                rewrite_model_file(model_path, row["New Command"])
            except (OSError, UnicodeDecodeError, ModelSetError) as exc:
                logger.error("cannot recreate %s: %s", file_path, exc)
                result.record(file_path, exc.__class__.__name__)
                report.statuses[file_path] = exc.__class__.__name__
                continue
            if row["Satisfiable?"] == SAT:
                sat_list.append(file_path)
                report.num_sat += 1
            else:
                unsat_list.append(file_path)
                report.num_unsat += 1
            result.record(file_path, STATUS_SUCCESS)
            report.statuses[file_path] = STATUS_SUCCESS
    if readme is not None:
        readme.write(f"Recreated {report.num_sat} SAT models.")
        readme.write(f"Recreated {report.num_unsat} UNSAT models.")
    return report
