from __future__ import annotations

import csv
import os
from pathlib import Path
from typing import IO, Any, Dict, List, Optional, Sequence

from ..utils import ensure_dir, format_seconds
from .journal import ATTEMPT_FAILED, ATTEMPT_SUCCEEDED, EventJournal

LEDGER_HEADER = [
    "File Path",
    "i-th Command",
    "Original Command",
    "New Command",
    "Overall Scope",
    "Time",
    "Satisfiable?",
]
SUMMARY_HEADER = ["File Path", "Satisfiable?", "New Command", "Scope"]

REASON_GROWING_SIG = "Growing Sig"
REASON_NO_COMMANDS = "No commands"
REASON_ENOUGH_SAT = "Enough sat models"
REASON_ENOUGH_UNSAT = "Enough unsat models"
REASON_EXCEPTION = "Other exceptions or unknown state"
REASON_NOT_FOUND = "Cannot find after binary search"
REASON_REWRITE_FAILED = "Rewrite failed"


def reason_not_found_above(scope: int) -> str:
    return f"Scope not found above {scope}"


def reason_not_found_under(scope: int) -> str:
    return f"Scope not found under {scope}"


class CsvSink:
    """Append-only CSV file; every row is flushed and synced before returning."""

    header: Sequence[str] = ()

    def __init__(self, path: Path) -> None:
        self.path = path
        ensure_dir(path.parent)
        write_header = not path.exists() or path.stat().st_size == 0
        self._handle: Optional[IO[str]] = path.open("a", encoding="utf-8", newline="")
        self._writer = csv.writer(self._handle)
        if write_header:
            self._write(list(self.header))

    def _write(self, row: List[Any]) -> None:
        if self._handle is None:
            raise ValueError(f"{self.path} is closed")
        self._writer.writerow(row)
        self._handle.flush()
        os.fsync(self._handle.fileno())

    def close(self) -> None:
        if self._handle is not None:
            self._handle.close()
            self._handle = None

    def __enter__(self) -> "CsvSink":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @classmethod
    def read_rows(cls, path: Path) -> List[Dict[str, str]]:
        if not path.exists():
            return []
        with path.open("r", encoding="utf-8", newline="") as handle:
            return list(csv.DictReader(handle))


class ResultLedger(CsvSink):
    header = LEDGER_HEADER

    def __init__(self, path: Path, journal: Optional[EventJournal] = None) -> None:
        super().__init__(path)
        self.journal = journal

    def record_failure(
        self, file_path: str, command_index: int, command_text: str, reason: str
    ) -> None:
        self._write([file_path, command_index, command_text, "", "", "", reason])
        if self.journal is not None:
            self.journal.append(
                ATTEMPT_FAILED,
                {
                    "file_path": file_path,
                    "command_index": command_index,
                    "command": command_text,
                    "reason": reason,
                },
            )

    def record_success(
        self,
        file_path: str,
        command_index: int,
        command_text: str,
        new_command: str,
        scope: int,
        time_ns: int,
        satisfiable: str,
    ) -> None:
        seconds = format_seconds(time_ns)
        self._write([file_path, command_index, command_text, new_command, scope, seconds, satisfiable])
        if self.journal is not None:
            self.journal.append(
                ATTEMPT_SUCCEEDED,
                {
                    "file_path": file_path,
                    "command_index": command_index,
                    "command": command_text,
                    "new_command": new_command,
                    "scope": scope,
                    "seconds": seconds,
                    "satisfiable": satisfiable,
                },
            )


class ModelSummary(CsvSink):
    header = SUMMARY_HEADER

    def record(self, file_path: str, satisfiable: str, new_command: str, scope: int) -> None:
        self._write([file_path, satisfiable, new_command, scope])
