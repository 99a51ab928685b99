from __future__ import annotations

import logging
import os
import signal
import subprocess
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import List, Optional, Protocol, Union

from ..utils import format_seconds

logger = logging.getLogger(__name__)

TIME_MARKER = "Execution time(ns)"
SATISFIABLE_MARKER = "Satisfiable?"
OUT_OF_MEMORY_MARKERS = ("java.lang.OutOfMemoryError", "Translation capacity exceeded.")

EXIT_COMPLETED = 0
EXIT_TIMEOUT = 1
EXIT_EXCEPTION = 2

_TERMINATION_GRACE_SECONDS = 0.5


class Status(str, Enum):
    SUCCESS = "SUCCESS"
    TOOSHORT = "TOOSHORT"
    TIMEOUT = "TIMEOUT"
    EXCEPTION = "EXCEPTION"
    UNKNOWN = "UNKNOWN"


@dataclass(frozen=True)
class RunResult:
    status: Status
    time_ns: int = -1
    satisfiable: str = ""
    detail: str = ""

    @property
    def seconds(self) -> str:
        return format_seconds(self.time_ns) if self.time_ns >= 0 else ""


def classify_run(
    *,
    returncode: Optional[int],
    timed_out: bool,
    out_of_memory: bool,
    time_ns: Optional[int],
    satisfiable: str,
    lower_ns: int,
    upper_ns: int,
) -> RunResult:
    if returncode == EXIT_EXCEPTION and out_of_memory:
        return RunResult(Status.TIMEOUT, detail="out of memory")
    if returncode is not None and returncode == -signal.SIGKILL and not timed_out:
        # SIGKILL we did not send comes from the kernel OOM killer.
        return RunResult(Status.TIMEOUT, detail="killed by SIGKILL")
    if timed_out:
        return RunResult(Status.TIMEOUT, detail="hard timeout")
    if returncode == EXIT_TIMEOUT:
        return RunResult(Status.TIMEOUT, detail="solver timeout")
    if returncode == EXIT_EXCEPTION:
        return RunResult(Status.EXCEPTION, detail="solver exception")
    if returncode == EXIT_COMPLETED:
        if time_ns is None:
            return RunResult(Status.UNKNOWN, detail="missing execution time")
        if satisfiable not in ("SAT", "UNSAT"):
            return RunResult(Status.UNKNOWN, detail="missing satisfiability verdict")
        if time_ns > upper_ns:
            return RunResult(Status.TIMEOUT, detail="above time window")
        if time_ns >= lower_ns:
            return RunResult(Status.SUCCESS, time_ns=time_ns, satisfiable=satisfiable)
        return RunResult(Status.TOOSHORT, time_ns=time_ns, satisfiable=satisfiable)
    return RunResult(Status.UNKNOWN, detail=f"exit code {returncode}")


class BaseRunner(Protocol):
    def run(self, model_path: Path, command_index: int, overall_scope: int) -> RunResult:
        ...


@dataclass
class _ChildOutput:
    time_ns: Optional[int] = None
    satisfiable: str = ""
    out_of_memory: bool = False


def _parse_output(stdout: str) -> _ChildOutput:
    parsed = _ChildOutput()
    for line in stdout.splitlines():
        if TIME_MARKER in line:
            parsed.time_ns = int(line.split(": ", 1)[1].strip())
        elif SATISFIABLE_MARKER in line:
            parsed.satisfiable = line.split(": ", 1)[1].strip()
        elif any(marker in line for marker in OUT_OF_MEMORY_MARKERS):
            parsed.out_of_memory = True
        logger.debug("solver: %s", line)
    return parsed


def _terminate_process_group(proc: subprocess.Popen[bytes]) -> None:
    if proc.poll() is not None and not _group_alive(proc.pid):
        return
    for sig in (signal.SIGTERM, signal.SIGKILL):
        try:
            os.killpg(proc.pid, sig)
        except ProcessLookupError:
            break
        try:
            proc.wait(timeout=_TERMINATION_GRACE_SECONDS)
        except subprocess.TimeoutExpired:
            continue
        if not _group_alive(proc.pid):
            break


def _group_alive(pgid: int) -> bool:
    try:
        os.killpg(pgid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


class SolverRunner:
    """Runs one (model, command, scope) triple in an isolated child process."""

    def __init__(
        self,
        command: List[str],
        *,
        lower_ns: int,
        upper_ns: int,
        timeout_s: float,
        cwd: Optional[Path] = None,
    ) -> None:
        if not command:
            raise ValueError("solver command must not be empty")
        self.command = list(command)
        self.lower_ns = lower_ns
        self.upper_ns = upper_ns
        self.timeout_s = timeout_s
        self.cwd = cwd

    def argv(self, model_path: Union[Path, str], command_index: int, overall_scope: int) -> List[str]:
        return [*self.command, str(model_path), str(command_index), str(overall_scope)]

    def run(self, model_path: Path, command_index: int, overall_scope: int) -> RunResult:
        argv = self.argv(model_path, command_index, overall_scope)
        logger.info(
            "running command %d of %s with overall scope %d", command_index, model_path, overall_scope
        )
        timed_out = False
        try:
            proc = subprocess.Popen(
                argv,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                cwd=self.cwd,
                start_new_session=True,
            )
        except OSError as exc:
            logger.error("cannot launch solver %s: %s", argv[0], exc)
            return RunResult(Status.UNKNOWN, detail=f"launch failed: {exc.__class__.__name__}")
        try:
            try:
                stdout_bytes, _ = proc.communicate(timeout=self.timeout_s)
            except subprocess.TimeoutExpired:
                timed_out = True
                _terminate_process_group(proc)
                stdout_bytes, _ = proc.communicate()
            else:
                # The solver may leave helpers behind in its session.
                _terminate_process_group(proc)
            parsed = _parse_output(stdout_bytes.decode("utf-8", errors="replace"))
        except (OSError, ValueError, IndexError) as exc:
            _terminate_process_group(proc)
            logger.exception("cannot read solver output for %s", model_path)
            return RunResult(Status.UNKNOWN, detail=f"read failed: {exc.__class__.__name__}")
        except BaseException:
            # Ctrl-C reaches only us; the child lives in its own session.
            _terminate_process_group(proc)
            raise
        result = classify_run(
            returncode=proc.returncode,
            timed_out=timed_out,
            out_of_memory=parsed.out_of_memory,
            time_ns=parsed.time_ns,
            satisfiable=parsed.satisfiable,
            lower_ns=self.lower_ns,
            upper_ns=self.upper_ns,
        )
        if result.status in (Status.EXCEPTION, Status.UNKNOWN):
            logger.warning(
                "solver %s for command %d of %s at scope %d (%s)",
                result.status.value,
                command_index,
                model_path,
                overall_scope,
                result.detail,
            )
        else:
            logger.info(
                "solver %s for command %d at scope %d %s %s",
                result.status.value,
                command_index,
                overall_scope,
                result.seconds,
                result.satisfiable,
            )
        return result
