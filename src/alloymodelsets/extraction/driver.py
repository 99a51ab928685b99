from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import List, Optional

from ..alloy.commands import UNSPECIFIED_SCOPE, Command, parse_commands
from ..alloy.rewrite import rewrite_model_file
from ..config import Settings
from ..corpus.readme import ReadmeNotes
from ..errors import ModelSetError
from ..ledger.journal import FILE_ERROR, MODEL_ROUTED, RUN_END, RUN_RESUME, RUN_START, EventJournal
from ..ledger.results import (
    REASON_EXCEPTION,
    REASON_GROWING_SIG,
    REASON_NO_COMMANDS,
    REASON_REWRITE_FAILED,
    ModelSummary,
    ResultLedger,
    reason_not_found_under,
)
from ..search.quota import SAT, QuotaState
from ..search.scope_search import ScopeSearch, SearchResult, SearchStatus
from ..solver.runner import BaseRunner, Status
from .progress import (
    FILE_LIST_NAME,
    PROGRESS_NAME,
    SAT_LIST_NAME,
    UNSAT_LIST_NAME,
    ModelList,
    Progress,
    read_file_list,
    write_file_list,
)

logger = logging.getLogger(__name__)

LEDGER_NAME = "command_scopes.csv"
SUMMARY_NAME = "model_summary.csv"
JOURNAL_NAME = "ledger.jsonl"

# Lowest scope worth bisecting when even the declared default was too fast.
MIN_SEARCH_FLOOR = 4


@dataclass
class FileOutcome:
    file_path: str
    routed: bool = False
    satisfiable: str = ""
    scope: Optional[int] = None
    new_command: str = ""
    reason: str = ""


@dataclass
class ExtractionReport:
    start_cursor: int
    cursor: int
    total_files: int
    num_sat: int
    num_unsat: int
    quotas_met: bool
    outcomes: List[FileOutcome] = field(default_factory=list)

    @property
    def routed(self) -> List[FileOutcome]:
        return [outcome for outcome in self.outcomes if outcome.routed]


def discover_model_files(corpus_root: Path, extension: str = ".als") -> List[str]:
    return sorted(
        path.relative_to(corpus_root).as_posix()
        for path in corpus_root.rglob(f"*{extension}")
        if path.is_file()
    )


class ExtractionDriver:
    """Walks a model set in a persisted shuffled order and pins one command per model.

    Every file that resolves is rewritten in place and routed to exactly one of
    the SAT/UNSAT lists; the run stops once both quotas are met.
    """

    def __init__(
        self,
        settings: Settings,
        model_set_dir: Path,
        runner: BaseRunner,
        *,
        rng: Optional[random.Random] = None,
        readme: Optional[ReadmeNotes] = None,
    ) -> None:
        self.settings = settings
        self.model_set_dir = model_set_dir
        self.runner = runner
        self.rng = rng if rng is not None else random.Random(settings.seed)
        self.readme = readme
        self.file_list_path = model_set_dir / FILE_LIST_NAME
        self.progress_path = model_set_dir / PROGRESS_NAME
        self.quota = QuotaState(
            num_sat_wanted=settings.num_sat_wanted,
            num_unsat_wanted=settings.num_unsat_wanted,
        )
        self.journal: Optional[EventJournal] = None
        self.ledger: Optional[ResultLedger] = None
        self.summary: Optional[ModelSummary] = None
        self.sat_list: Optional[ModelList] = None
        self.unsat_list: Optional[ModelList] = None
        self.search: Optional[ScopeSearch] = None

    def start_cursor(self, resume: bool = False) -> int:
        if self.settings.resume_cursor > 0:
            return self.settings.resume_cursor
        if resume:
            progress = Progress.load(self.progress_path)
            if progress is not None:
                return progress.cursor
        return 0

    def prepare_file_list(self, cursor: int) -> List[str]:
        if cursor > 0:
            file_list = read_file_list(self.file_list_path)
            logger.info("resuming at file %d of %d", cursor, len(file_list))
            return file_list
        file_list = discover_model_files(self.model_set_dir, self.settings.model_extension)
        self.rng.shuffle(file_list)
        write_file_list(self.file_list_path, file_list)
        logger.info("shuffled %d model files into %s", len(file_list), self.file_list_path)
        return file_list

    def open_outputs(self) -> None:
        try:
            self.journal = EventJournal(self.model_set_dir / JOURNAL_NAME)
            self.ledger = ResultLedger(self.model_set_dir / LEDGER_NAME, journal=self.journal)
            self.summary = ModelSummary(self.model_set_dir / SUMMARY_NAME)
            self.sat_list = ModelList(self.model_set_dir / SAT_LIST_NAME)
            self.unsat_list = ModelList(self.model_set_dir / UNSAT_LIST_NAME)
        except OSError as exc:
            self.close()
            raise ModelSetError(f"cannot open extraction outputs in {self.model_set_dir}: {exc}") from exc
        self.quota.num_sat = len(self.sat_list)
        self.quota.num_unsat = len(self.unsat_list)
        self.search = ScopeSearch(
            self.runner,
            self.quota,
            self.ledger,
            floor=self.settings.min_scope,
            ceiling=self.settings.max_scope,
        )

    def close(self) -> None:
        for sink in (self.ledger, self.summary):
            if sink is not None:
                sink.close()

    def select_commands(self, file_path: str, commands: List[Command]) -> List[Command]:
        if self.settings.command_policy == "all":
            return list(commands)
        # Seeded per file so a resumed run picks the same command.
        chooser = random.Random(f"{self.settings.seed}:{file_path}")
        return [commands[chooser.randrange(len(commands))]]

    def resolve(self, model_path: Path, file_path: str, command: Command) -> SearchResult:
        assert self.search is not None
        search = self.search
        settings = self.settings
        if command.is_growing:
            logger.info("growing signature in command %d of %s", command.index, file_path)
            return search.fail(file_path, command, REASON_GROWING_SIG, SearchStatus.REJECTED)

        declared, quota_reason = search.sample(model_path, command, UNSPECIFIED_SCOPE)
        if quota_reason is not None:
            return search.fail(file_path, command, quota_reason, SearchStatus.QUOTA_MET, 1)
        if declared.status is Status.SUCCESS:
            return SearchResult(
                status=SearchStatus.FOUND, scope=UNSPECIFIED_SCOPE, result=declared, samples=1
            )

        if declared.status is Status.TOOSHORT:
            if not command.has_overall_scope:
                probe, quota_reason = search.sample(model_path, command, settings.max_scope)
                if quota_reason is not None:
                    return search.fail(file_path, command, quota_reason, SearchStatus.QUOTA_MET, 2)
                if probe.status is Status.SUCCESS:
                    return SearchResult(
                        status=SearchStatus.FOUND, scope=settings.max_scope, result=probe, samples=2
                    )
                if probe.status is Status.TOOSHORT:
                    return search.fail(
                        file_path,
                        command,
                        reason_not_found_under(settings.max_scope),
                        SearchStatus.NOT_FOUND,
                        2,
                    )
                found = search.search(
                    model_path,
                    command,
                    max(MIN_SEARCH_FLOOR, settings.min_scope),
                    settings.max_scope,
                    file_path=file_path,
                )
                return replace(found, samples=found.samples + 2)
            found = search.search(
                model_path, command, command.overall_scope + 1, settings.max_scope, file_path=file_path
            )
            return replace(found, samples=found.samples + 1)

        if declared.status is Status.TIMEOUT:
            if command.has_overall_scope:
                ceiling = command.overall_scope - 1
            else:
                ceiling = settings.max_scope
            found = search.search(model_path, command, settings.min_scope, ceiling, file_path=file_path)
            return replace(found, samples=found.samples + 1)

        logger.warning(
            "%s at declared scope for command %d of %s", declared.status.value, command.index, file_path
        )
        return search.fail(file_path, command, REASON_EXCEPTION, SearchStatus.ABORTED, 1)

    def route(
        self, model_path: Path, file_path: str, command: Command, resolution: SearchResult
    ) -> FileOutcome:
        assert self.ledger is not None and self.summary is not None
        assert self.sat_list is not None and self.unsat_list is not None
        assert resolution.result is not None and resolution.scope is not None
        result = resolution.result
        scope = resolution.scope
        new_command = command.render(scope)
        try:
            rewrite_model_file(model_path, new_command)
        except (OSError, UnicodeDecodeError, ModelSetError) as exc:
            self.ledger.record_failure(
                file_path,
                command.index,
                command.text,
                f"{REASON_REWRITE_FAILED}: {exc.__class__.__name__}",
            )
            raise
        self.ledger.record_success(
            file_path,
            command.index,
            command.text,
            new_command,
            scope,
            result.time_ns,
            result.satisfiable,
        )
        self.summary.record(file_path, result.satisfiable, new_command, scope)
        target = self.sat_list if result.satisfiable == SAT else self.unsat_list
        target.append(file_path)
        self.quota.record(result.satisfiable)
        if self.journal is not None:
            self.journal.append(
                MODEL_ROUTED,
                {"file_path": file_path, "satisfiable": result.satisfiable, "scope": scope},
            )
        logger.info(
            "success for command %d of %s with overall scope %d (%s, %ss)",
            command.index,
            file_path,
            scope,
            result.satisfiable,
            result.seconds,
        )
        return FileOutcome(
            file_path=file_path,
            routed=True,
            satisfiable=result.satisfiable,
            scope=scope,
            new_command=new_command,
        )

    def process_file(self, file_path: str) -> FileOutcome:
        assert self.ledger is not None
        assert self.sat_list is not None and self.unsat_list is not None
        model_path = self.model_set_dir / file_path
        if not model_path.exists():
            logger.warning("%s no longer exists, skipping", file_path)
            return FileOutcome(file_path=file_path, reason="missing")
        if file_path in self.sat_list or file_path in self.unsat_list:
            logger.info("%s was already routed, skipping", file_path)
            return FileOutcome(file_path=file_path, reason="already routed")
        commands = parse_commands(model_path.read_text(encoding="utf-8"))
        if not commands:
            self.ledger.record_failure(file_path, 0, "", REASON_NO_COMMANDS)
            return FileOutcome(file_path=file_path, reason=REASON_NO_COMMANDS)
        reason = ""
        for command in self.select_commands(file_path, commands):
            resolution = self.resolve(model_path, file_path, command)
            if resolution.found:
                return self.route(model_path, file_path, command, resolution)
            reason = resolution.reason
            if self.quota.all_met:
                break
        return FileOutcome(file_path=file_path, reason=reason)

    def _save_progress(self, cursor: int, total: int, finished: bool = False) -> None:
        Progress(
            cursor=cursor,
            total_files=total,
            num_sat=self.quota.num_sat,
            num_unsat=self.quota.num_unsat,
            finished=finished,
        ).save(self.progress_path)

    def run(self, *, resume: bool = False, limit: Optional[int] = None) -> ExtractionReport:
        start = self.start_cursor(resume)
        file_list = self.prepare_file_list(start)
        if start > len(file_list):
            raise ModelSetError(f"resume cursor {start} is past the end of {len(file_list)} files")
        self.open_outputs()
        assert self.journal is not None
        self.journal.append(
            RUN_RESUME if start > 0 else RUN_START,
            {
                "model_set_dir": self.model_set_dir,
                "cursor": start,
                "total_files": len(file_list),
                "num_sat": self.quota.num_sat,
                "num_unsat": self.quota.num_unsat,
                "num_sat_wanted": self.quota.num_sat_wanted,
                "num_unsat_wanted": self.quota.num_unsat_wanted,
            },
        )
        report = ExtractionReport(
            start_cursor=start,
            cursor=start,
            total_files=len(file_list),
            num_sat=self.quota.num_sat,
            num_unsat=self.quota.num_unsat,
            quotas_met=self.quota.all_met,
        )
        cursor = start
        try:
            while cursor < len(file_list):
                if self.quota.all_met:
                    break
                if limit is not None and cursor - start >= limit:
                    break
                file_path = file_list[cursor]
                logger.info("RUN NO. %d, %s", cursor, file_path)
                try:
                    outcome = self.process_file(file_path)
                except (OSError, UnicodeDecodeError, ModelSetError) as exc:
                    logger.error("abnormal behaviour while extracting %s: %s", file_path, exc)
                    self.journal.append(
                        FILE_ERROR,
                        {"file_path": file_path, "error": exc.__class__.__name__, "detail": str(exc)},
                    )
                    outcome = FileOutcome(file_path=file_path, reason=exc.__class__.__name__)
                report.outcomes.append(outcome)
                cursor += 1
                self._save_progress(cursor, len(file_list))
        finally:
            self.close()
        finished = cursor >= len(file_list) or self.quota.all_met
        self._save_progress(cursor, len(file_list), finished=finished)
        report.cursor = cursor
        report.num_sat = self.quota.num_sat
        report.num_unsat = self.quota.num_unsat
        report.quotas_met = self.quota.all_met
        self.journal.append(
            RUN_END,
            {
                "cursor": cursor,
                "num_sat": self.quota.num_sat,
                "num_unsat": self.quota.num_unsat,
                "finished": finished,
            },
        )
        if self.readme is not None:
            self.readme.write(f"Extracted {self.quota.num_sat} SAT models.")
            self.readme.write(f"Extracted {self.quota.num_unsat} UNSAT models.")
        logger.info(
            "extracted %d SAT and %d UNSAT models", self.quota.num_sat, self.quota.num_unsat
        )
        return report
