from __future__ import annotations

import logging
import random
import shlex
from pathlib import Path
from typing import Any, Dict, List, Optional

import typer
from rich.console import Console
from rich.table import Table

from .config import CleanupPolicy, Settings, load_settings
from .corpus.cleanup import ParseChecker, run_cleanup
from .corpus.gather import count_files, create_model_set_dir, gather_from_existing
from .corpus.readme import ReadmeNotes
from .corpus.recreate import recreate_model_set
from .errors import ModelSetError
from .extraction.driver import JOURNAL_NAME, ExtractionDriver
from .ledger.journal import EventJournal
from .logs import close_file_handlers, configure_logging, platform_summary
from .solver.runner import SolverRunner

app = typer.Typer(help="Alloy model-set curation and scope extraction")
console = Console()
logger = logging.getLogger(__name__)

CONFIG_OPTION = typer.Option(None, "--config", exists=True, dir_okay=False)
MODEL_SET_OPTION = typer.Option(..., "--model-set", exists=True, file_okay=False)
ROOT_OPTION = typer.Option(Path("model-sets"), "--root", file_okay=False)
FROM_OPTION = typer.Option(None, "--from", exists=True, file_okay=False)
SUMMARY_OPTION = typer.Option(..., "--summary", exists=True, dir_okay=False)
SOLVER_CMD_OPTION = typer.Option(
    None, "--solver-cmd", help="Solver child command, split like a shell command line."
)
PARSE_CMD_OPTION = typer.Option(
    None, "--parse-cmd", help="Parse-check command, given the model path as last argument."
)
RESUME_OPTION = typer.Option(False, "--resume", help="Continue from the saved progress.")
RESUME_CURSOR_OPTION = typer.Option(None, "--resume-cursor", min=0)
LIMIT_OPTION = typer.Option(None, "--limit", min=1, help="Process at most this many files.")
TIME_LOWER_OPTION = typer.Option(None, "--time-lower", min=0.0)
TIME_UPPER_OPTION = typer.Option(None, "--time-upper", min=0.0)
MIN_SCOPE_OPTION = typer.Option(None, "--min-scope", min=0)
MAX_SCOPE_OPTION = typer.Option(None, "--max-scope", min=0)
NUM_SAT_OPTION = typer.Option(None, "--num-sat", min=0)
NUM_UNSAT_OPTION = typer.Option(None, "--num-unsat", min=0)
SEED_OPTION = typer.Option(None, "--seed")
COMMAND_POLICY_OPTION = typer.Option(None, "--command-policy", help="random or all")
NO_CLEANUP_OPTION = typer.Option(False, "--no-cleanup")
MODEL_OPTION = typer.Option(..., "--model", exists=True, dir_okay=False)
COMMAND_INDEX_OPTION = typer.Option(0, "--command-index", min=0)
SCOPE_OPTION = typer.Option(-1, "--scope", min=-1)

modelset_app = typer.Typer(help="Model set creation and hygiene")
extract_app = typer.Typer(help="Scope extraction")
ledger_app = typer.Typer(help="Ledger commands")


def _settings(config: Optional[Path], **overrides: Any) -> Settings:
    settings = load_settings(config)
    updates = {key: value for key, value in overrides.items() if value is not None}
    if not updates:
        return settings
    try:
        return Settings.model_validate({**settings.model_dump(), **updates})
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc


def _split(command: Optional[str]) -> Optional[List[str]]:
    if command is None:
        return None
    return shlex.split(command)


def _runner(settings: Settings) -> SolverRunner:
    if not settings.solver_cmd:
        raise typer.BadParameter("missing --solver-cmd (or solver_cmd in the config)")
    return SolverRunner(
        settings.solver_cmd,
        lower_ns=settings.lower_ns,
        upper_ns=settings.upper_ns,
        timeout_s=settings.hard_timeout_s,
    )


def _print_table(title: str, rows: Dict[str, Any]) -> None:
    table = Table(title=title)
    table.add_column("Field")
    table.add_column("Value")
    for key, value in rows.items():
        table.add_row(key, str(value))
    console.print(table)


def _cleanup(
    model_set_dir: Path,
    settings: Settings,
    policy: CleanupPolicy,
    readme: ReadmeNotes,
) -> Dict[str, Any]:
    parses = ParseChecker(settings.parse_cmd, settings.parse_timeout_s) if settings.parse_cmd else None
    report = run_cleanup(
        model_set_dir,
        policy,
        rng=random.Random(settings.seed),
        extension=settings.model_extension,
        parses=parses,
        readme=readme,
        journal=EventJournal(model_set_dir / JOURNAL_NAME),
    )
    return {
        "non-alloy or hidden": report.non_alloy,
        "util models": report.util_models,
        "duplicates": report.duplicates,
        "multiple versions": report.multiple_versions,
        "do not parse": report.do_not_parse,
        "hitlist": report.hitlist,
        "empty directories": report.empty_dirs,
    }


@modelset_app.command("create")
def modelset_create_cmd(
    root: Path = ROOT_OPTION,
    sources: Optional[List[Path]] = FROM_OPTION,
    config: Optional[Path] = CONFIG_OPTION,
    parse_cmd: Optional[str] = PARSE_CMD_OPTION,
    seed: Optional[int] = SEED_OPTION,
    no_cleanup: bool = NO_CLEANUP_OPTION,
) -> None:
    settings = _settings(config, parse_cmd=_split(parse_cmd), seed=seed)
    existing = [Path(path) for path in settings.existing_model_sets] + list(sources or [])
    if not existing:
        raise typer.BadParameter("nothing to gather: pass --from or set existing_model_sets")
    try:
        model_set_dir = create_model_set_dir(root)
    except ModelSetError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc
    configure_logging(model_set_dir, console=console)
    logger.info(platform_summary())
    readme = ReadmeNotes.for_model_set(model_set_dir)
    rows: Dict[str, Any] = {"model set": model_set_dir}
    try:
        gather_from_existing(existing, model_set_dir, readme)
        if not no_cleanup:
            rows.update(_cleanup(model_set_dir, settings, settings.cleanup, readme))
        count = count_files(model_set_dir, [path.name for path in existing])
        readme.write(count.describe())
    except ModelSetError as exc:
        logger.error("%s", exc)
        raise typer.Exit(code=1) from exc
    finally:
        close_file_handlers()
    rows["files"] = count.total
    _print_table("Model Set", rows)


@modelset_app.command("cleanup")
def modelset_cleanup_cmd(
    model_set: Path = MODEL_SET_OPTION,
    config: Optional[Path] = CONFIG_OPTION,
    parse_cmd: Optional[str] = PARSE_CMD_OPTION,
    seed: Optional[int] = SEED_OPTION,
) -> None:
    settings = _settings(config, parse_cmd=_split(parse_cmd), seed=seed)
    configure_logging(model_set, console=console)
    readme = ReadmeNotes.for_model_set(model_set)
    try:
        rows = _cleanup(model_set, settings, settings.cleanup, readme)
        count = count_files(model_set)
        readme.write(count.describe())
    except ModelSetError as exc:
        logger.error("%s", exc)
        raise typer.Exit(code=1) from exc
    finally:
        close_file_handlers()
    rows["files"] = count.total
    _print_table("Cleanup", rows)


@modelset_app.command("count")
def modelset_count_cmd(model_set: Path = MODEL_SET_OPTION) -> None:
    count = count_files(model_set)
    console.print({"model_set": str(model_set), "files": count.total})


@modelset_app.command("recreate")
def modelset_recreate_cmd(
    summary: Path = SUMMARY_OPTION,
    root: Path = ROOT_OPTION,
    sources: Optional[List[Path]] = FROM_OPTION,
    config: Optional[Path] = CONFIG_OPTION,
    parse_cmd: Optional[str] = PARSE_CMD_OPTION,
) -> None:
    settings = _settings(config, parse_cmd=_split(parse_cmd))
    existing = [Path(path) for path in settings.existing_model_sets] + list(sources or [])
    if not existing:
        raise typer.BadParameter("nothing to gather: pass --from or set existing_model_sets")
    try:
        model_set_dir = create_model_set_dir(root)
    except ModelSetError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc
    configure_logging(model_set_dir, console=console)
    readme = ReadmeNotes.for_model_set(model_set_dir)
    # Filters with randomness would drop different files than the original run did.
    policy = settings.cleanup.model_copy(
        update={
            "remove_duplicate_files": False,
            "remove_multiple_versions": False,
            "hitlist_filter": False,
        }
    )
    try:
        gather_from_existing(existing, model_set_dir, readme)
        _cleanup(model_set_dir, settings, policy, readme)
        readme.write(count_files(model_set_dir, [path.name for path in existing]).describe())
        report = recreate_model_set(model_set_dir, summary, readme)
    except ModelSetError as exc:
        logger.error("%s", exc)
        raise typer.Exit(code=1) from exc
    finally:
        close_file_handlers()
    _print_table(
        "Recreated Model Set",
        {"model set": model_set_dir, "sat": report.num_sat, "unsat": report.num_unsat},
    )


@extract_app.command("run")
def extract_run_cmd(
    model_set: Path = MODEL_SET_OPTION,
    config: Optional[Path] = CONFIG_OPTION,
    solver_cmd: Optional[str] = SOLVER_CMD_OPTION,
    resume: bool = RESUME_OPTION,
    resume_cursor: Optional[int] = RESUME_CURSOR_OPTION,
    limit: Optional[int] = LIMIT_OPTION,
    time_lower: Optional[float] = TIME_LOWER_OPTION,
    time_upper: Optional[float] = TIME_UPPER_OPTION,
    min_scope: Optional[int] = MIN_SCOPE_OPTION,
    max_scope: Optional[int] = MAX_SCOPE_OPTION,
    num_sat: Optional[int] = NUM_SAT_OPTION,
    num_unsat: Optional[int] = NUM_UNSAT_OPTION,
    seed: Optional[int] = SEED_OPTION,
    command_policy: Optional[str] = COMMAND_POLICY_OPTION,
) -> None:
    settings = _settings(
        config,
        solver_cmd=_split(solver_cmd),
        resume_cursor=resume_cursor,
        time_lower_s=time_lower,
        time_upper_s=time_upper,
        min_scope=min_scope,
        max_scope=max_scope,
        num_sat_wanted=num_sat,
        num_unsat_wanted=num_unsat,
        seed=seed,
        command_policy=command_policy,
    )
    runner = _runner(settings)
    configure_logging(model_set, console=console)
    logger.info(platform_summary())
    driver = ExtractionDriver(
        settings, model_set, runner, readme=ReadmeNotes.for_model_set(model_set)
    )
    try:
        report = driver.run(resume=resume, limit=limit)
    except ModelSetError as exc:
        logger.error("%s", exc)
        raise typer.Exit(code=1) from exc
    finally:
        close_file_handlers()
    _print_table(
        "Extraction Summary",
        {
            "files": f"{report.cursor}/{report.total_files}",
            "processed this run": len(report.outcomes),
            "sat": f"{report.num_sat}/{settings.num_sat_wanted}",
            "unsat": f"{report.num_unsat}/{settings.num_unsat_wanted}",
            "quotas met": report.quotas_met,
        },
    )


@extract_app.command("probe")
def extract_probe_cmd(
    model: Path = MODEL_OPTION,
    command_index: int = COMMAND_INDEX_OPTION,
    scope: int = SCOPE_OPTION,
    config: Optional[Path] = CONFIG_OPTION,
    solver_cmd: Optional[str] = SOLVER_CMD_OPTION,
    time_lower: Optional[float] = TIME_LOWER_OPTION,
    time_upper: Optional[float] = TIME_UPPER_OPTION,
) -> None:
    settings = _settings(
        config, solver_cmd=_split(solver_cmd), time_lower_s=time_lower, time_upper_s=time_upper
    )
    result = _runner(settings).run(model, command_index, scope)
    console.print(
        {
            "status": result.status.value,
            "seconds": result.seconds,
            "satisfiable": result.satisfiable,
            "detail": result.detail,
        }
    )


@ledger_app.command("verify")
def ledger_verify_cmd(model_set: Path = MODEL_SET_OPTION) -> None:
    ok, message = EventJournal.verify_chain(model_set / JOURNAL_NAME)
    console.print({"ok": ok, "message": message})
    if not ok:
        raise typer.Exit(code=1)


app.add_typer(modelset_app, name="modelset")
app.add_typer(extract_app, name="extract")
app.add_typer(ledger_app, name="ledger")


if __name__ == "__main__":
    app()
