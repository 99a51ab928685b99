from __future__ import annotations

import logging
import random
import shutil
import subprocess
from collections import defaultdict
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

from ..config import CleanupPolicy
from ..errors import ModelSetError
from ..ledger.journal import FILES_REMOVED, EventJournal
from .readme import ReadmeNotes

logger = logging.getLogger(__name__)

ParseCheck = Callable[[Path], bool]


def _subdir_files(root: Path) -> List[Path]:
    """Files below the model set's subdirectories; top-level notes and outputs are never touched."""
    files: List[Path] = []
    for child in sorted(root.iterdir()):
        if child.is_dir():
            files.extend(path for path in sorted(child.rglob("*")) if path.is_file())
    return files


def _remove(path: Path, why: str) -> None:
    logger.info("%s removed by the %s filter", path, why)
    path.unlink()


def remove_non_alloy_files(root: Path, extension: str = ".als") -> int:
    removed = 0
    for child in sorted(root.iterdir()):
        if not child.name.startswith("."):
            continue
        if child.is_dir() and not child.is_symlink():
            removed += sum(1 for path in child.rglob("*") if path.is_file())
            shutil.rmtree(child)
        else:
            removed += 1
            child.unlink()
        logger.info("%s removed as a hidden file", child)
    for path in _subdir_files(root):
        hidden = any(part.startswith(".") for part in path.relative_to(root).parts)
        if hidden or path.suffix != extension:
            _remove(path, "non-alloy")
            removed += 1
    return removed


def remove_util_models(root: Path, util_model_names: Iterable[str]) -> int:
    names = set(util_model_names)
    removed = 0
    for path in _subdir_files(root):
        if path.name in names:
            _remove(path, "util model")
            removed += 1
    return removed


def remove_duplicate_files(root: Path, rng: random.Random) -> int:
    """Files sharing a name and a size are duplicates; one of each group survives at random."""
    groups: Dict[Tuple[str, int], List[Path]] = defaultdict(list)
    for path in _subdir_files(root):
        groups[(path.name, path.stat().st_size)].append(path)
    removed = 0
    for key in sorted(groups):
        paths = groups[key]
        if len(paths) < 2:
            continue
        keep = rng.randrange(len(paths))
        for idx, path in enumerate(paths):
            if idx != keep:
                _remove(path, "duplicate")
                removed += 1
    return removed


def prefix_of(name: str) -> str:
    """Name up to its first digit, never past the extension.

    A name starting with a digit is its own prefix so it matches nothing else.
    """
    end = 0
    while end < len(name) and not name[end].isdigit():
        end += 1
    if end == 0:
        return name
    stem = name.split(".als", 1)[0]
    return name[: min(end, len(stem))]


def _remove_versions_in(directory: Path) -> int:
    names = sorted(path.name for path in directory.iterdir() if path.is_file())
    if not names:
        return 0
    removed = 0
    prefix = names[0] + "not"
    prev = names[0]
    for name in names:
        if prefix_of(name) == prefix:
            _remove(directory / prev, "multiple version")
            removed += 1
        else:
            prefix = prefix_of(name)
        prev = name
    return removed


def remove_multiple_versions(root: Path) -> int:
    """Within one directory, keep only the alphabetically last of names sharing a prefix."""
    removed = 0
    for child in sorted(root.iterdir()):
        if not child.is_dir():
            continue
        directories = [path for path in child.rglob("*") if path.is_dir()] + [child]
        # Deepest first, like a post-order walk.
        for directory in sorted(directories, key=lambda path: len(path.parts), reverse=True):
            removed += _remove_versions_in(directory)
    return removed


class ParseChecker:
    """Runs the configured parse command on one model; exit code 0 means it parses."""

    def __init__(self, command: List[str], timeout_s: float) -> None:
        if not command:
            raise ValueError("parse command must not be empty")
        self.command = list(command)
        self.timeout_s = timeout_s

    def __call__(self, model_path: Path) -> bool:
        argv = [*self.command, str(model_path)]
        try:
            completed = subprocess.run(
                argv,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                timeout=self.timeout_s,
                check=False,
            )
        except subprocess.TimeoutExpired:
            logger.info("parsing %s timed out", model_path)
            return False
        except OSError as exc:
            raise ModelSetError(f"cannot run parse command {self.command[0]}: {exc}") from exc
        if completed.returncode != 0:
            output = completed.stdout.decode("utf-8", errors="replace").strip()
            logger.info("%s does not parse: %s", model_path, output.splitlines()[-1] if output else "")
            return False
        return True


def remove_do_not_parse(root: Path, parses: ParseCheck) -> int:
    removed = 0
    for path in _subdir_files(root):
        logger.info("parsing and typechecking %s", path)
        if not parses(path):
            _remove(path, "do not parse")
            removed += 1
    return removed


def hitlist_filter(
    root: Path,
    hitlist_names: Iterable[str],
    common_file_names: Iterable[str],
    protected_dir: Optional[str] = None,
) -> int:
    """Drop hitlisted models; for common names keep only the first one met."""
    hitlist = list(hitlist_names)
    common = list(common_file_names)
    encountered: Set[str] = set()
    removed = 0
    for child in sorted(root.iterdir()):
        if not child.is_dir() or child.name == protected_dir:
            continue
        for path in sorted(child.rglob("*")):
            if not path.is_file():
                continue
            if any(name in path.name for name in hitlist):
                _remove(path, "hitlist")
                removed += 1
                continue
            common_name = next((name for name in common if name in path.name), None)
            if common_name is None:
                continue
            if common_name in encountered:
                _remove(path, "hitlist")
                removed += 1
            else:
                encountered.add(common_name)
    return removed


def prune_empty_dirs(root: Path) -> int:
    removed = 0
    directories = [path for path in root.rglob("*") if path.is_dir()]
    for directory in sorted(directories, key=lambda path: len(path.parts), reverse=True):
        if not any(directory.iterdir()):
            directory.rmdir()
            removed += 1
    return removed


@dataclass
class CleanupReport:
    non_alloy: int = 0
    util_models: int = 0
    duplicates: int = 0
    multiple_versions: int = 0
    do_not_parse: int = 0
    hitlist: int = 0
    empty_dirs: int = 0

    @property
    def total_files(self) -> int:
        return (
            self.non_alloy
            + self.util_models
            + self.duplicates
            + self.multiple_versions
            + self.do_not_parse
            + self.hitlist
        )


def run_cleanup(
    model_set_dir: Path,
    policy: CleanupPolicy,
    *,
    rng: random.Random,
    extension: str = ".als",
    parses: Optional[ParseCheck] = None,
    readme: Optional[ReadmeNotes] = None,
    journal: Optional[EventJournal] = None,
) -> CleanupReport:
    report = CleanupReport()

    def note(line: str) -> None:
        logger.info(line)
        if readme is not None:
            readme.write(line)

    if policy.remove_non_alloy_files:
        report.non_alloy = remove_non_alloy_files(model_set_dir, extension)
        note(f"Removed {report.non_alloy} non-alloy or hidden files")
    if policy.remove_util_models:
        report.util_models = remove_util_models(model_set_dir, policy.util_model_names)
        note(f"Removed {report.util_models} util files")
    if policy.remove_duplicate_files:
        report.duplicates = remove_duplicate_files(model_set_dir, rng)
        note(f"Removed {report.duplicates} duplicate files")
    if policy.remove_multiple_versions:
        report.multiple_versions = remove_multiple_versions(model_set_dir)
        note(
            f"Removed {report.multiple_versions} files that might be an earlier version of another file."
        )
    if policy.remove_do_not_parse:
        if parses is None:
            logger.warning("no parse command configured, keeping files that may not parse")
        else:
            report.do_not_parse = remove_do_not_parse(model_set_dir, parses)
            note(f"Removed {report.do_not_parse} files that do not parse.")
    if policy.hitlist_filter:
        report.hitlist = hitlist_filter(
            model_set_dir,
            policy.hitlist_names,
            policy.common_file_names,
            policy.hitlist_protected_dir,
        )
        note(f"Removed {report.hitlist} files whose name is in hitlist.")
    report.empty_dirs = prune_empty_dirs(model_set_dir)
    if journal is not None:
        journal.append(FILES_REMOVED, asdict(report))
    return report
