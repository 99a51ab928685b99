from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Iterable, List, Optional

from ..errors import ModelSetError
from .readme import README_NAME, ReadmeNotes

logger = logging.getLogger(__name__)

MODEL_SET_STAMP = "%Y-%m-%d-%H-%M-%S"


def create_model_set_dir(root: Path, now: Optional[datetime] = None) -> Path:
    stamp = (now or datetime.now()).strftime(MODEL_SET_STAMP)
    model_set_dir = root / stamp
    try:
        model_set_dir.mkdir(parents=True, exist_ok=False)
    except FileExistsError as exc:
        raise ModelSetError(f"model set {model_set_dir} already exists") from exc
    ReadmeNotes.for_model_set(model_set_dir).write(f"Model set created: {model_set_dir}")
    logger.info("created model set %s", model_set_dir)
    return model_set_dir


def gather_from_existing(
    sources: Iterable[Path], model_set_dir: Path, readme: Optional[ReadmeNotes] = None
) -> List[Path]:
    """Copy each source model set into ``model_set_dir/<source name>``."""
    sources = list(sources)
    for source in sources:
        if not source.is_dir():
            raise ModelSetError(f"existing model set {source} is not a directory")
    if readme is not None:
        readme.write(f"Gathered from {len(sources)} existing model sets directories:")
    copied: List[Path] = []
    for source in sources:
        if readme is not None:
            readme.write(f"{README_NAME} in {source}:")
            source_readme = source / README_NAME
            if source_readme.exists():
                readme.write_lines(
                    source_readme.read_text(encoding="utf-8").splitlines(), indent="    "
                )
            readme.write()
        destination = model_set_dir / source.name
        try:
            shutil.copytree(source, destination)
        except (OSError, shutil.Error) as exc:
            raise ModelSetError(f"cannot copy {source} into {destination}: {exc}") from exc
        logger.info("copied %s into %s", source, destination)
        copied.append(destination)
    return copied


@dataclass
class FileCount:
    total: int
    from_existing: int
    existing_sets: int

    def describe(self) -> str:
        text = f"Total {self.total} .als files."
        if self.existing_sets:
            text += (
                f"\n{self.from_existing} .als files drawn from {self.existing_sets}"
                " existing model set directories."
            )
        return text


def count_files(model_set_dir: Path, existing_names: Iterable[str] = ()) -> FileCount:
    """Count files below the model set's subdirectories, as gathered."""
    existing = set(existing_names)
    total = 0
    from_existing = 0
    for child in sorted(model_set_dir.iterdir()):
        if not child.is_dir():
            continue
        found = sum(1 for path in child.rglob("*") if path.is_file())
        total += found
        if child.name in existing:
            from_existing += found
    return FileCount(total=total, from_existing=from_existing, existing_sets=len(existing))
