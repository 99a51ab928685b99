from __future__ import annotations

import os
from pathlib import Path
from typing import Iterator, List, Optional

from pydantic import BaseModel

from ..errors import ResumeStateError
from ..utils import ensure_dir, read_complete_lines, read_json, write_json

FILE_LIST_NAME = "random-files-list.txt"
SAT_LIST_NAME = "sat_models.txt"
UNSAT_LIST_NAME = "unsat_models.txt"
PROGRESS_NAME = "progress.json"


class ModelList:
    """One corpus-relative path per line; a line only counts once its newline is on disk."""

    def __init__(self, path: Path) -> None:
        self.path = path
        ensure_dir(path.parent)
        self._entries: List[str] = read_complete_lines(path)
        self._index = set(self._entries)

    def append(self, file_path: str) -> None:
        with self.path.open("a", encoding="utf-8") as handle:
            handle.write(file_path + "\n")
            handle.flush()
            os.fsync(handle.fileno())
        self._entries.append(file_path)
        self._index.add(file_path)

    def __contains__(self, file_path: object) -> bool:
        return file_path in self._index

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._entries))


def write_file_list(path: Path, file_paths: List[str]) -> None:
    ensure_dir(path.parent)
    tmp_path = path.with_name(path.name + ".tmp")
    tmp_path.write_text("".join(name + "\n" for name in file_paths), encoding="utf-8")
    os.replace(tmp_path, path)


def read_file_list(path: Path) -> List[str]:
    if not path.exists():
        raise ResumeStateError(f"cannot resume: {path} does not exist")
    return [line for line in path.read_text(encoding="utf-8").splitlines() if line]


class Progress(BaseModel):
    cursor: int = 0
    total_files: int = 0
    num_sat: int = 0
    num_unsat: int = 0
    finished: bool = False

    def save(self, path: Path) -> None:
        write_json(path, self.model_dump())

    @classmethod
    def load(cls, path: Path) -> Optional["Progress"]:
        if not path.exists():
            return None
        return cls.model_validate(read_json(path))
