from __future__ import annotations

from pathlib import Path
from typing import Iterable

from ..utils import ensure_dir

README_NAME = "README.md"


class ReadmeNotes:
    """Plain-text notes appended to a model set's README as each stage runs."""

    def __init__(self, path: Path) -> None:
        self.path = path
        ensure_dir(path.parent)

    def write(self, line: str = "") -> None:
        with self.path.open("a", encoding="utf-8") as handle:
            handle.write(line + "\n")

    def write_lines(self, lines: Iterable[str], indent: str = "") -> None:
        with self.path.open("a", encoding="utf-8") as handle:
            for line in lines:
                handle.write(indent + line + "\n")

    def read(self) -> str:
        if not self.path.exists():
            return ""
        return self.path.read_text(encoding="utf-8")

    @classmethod
    def for_model_set(cls, model_set_dir: Path) -> "ReadmeNotes":
        return cls(model_set_dir / README_NAME)
