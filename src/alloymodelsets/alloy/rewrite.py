from __future__ import annotations

import re
from pathlib import Path

from ..errors import ResidualCommandError
from .commands import command_spans, strip_comments

RESIDUAL_COMMAND_RE = re.compile(r"\b(run|check)\b")


def strip_commands(text: str) -> str:
    pieces = []
    last = 0
    for start, end in command_spans(text):
        pieces.append(text[last:start])
        pieces.append("\n")
        last = end
    pieces.append(text[last:])
    return "".join(pieces)


def check_no_residual_commands(text: str) -> None:
    match = RESIDUAL_COMMAND_RE.search(text)
    if match is not None:
        line_start = text.rfind("\n", 0, match.start()) + 1
        line_end = text.find("\n", match.end())
        raise ResidualCommandError(text[line_start : line_end if line_end != -1 else None])


def rewrite_model_text(text: str, new_command: str) -> str:
    """Drop comments and every command, then append ``new_command`` as the only one."""
    content = strip_commands(strip_comments(text))
    check_no_residual_commands(content)
    return content + "\n" + new_command + "\n"


def rewrite_model_file(path: Path, new_command: str) -> str:
    content = rewrite_model_text(path.read_text(encoding="utf-8"), new_command)
    path.write_text(content, encoding="utf-8")
    return content
