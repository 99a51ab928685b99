from __future__ import annotations

import re
from typing import List, Literal, Optional, Tuple

from pydantic import BaseModel, Field

from ..errors import CommandParseError

COMMENT_RE = re.compile(r"//.*|--.*|/\*[\S\s]*?\*/")

# An optional "name :" label and the run/check keyword open a command; it runs up
# to the next paragraph keyword (or labelled command) outside any braces.
COMMAND_START_RE = re.compile(r"(\w+\s*:\s*|\b)(check|run)\b")
COMMAND_END_RE = re.compile(
    r"(?:\w+\s*:\s*)?\b(?:abstract|assert|check|fact|fun|module|none|open|pred|run"
    r"|(?:var\s+)?(?:(?:lone|some|one)\s+)?sig)\s"
)

_NAME = r"[A-Za-z_$][\w'\"/$]*"
_LABEL_RE = re.compile(r"^(\w+)\s*:\s*")
_KEYWORD_RE = re.compile(r"^(run|check)\b")
_NAME_RE = re.compile(_NAME)
_EXPECT_RE = re.compile(r"\bexpect\s+(\d+)\s*$")
_OVERALL_RE = re.compile(r"^(\d+)(?:\s+but\s+(.+))?$")
_TYPESCOPE_RE = re.compile(
    r"(exactly\s+)?(\d+)(?:\s*(\.\.)\s*(\d+)?(?:\s*:\s*(\d+))?)?\s+(" + _NAME + r")"
)

# Scopes on these names configure the translation, not a signature.
AUX_SCOPE_NAMES = {"int", "Int", "seq", "steps"}

UNSPECIFIED_SCOPE = -1


class SigScope(BaseModel):
    name: str
    start: int
    end: Optional[int]
    exact: bool = False
    increment: int = 1

    @property
    def is_growing(self) -> bool:
        return self.end != self.start


class Command(BaseModel):
    index: int
    kind: Literal["run", "check"]
    label: str
    target: str
    overall_scope: int = UNSPECIFIED_SCOPE
    sig_scopes: List[SigScope] = Field(default_factory=list)
    aux_scopes: List[str] = Field(default_factory=list)
    expect: Optional[int] = None
    text: str

    @property
    def has_overall_scope(self) -> bool:
        return self.overall_scope != UNSPECIFIED_SCOPE

    @property
    def is_growing(self) -> bool:
        return any(scope.is_growing for scope in self.sig_scopes)

    def render(self, overall_scope: int) -> str:
        """Command text with every signature scope replaced by ``overall_scope``.

        ``-1`` keeps the command exactly as declared.
        """
        if overall_scope == UNSPECIFIED_SCOPE:
            return self.text
        rendered = f"{self.kind} {self.target} for {overall_scope}"
        if self.aux_scopes:
            rendered += " but " + ", ".join(self.aux_scopes)
        if self.expect is not None:
            rendered += f" expect {self.expect}"
        return rendered


def strip_comments(text: str) -> str:
    return COMMENT_RE.sub("", text)


def _matching_brace(text: str) -> int:
    depth = 0
    for pos, char in enumerate(text):
        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return pos
    return -1


def _parse_scopes(command_text: str, scope_text: str) -> tuple[int, List[SigScope], List[str]]:
    overall = UNSPECIFIED_SCOPE
    typescopes = scope_text
    match = _OVERALL_RE.match(scope_text)
    if match:
        overall = int(match.group(1))
        typescopes = match.group(2) or ""
    sig_scopes: List[SigScope] = []
    aux_scopes: List[str] = []
    for raw_part in typescopes.split(","):
        part = raw_part.strip()
        if not part:
            continue
        scope_match = _TYPESCOPE_RE.fullmatch(part)
        if scope_match is None:
            raise CommandParseError(command_text, f"bad scope {part!r}")
        exactly, start, dots, end, increment, name = scope_match.groups()
        if name in AUX_SCOPE_NAMES:
            aux_scopes.append(part)
            continue
        start_value = int(start)
        if dots is None:
            end_value: Optional[int] = start_value
        else:
            end_value = int(end) if end is not None else None
        sig_scopes.append(
            SigScope(
                name=name,
                start=start_value,
                end=end_value,
                exact=bool(exactly),
                increment=int(increment) if increment else 1,
            )
        )
    return overall, sig_scopes, aux_scopes


def parse_command(command_text: str, index: int) -> Command:
    text = " ".join(command_text.split())
    body = text
    label: Optional[str] = None
    label_match = _LABEL_RE.match(body)
    if label_match:
        label = label_match.group(1)
        body = body[label_match.end():]
    keyword_match = _KEYWORD_RE.match(body)
    if keyword_match is None:
        raise CommandParseError(text, "missing run/check keyword")
    kind = keyword_match.group(1)
    rest = body[keyword_match.end():].strip()
    if rest.startswith("{"):
        end = _matching_brace(rest)
        if end == -1:
            raise CommandParseError(text, "unbalanced braces")
        target = rest[: end + 1]
        rest = rest[end + 1:].strip()
    elif rest and not re.match(r"(for|expect)\b", rest):
        name_match = _NAME_RE.match(rest)
        if name_match is None:
            raise CommandParseError(text, "missing command target")
        target = name_match.group(0)
        rest = rest[name_match.end():].strip()
    else:
        target = "{}"
    expect: Optional[int] = None
    expect_match = _EXPECT_RE.search(rest)
    if expect_match:
        expect = int(expect_match.group(1))
        rest = rest[: expect_match.start()].strip()
    overall = UNSPECIFIED_SCOPE
    sig_scopes: List[SigScope] = []
    aux_scopes: List[str] = []
    if rest:
        if not re.match(r"for\b", rest):
            raise CommandParseError(text, f"unexpected text {rest!r}")
        overall, sig_scopes, aux_scopes = _parse_scopes(text, rest[3:].strip())
    if label is None:
        label = target if not target.startswith("{") else f"{kind}${index + 1}"
    return Command(
        index=index,
        kind=kind,  # type: ignore[arg-type]
        label=label,
        target=target,
        overall_scope=overall,
        sig_scopes=sig_scopes,
        aux_scopes=aux_scopes,
        expect=expect,
        text=text,
    )


def _word_start(text: str, pos: int) -> bool:
    if not (text[pos].isalnum() or text[pos] == "_"):
        return False
    return pos == 0 or not (text[pos - 1].isalnum() or text[pos - 1] == "_")


def command_spans(text: str) -> List[Tuple[int, int]]:
    """``(start, end)`` offsets of every command in an already comment-free model."""
    spans: List[Tuple[int, int]] = []
    depth = 0
    start: Optional[int] = None
    pos = 0
    while pos < len(text):
        char = text[pos]
        if char == "{":
            depth += 1
        elif char == "}":
            depth = max(depth - 1, 0)
        elif depth == 0 and _word_start(text, pos):
            if start is None:
                match = COMMAND_START_RE.match(text, pos)
                if match is not None:
                    start = pos
                    pos = match.end()
                    continue
            elif COMMAND_END_RE.match(text, pos):
                spans.append((start, pos))
                start = None
                # The keyword that ended this command may open the next one.
                continue
        pos += 1
    if start is not None:
        spans.append((start, len(text)))
    return spans


def find_command_texts(text: str) -> List[str]:
    """Raw command blocks of an already comment-free model, in order of appearance."""
    return [text[start:end] for start, end in command_spans(text)]


def parse_commands(model_text: str) -> List[Command]:
    stripped = strip_comments(model_text)
    return [
        parse_command(command_text, index)
        for index, command_text in enumerate(find_command_texts(stripped))
    ]
