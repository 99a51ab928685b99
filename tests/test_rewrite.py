from pathlib import Path

import pytest

from alloymodelsets.alloy import rewrite
from alloymodelsets.alloy.commands import parse_commands
from alloymodelsets.alloy.rewrite import (
    RESIDUAL_COMMAND_RE,
    check_no_residual_commands,
    rewrite_model_file,
    rewrite_model_text,
    strip_commands,
)
from alloymodelsets.errors import ResidualCommandError

MODEL = """module queue
sig Node { next: lone Node }
pred acyclic { no n: Node | n in n.^next }
run acyclic for 4 // first
check { acyclic } for 3
other: run acyclic for 2 but 5 Int
fact { some Node }
"""


def test_rewrite_leaves_exactly_one_command() -> None:
    content = rewrite_model_text(MODEL, "run acyclic for 12")
    assert len(RESIDUAL_COMMAND_RE.findall(content)) == 1
    assert content.rstrip().endswith("run acyclic for 12")
    assert "fact { some Node }" in content
    assert "sig Node" in content
    commands = parse_commands(content)
    assert len(commands) == 1
    assert commands[0].overall_scope == 12


def test_strip_commands_keeps_paragraphs() -> None:
    stripped = strip_commands(MODEL)
    assert "pred acyclic" in stripped
    assert "fact { some Node }" in stripped
    assert "other:" not in stripped


def test_residual_command_detected() -> None:
    leftover = "sig A {}\nrun show for 3\n"
    with pytest.raises(ResidualCommandError) as excinfo:
        check_no_residual_commands(leftover)
    assert excinfo.value.residue == "run show for 3"


def test_identifiers_containing_keywords_are_not_residue() -> None:
    check_no_residual_commands("sig runner {}\npred checks {}\nfact { some runner }\n")


def test_rewrite_fails_hard_when_stripping_misses_a_command(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    model_path = tmp_path / "queue.als"
    model_path.write_text(MODEL, encoding="utf-8")
    monkeypatch.setattr(rewrite, "strip_commands", lambda text: text)
    with pytest.raises(ResidualCommandError):
        rewrite_model_file(model_path, "run acyclic for 12")
    assert model_path.read_text(encoding="utf-8") == MODEL


def test_rewrite_model_file_in_place(tmp_path: Path) -> None:
    model_path = tmp_path / "queue.als"
    model_path.write_text(MODEL, encoding="utf-8")
    content = rewrite_model_file(model_path, "check { acyclic } for 9")
    assert model_path.read_text(encoding="utf-8") == content
    assert "// first" not in content
    assert parse_commands(content)[0].render(-1) == "check { acyclic } for 9"


def test_rewrite_strips_command_with_keyword_in_block() -> None:
    text = "sig A { r: set A }\nrun { all a: A | a.r != none } for 3\nfact { some A }\n"
    content = rewrite_model_text(text, "run { all a: A | a.r != none } for 9")
    assert "for 3" not in content
    assert "fact { some A }" in content
    assert parse_commands(content)[0].overall_scope == 9
