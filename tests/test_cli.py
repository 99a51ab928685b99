import shlex
import sys
from pathlib import Path

from typer.testing import CliRunner

from alloymodelsets.cli import app
from alloymodelsets.ledger.results import CsvSink
from alloymodelsets.utils import write_json
from solver_stubs import FAKE_SOLVER, write_model

SOLVER_CMD = shlex.join([sys.executable, str(FAKE_SOLVER), "--unit-ns", "1000000"])
# One scope unit is a millisecond: the window [10, 50] ms admits scopes 10 to 50.
WINDOW = ["--time-lower", "0.01", "--time-upper", "0.05"]


def _model_set(tmp_path: Path) -> Path:
    model_set = tmp_path / "set"
    write_model(model_set, "repo/ok.als", "sig A {}\npred show {}\nrun show for 20\n")
    write_model(model_set, "repo/small.als", "sig A {}\npred show {}\nrun show for 5\n")
    return model_set


def test_extract_run_with_solver_child(tmp_path: Path) -> None:
    model_set = _model_set(tmp_path)
    runner = CliRunner()
    result = runner.invoke(
        app,
        ["extract", "run", "--model-set", str(model_set), "--solver-cmd", SOLVER_CMD, *WINDOW],
    )
    assert result.exit_code == 0, result.output
    assert "Extraction Summary" in result.output
    summary = {
        row["File Path"]: row for row in CsvSink.read_rows(model_set / "model_summary.csv")
    }
    assert summary["repo/ok.als"]["Scope"] == "-1"
    assert summary["repo/small.als"]["Scope"] == "42"
    assert sorted((model_set / "sat_models.txt").read_text(encoding="utf-8").split()) == [
        "repo/ok.als",
        "repo/small.als",
    ]
    assert (model_set / "log.txt").exists()
    assert "Extracted 2 SAT models." in (model_set / "README.md").read_text(encoding="utf-8")

    verify = runner.invoke(app, ["ledger", "verify", "--model-set", str(model_set)])
    assert verify.exit_code == 0
    assert "'ok': True" in verify.output


def test_extract_run_requires_solver_command(tmp_path: Path) -> None:
    model_set = _model_set(tmp_path)
    result = CliRunner().invoke(app, ["extract", "run", "--model-set", str(model_set)])
    assert result.exit_code != 0
    assert not (model_set / "command_scopes.csv").exists()


def test_extract_run_rejects_inverted_window(tmp_path: Path) -> None:
    model_set = _model_set(tmp_path)
    result = CliRunner().invoke(
        app,
        [
            "extract",
            "run",
            "--model-set",
            str(model_set),
            "--solver-cmd",
            SOLVER_CMD,
            "--time-lower",
            "5",
            "--time-upper",
            "1",
        ],
    )
    assert result.exit_code != 0


def test_extract_run_reads_config_file(tmp_path: Path) -> None:
    model_set = _model_set(tmp_path)
    config = tmp_path / "config.json"
    write_json(
        config,
        {
            "solver_cmd": shlex.split(SOLVER_CMD),
            "time_lower_s": 0.01,
            "time_upper_s": 0.05,
            "num_sat_wanted": 1,
        },
    )
    result = CliRunner().invoke(
        app, ["extract", "run", "--model-set", str(model_set), "--config", str(config)]
    )
    assert result.exit_code == 0, result.output
    assert len((model_set / "sat_models.txt").read_text(encoding="utf-8").split()) == 1


def test_resume_without_saved_state_fails(tmp_path: Path) -> None:
    model_set = _model_set(tmp_path)
    result = CliRunner().invoke(
        app,
        [
            "extract",
            "run",
            "--model-set",
            str(model_set),
            "--solver-cmd",
            SOLVER_CMD,
            "--resume-cursor",
            "1",
            *WINDOW,
        ],
    )
    assert result.exit_code == 1


def test_extract_probe(tmp_path: Path) -> None:
    model = write_model(tmp_path, "one.als", "sig A {}\npred show {}\nrun show for 5\n")
    result = CliRunner().invoke(
        app,
        [
            "extract",
            "probe",
            "--model",
            str(model),
            "--scope",
            "30",
            "--solver-cmd",
            SOLVER_CMD,
            *WINDOW,
        ],
    )
    assert result.exit_code == 0, result.output
    assert "'status': 'SUCCESS'" in result.output
    assert "'satisfiable': 'SAT'" in result.output


def test_ledger_verify_detects_tampering(tmp_path: Path) -> None:
    model_set = _model_set(tmp_path)
    runner = CliRunner()
    runner.invoke(
        app,
        ["extract", "run", "--model-set", str(model_set), "--solver-cmd", SOLVER_CMD, *WINDOW],
    )
    journal = model_set / "ledger.jsonl"
    journal.write_text(
        journal.read_text(encoding="utf-8").replace("repo/ok.als", "repo/other.als"),
        encoding="utf-8",
    )
    result = runner.invoke(app, ["ledger", "verify", "--model-set", str(model_set)])
    assert result.exit_code == 1
    assert "'ok': False" in result.output


def _source_set(tmp_path: Path) -> Path:
    source = tmp_path / "old"
    write_model(source, "README.md", "scraped models\n")
    write_model(source, "repo/a.als", "sig A {}\npred show {}\nrun show for 3\n")
    write_model(source, "repo/notes.txt", "notes\n")
    write_model(source, "repo/v/model1.als", "sig V {}\n")
    write_model(source, "repo/v/model2.als", "sig W {}\nrun {} for 2\n")
    return source


def test_modelset_create_gathers_and_cleans(tmp_path: Path) -> None:
    source = _source_set(tmp_path)
    root = tmp_path / "sets"
    runner = CliRunner()
    result = runner.invoke(app, ["modelset", "create", "--root", str(root), "--from", str(source)])
    assert result.exit_code == 0, result.output
    (model_set,) = list(root.iterdir())
    assert (model_set / "old" / "repo" / "a.als").exists()
    assert not (model_set / "old" / "repo" / "v" / "model1.als").exists()
    assert not (model_set / "old" / "repo" / "notes.txt").exists()
    notes = (model_set / "README.md").read_text(encoding="utf-8")
    assert notes.startswith("Model set created: ")
    assert "    scraped models" in notes
    assert "Removed 2 non-alloy or hidden files" in notes
    assert "Total 2 .als files." in notes

    count = runner.invoke(app, ["modelset", "count", "--model-set", str(model_set)])
    assert count.exit_code == 0
    assert "'files': 2" in count.output


def test_modelset_create_needs_sources(tmp_path: Path) -> None:
    result = CliRunner().invoke(app, ["modelset", "create", "--root", str(tmp_path / "sets")])
    assert result.exit_code != 0
    assert not (tmp_path / "sets").exists()


def test_modelset_cleanup_with_parse_command(tmp_path: Path) -> None:
    model_set = tmp_path / "set"
    write_model(model_set, "repo/good.als", "sig A {}\n")
    write_model(model_set, "repo/bad.als", "sig broken {\n")
    parse_cmd = shlex.join(
        [sys.executable, "-c", "import sys; sys.exit(1 if 'broken' in open(sys.argv[1]).read() else 0)"]
    )
    result = CliRunner().invoke(
        app, ["modelset", "cleanup", "--model-set", str(model_set), "--parse-cmd", parse_cmd]
    )
    assert result.exit_code == 0, result.output
    assert (model_set / "repo" / "good.als").exists()
    assert not (model_set / "repo" / "bad.als").exists()
    assert "Removed 1 files that do not parse." in (model_set / "README.md").read_text(encoding="utf-8")


def test_modelset_recreate(tmp_path: Path) -> None:
    source = _source_set(tmp_path)
    summary = tmp_path / "model_summary.csv"
    summary.write_text(
        "File Path,Satisfiable?,New Command,Scope\nold/repo/a.als,UNSAT,run show for 11,11\n",
        encoding="utf-8",
    )
    root = tmp_path / "recreated"
    result = CliRunner().invoke(
        app,
        ["modelset", "recreate", "--summary", str(summary), "--root", str(root), "--from", str(source)],
    )
    assert result.exit_code == 0, result.output
    (model_set,) = list(root.iterdir())
    model = model_set / "old" / "repo" / "a.als"
    assert model.read_text(encoding="utf-8").rstrip().endswith("run show for 11")
    assert (model_set / "unsat_models.txt").read_text(encoding="utf-8") == "old/repo/a.als\n"
    # Version filtering is skipped when recreating.
    assert (model_set / "old" / "repo" / "v" / "model1.als").exists()


def test_modelset_cleanup_with_missing_parse_command(tmp_path: Path) -> None:
    model_set = tmp_path / "set"
    write_model(model_set, "repo/good.als", "sig A {}\n")
    result = CliRunner().invoke(
        app,
        [
            "modelset",
            "cleanup",
            "--model-set",
            str(model_set),
            "--parse-cmd",
            str(tmp_path / "no-such-parser"),
        ],
    )
    assert result.exit_code == 1
    assert (model_set / "repo" / "good.als").exists()
