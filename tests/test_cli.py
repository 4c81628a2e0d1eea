import json

import pytest
from click.testing import CliRunner
from rich.console import Console

from bizbox.cli import main
from bizbox.persistence import RunStore
from bizbox.schemas import Tier


@pytest.fixture(autouse=True)
def wide_console(monkeypatch):
    # Signed download links are longer than the default 80 columns.
    monkeypatch.setattr("bizbox.cli.console", Console(width=300))


def test_cli_dry_run(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("BIZBOX_SIGNING_KEY", "cli-secret")
    runner = CliRunner()

    result = runner.invoke(
        main,
        ["run", "A subscription box for indoor plants", "--tier", "VALIDATION_PACK", "--run-id", "cli-run", "--dry-run"],
    )

    assert result.exit_code == 0, result.output
    assert "status: completed" in result.output.lower()
    assert "Completed: 5/5" in result.output
    assert (tmp_path / "var" / "bizbox.sqlite").exists()


def test_cli_run_with_package(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("BIZBOX_SIGNING_KEY", "cli-secret")
    runner = CliRunner()

    result = runner.invoke(
        main,
        ["run", "Mobile bike repair", "--tier", "launch_blueprint", "--run-id", "cli-run", "--dry-run", "--package"],
    )

    assert result.exit_code == 0, result.output
    assert "archive" in result.output
    assert "Download: http://localhost:8000/downloads/local/cli-run/" in result.output
    assert list((tmp_path / "var" / "content" / "local" / "cli-run").glob("*.zip"))


def test_cli_summary_json(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("BIZBOX_SIGNING_KEY", "cli-secret")
    monkeypatch.setenv("OPENAI_API_KEY", "unused")
    runner = CliRunner()
    runner.invoke(main, ["run", "Mobile bike repair", "--tier", "VALIDATION_PACK", "--run-id", "cli-run", "--dry-run"])

    result = runner.invoke(main, ["summary", "cli-run", "--json"])

    assert result.exit_code == 0, result.output
    summary = json.loads(result.output[result.output.index("{"):])
    assert summary["run_id"] == "cli-run"
    assert summary["completed_count"] == 5
    assert summary["sections"]["Business Model & Market Research"] == {"completed": 3, "failed": 0}


def test_cli_summary_unknown_run(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("BIZBOX_SIGNING_KEY", "cli-secret")

    result = CliRunner().invoke(main, ["summary", "missing"])

    assert result.exit_code == 1
    assert "Unknown run missing" in result.output


def test_cli_package_refuses_unfinished_run(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("BIZBOX_SIGNING_KEY", "cli-secret")
    (tmp_path / "var").mkdir()
    store = RunStore.from_url(f"sqlite:///{tmp_path / 'var' / 'bizbox.sqlite'}")
    store.create_run(run_id="busy", owner_id="local", tier=Tier.VALIDATION_PACK, subject_text="x")
    store.start_run("busy", 5)

    result = CliRunner().invoke(main, ["package", "busy"])

    assert result.exit_code == 1
    assert "still in_progress" in result.output


def test_cli_catalog_lists_plan(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)

    result = CliRunner().invoke(main, ["catalog", "--tier", "VALIDATION_PACK"])

    assert result.exit_code == 0, result.output
    assert "5 work items" in result.output
    assert "pricing_strategy_07" in result.output


def test_cli_rejects_unknown_tier(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)

    result = CliRunner().invoke(main, ["run", "x", "--tier", "GOLD", "--dry-run"])

    assert result.exit_code == 2
