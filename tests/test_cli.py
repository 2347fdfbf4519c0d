"""CLI tests for project, status, and translate commands."""

from __future__ import annotations

import json
import os
import shutil
from pathlib import Path
from typing import Any

import pytest
from click.testing import CliRunner
from conftest import OfflineTranslationService, make_repo

from opendoc.cli import cli
from opendoc.config import ConfigManager


def _env_with_home(tmp_path: Path) -> dict[str, Any]:
    env = dict(os.environ)
    env["HOME"] = str(tmp_path / "home")
    env["OPENDOC__LLM__BATCH_DELAY_SECONDS"] = "0"
    return env


@pytest.fixture
def repo(tmp_path: Path) -> Path:
    if shutil.which("git") is None:
        pytest.skip("git is not installed")
    return make_repo(
        tmp_path / "site",
        {
            "docs/index.md": "# Index\n",
            "docs/guide/setup.mdx": "Setup steps\n",
            "docs/broken.md": "boom\n",
            "src/app.py": "print('hi')\n",
        },
    )


@pytest.fixture
def registered(repo: Path, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> dict[str, Any]:
    monkeypatch.setattr("opendoc.cli.TranslationService", OfflineTranslationService)
    env = _env_with_home(tmp_path)
    result = CliRunner().invoke(cli, ["project", "add", str(repo)], env=env)
    assert result.exit_code == 0, result.output
    return env


def _status_json(env: dict[str, Any], *extra: str) -> dict[str, Any]:
    result = CliRunner().invoke(cli, ["status", "site", "--json", *extra], env=env)
    assert result.exit_code == 0, result.output
    return json.loads(result.stdout)


def test_project_add_list_remove(registered: dict[str, Any], repo: Path, tmp_path: Path) -> None:
    runner = CliRunner()

    listed = runner.invoke(cli, ["project", "list"], env=registered)
    assert listed.exit_code == 0
    assert "site" in listed.output

    config = ConfigManager(config_path=tmp_path / "home" / ".opendoc" / "config.yaml").load(
        include_env=False
    )
    assert [project.path for project in config.projects] == [str(repo.resolve())]

    duplicate = runner.invoke(cli, ["project", "add", str(repo)], env=registered)
    assert duplicate.exit_code != 0
    assert "already registered" in duplicate.output

    removed = runner.invoke(cli, ["project", "remove", "site"], env=registered)
    assert removed.exit_code == 0

    empty = runner.invoke(cli, ["project", "list"], env=registered)
    assert "No projects registered" in empty.output


def test_project_add_rejects_plain_directory(tmp_path: Path) -> None:
    if shutil.which("git") is None:
        pytest.skip("git is not installed")
    plain = tmp_path / "plain"
    plain.mkdir()

    result = CliRunner().invoke(cli, ["project", "add", str(plain)], env=_env_with_home(tmp_path))

    assert result.exit_code != 0
    assert "Not a git repository" in result.output


def test_status_tree_and_summary(registered: dict[str, Any]) -> None:
    result = CliRunner().invoke(cli, ["status", "site"], env=registered)

    assert result.exit_code == 0, result.output
    assert "guide/" in result.output
    assert "setup.mdx" in result.output
    assert "app.py" not in result.output
    assert "untranslated=3" in result.output


def test_status_json_with_filters(registered: dict[str, Any]) -> None:
    payload = _status_json(registered, "--ext", "mdx", "--status", "untranslated")

    assert payload["source_ref"] == "upstream/main"
    assert payload["working_ref"] == "main"
    assert [item["path"] for item in payload["files"]] == ["docs/guide/setup.mdx"]
    assert payload["stats"]["total"] == 1

    searched = _status_json(registered, "--search", "INDEX", "--max-size", "100")
    assert [item["path"] for item in searched["files"]] == ["docs/index.md"]


def test_translate_requires_paths_or_all(registered: dict[str, Any]) -> None:
    result = CliRunner().invoke(cli, ["translate", "site"], env=registered)

    assert result.exit_code != 0
    assert "Provide PATHS or use --all" in result.output


def test_translate_all_commits_successes(registered: dict[str, Any], repo: Path) -> None:
    result = CliRunner().invoke(
        cli, ["--log-level", "ERROR", "translate", "site", "--all", "--json"], env=registered
    )

    assert result.exit_code == 0, result.output
    payload = json.loads(result.stdout)
    assert sorted(payload["committed"]) == ["docs/guide/setup.mdx", "docs/index.md"]
    assert payload["progress"]["failed"] == 1
    assert payload["progress"]["errors"][0]["path"] == "docs/broken.md"
    assert (repo / "docs" / "index.md").read_text(encoding="utf-8") == "[zh] # Index\n"

    statuses = {item["path"]: item["status"] for item in _status_json(registered)["files"]}
    assert statuses == {
        "docs/broken.md": "untranslated",
        "docs/guide/setup.mdx": "up_to_date",
        "docs/index.md": "up_to_date",
    }

    again = CliRunner().invoke(
        cli, ["translate", "site", "--all", "--no-outdated", "--quiet"], env=registered
    )
    assert again.exit_code == 0
    assert "docs/broken.md" in again.output


def test_translate_named_paths_reports_skipped(registered: dict[str, Any]) -> None:
    result = CliRunner().invoke(
        cli, ["translate", "site", "docs/index.md", "docs/nope.md"], env=registered
    )

    assert result.exit_code == 0, result.output
    assert "translated=1" in result.output
    assert "skipped=1" in result.output


def test_unknown_project_is_an_error(tmp_path: Path) -> None:
    result = CliRunner().invoke(cli, ["status", "ghost"], env=_env_with_home(tmp_path))

    assert result.exit_code != 0
    assert "Unknown project: ghost" in result.output
