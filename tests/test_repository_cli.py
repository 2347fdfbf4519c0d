"""CLI tests for fetch, branch, compare, changes, commit, and push."""

from __future__ import annotations

import json
import os
import shutil
from pathlib import Path
from typing import Any

import pytest
from click.testing import CliRunner
from conftest import OfflineTranslationService, bare_remote, git, make_repo

from opendoc.cli import cli
from opendoc.config import ConfigManager


@pytest.fixture
def site(tmp_path: Path) -> dict[str, Any]:
    """A registered project whose remotes are local bare repositories."""
    if shutil.which("git") is None:
        pytest.skip("git is not installed")
    repo = make_repo(tmp_path / "site", {"docs/index.md": "# Index\n", "docs/guide.md": "Guide\n"})
    upstream = bare_remote(repo, "upstream")
    origin = bare_remote(repo, "origin")
    git(repo, "push", "-q", str(upstream), "main:refs/heads/main", "main:refs/heads/next")

    env = dict(os.environ)
    env["HOME"] = str(tmp_path / "home")
    env["OPENDOC__LLM__BATCH_DELAY_SECONDS"] = "0"
    result = CliRunner().invoke(cli, ["project", "add", str(repo)], env=env)
    assert result.exit_code == 0, result.output
    return {"repo": repo, "upstream": upstream, "origin": origin, "env": env, "home": tmp_path}


def _invoke(site: dict[str, Any], *args: str) -> Any:
    return CliRunner().invoke(cli, list(args), env=site["env"])


def _json(site: dict[str, Any], *args: str) -> Any:
    result = _invoke(site, *args)
    assert result.exit_code == 0, result.output
    return json.loads(result.stdout)


def test_fetch_brings_new_upstream_files_into_status(
    site: dict[str, Any], tmp_path: Path
) -> None:
    clone = tmp_path / "contributor"
    git(tmp_path, "clone", "-q", str(site["upstream"]), str(clone))
    (clone / "docs" / "new.md").write_text("New page\n", encoding="utf-8")
    git(clone, "add", "-A")
    git(clone, "commit", "-q", "-m", "add page")
    git(clone, "push", "-q", "origin", "HEAD:refs/heads/main")

    before = {item["path"] for item in _json(site, "status", "site", "--json")["files"]}
    fetched = _json(site, "fetch", "site", "--json")
    after = {item["path"] for item in _json(site, "status", "site", "--json")["files"]}

    assert fetched["branches"] == ["upstream/main", "upstream/next"]
    assert fetched["upstream_branch"] == "upstream/main"
    assert "docs/new.md" not in before
    assert "docs/new.md" in after


def test_branch_persists_upstream_and_switches_working_branch(site: dict[str, Any]) -> None:
    _json(site, "fetch", "site", "--json")

    payload = _json(site, "branch", "site", "--upstream", "upstream/next", "--json")

    assert payload["upstream_branch"] == "upstream/next"
    assert payload["working_branch"] == "main"
    config_path = site["home"] / "home" / ".opendoc" / "config.yaml"
    saved = ConfigManager(config_path=config_path).get_project("site")
    assert saved.upstream_branch == "upstream/next"
    assert _json(site, "status", "site", "--json")["source_ref"] == "upstream/next"

    unknown = _invoke(site, "branch", "site", "--upstream", "upstream/ghost")
    assert unknown.exit_code != 0
    assert "Unknown upstream branch upstream/ghost" in unknown.output

    git(site["repo"], "branch", "zh")
    switched = _json(site, "branch", "site", "--switch", "zh", "--json")
    assert switched["working_branch"] == "zh"
    assert _json(site, "status", "site", "--json")["working_ref"] == "zh"


def test_translate_compare_commit_and_push(
    site: dict[str, Any], monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr("opendoc.cli.TranslationService", OfflineTranslationService)
    assert _json(site, "changes", "site", "--json")["clean"] is True

    translated = _invoke(site, "translate", "site", "docs/index.md")
    assert translated.exit_code == 0, translated.output

    comparison = _json(site, "compare", "site", "docs/index.md", "--json")
    assert comparison == {
        "path": "docs/index.md",
        "original": "# Index\n",
        "translated": "[zh] # Index\n",
        "exists": True,
    }

    pending = _json(site, "changes", "site", "--json")
    assert pending["clean"] is False
    assert pending["modified"] == ["docs/index.md"]
    assert pending["untracked"] == ["main-translation_state.json"]
    blocked = _invoke(site, "branch", "site", "--switch", "main")
    assert blocked.exit_code != 0
    assert "uncommitted changes" in blocked.output

    committed = _invoke(site, "commit", "site", "-m", "Translate index")
    assert committed.exit_code == 0, committed.output
    assert "Committed" in committed.output
    assert _json(site, "changes", "site", "--json")["clean"] is True

    empty = _invoke(site, "commit", "site", "-m", "Nothing here")
    assert empty.exit_code != 0
    assert "Nothing to commit" in empty.output

    pushed = _invoke(site, "push", "site")
    assert pushed.exit_code == 0, pushed.output
    assert git(site["origin"], "rev-parse", "refs/heads/main") == git(
        site["repo"], "rev-parse", "HEAD"
    )


def test_compare_renders_table_and_reports_missing_files(site: dict[str, Any]) -> None:
    result = _invoke(site, "compare", "site", "docs/guide.md")

    assert result.exit_code == 0, result.output
    assert "Original (upstream/main)" in result.output
    assert result.output.count("Guide") == 2

    missing = _invoke(site, "compare", "site", "docs/none.md", "--json")
    assert missing.exit_code != 0
    assert json.loads(missing.stdout)["error"]["code"] == "compare_failed"
