"""Unit tests for configuration management."""

from pathlib import Path

import pytest

from opendoc.config import (
    ConfigError,
    ConfigManager,
    OpenDocConfig,
    ProjectSettings,
    PromptTemplate,
    assign_dotted,
    flatten_for_env,
    resolve_with_precedence,
)
from opendoc.config.models import DEFAULT_PROMPT


def _fresh_manager(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> ConfigManager:
    monkeypatch.setenv("HOME", str(tmp_path))
    return ConfigManager()


def _project(name: str = "docs-site", path: str = "/work/docs-site") -> ProjectSettings:
    return ProjectSettings(id=f"id-{name}", name=name, path=path)


def test_ensure_exists_creates_default_file(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    manager = _fresh_manager(tmp_path, monkeypatch)

    path = manager.ensure_exists()

    assert path == tmp_path / ".opendoc" / "config.yaml"
    text = path.read_text(encoding="utf-8")
    assert "opendoc configuration file" in text
    assert "Last updated:" in text

    config = manager.load(include_env=False)
    assert isinstance(config, OpenDocConfig)
    assert config.llm.concurrency == 5
    assert config.llm.base_url == "https://api.openai.com/v1"


def test_resolve_with_precedence_respects_order(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    manager = _fresh_manager(tmp_path, monkeypatch)
    manager.ensure_exists()

    manager.save({"llm": {"model": "qwen-max", "concurrency": 3}})

    env = {"OPENDOC__LLM__TEMPERATURE": "0.5", "OPENDOC__LLM__CONCURRENCY": "8"}
    cli = {"llm.temperature": 0.2}

    config = manager.load(cli_overrides=cli, env_overrides=env)

    assert config.llm.model == "qwen-max"
    assert config.llm.concurrency == 8
    # CLI overrides take precedence over environment
    assert config.llm.temperature == pytest.approx(0.2)


def test_invalid_yaml_raises_config_error(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    manager = _fresh_manager(tmp_path, monkeypatch)
    manager.ensure_exists()

    manager.config_path.write_text("- not-a-mapping", encoding="utf-8")

    with pytest.raises(ConfigError):
        manager.load()


def test_flatten_for_env_round_trips_defaults() -> None:
    flat = flatten_for_env(OpenDocConfig())

    assert flat["OPENDOC__LLM__MODEL"] == "gpt-4-turbo"
    assert flat["OPENDOC__LLM__MAX_TOKENS"] == "4000"
    assert flat["OPENDOC__LOGGING__FILE"] == "null"


@pytest.mark.parametrize(
    "overrides",
    [
        {"llm": {"concurrency": 0}},
        {"llm": {"max_tokens": "lots"}},
        {"llm": {"unknown": True}},
    ],
)
def test_resolve_with_precedence_invalid_value_raises(overrides) -> None:
    with pytest.raises(ConfigError):
        resolve_with_precedence(defaults=OpenDocConfig(), file_overrides=overrides)


def test_project_registration_lifecycle(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    manager = _fresh_manager(tmp_path, monkeypatch)

    manager.add_project(_project())

    loaded = manager.get_project("docs-site")
    assert loaded.id == "id-docs-site"
    assert loaded.rules.include_dir_set() == {"docs"}
    assert loaded.rules.extension_set() == {"md", "mdx"}
    assert loaded.upstream_branch == "upstream/main"
    assert manager.get_project("id-docs-site") == loaded

    updated = manager.update_project("docs-site", {"prompt": "Translate to French."})
    assert updated.prompt == "Translate to French."
    assert manager.get_project("docs-site").prompt == "Translate to French."

    removed = manager.remove_project("id-docs-site")
    assert removed.name == "docs-site"
    with pytest.raises(ConfigError):
        manager.get_project("docs-site")


def test_duplicate_projects_are_rejected(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    manager = _fresh_manager(tmp_path, monkeypatch)
    manager.add_project(_project())

    with pytest.raises(ConfigError):
        manager.add_project(_project(name="other"))
    with pytest.raises(ConfigError):
        manager.add_project(ProjectSettings(id="id-docs-site", name="x", path="/elsewhere"))
    assert len(manager.load(include_env=False).projects) == 1


def test_unknown_project_operations_raise(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    manager = _fresh_manager(tmp_path, monkeypatch)

    with pytest.raises(ConfigError):
        manager.remove_project("nope")
    with pytest.raises(ConfigError):
        manager.update_project("nope", {"prompt": "x"})


def test_invalid_project_update_raises(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    manager = _fresh_manager(tmp_path, monkeypatch)
    manager.add_project(_project())

    with pytest.raises(ConfigError):
        manager.update_project("docs-site", {"color": "blue"})


def test_prompt_templates(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    manager = _fresh_manager(tmp_path, monkeypatch)
    assert manager.load(include_env=False).default_prompt() == DEFAULT_PROMPT

    manager.add_prompt_template(PromptTemplate(name="zh", content="Translate into Chinese."))
    manager.add_prompt_template(PromptTemplate(name="ja", content="Translate into Japanese."))
    with pytest.raises(ConfigError):
        manager.add_prompt_template(PromptTemplate(name="zh", content="dup"))

    manager.update_prompt_template("zh", "Translate into Simplified Chinese.")
    config = manager.load(include_env=False)
    assert config.default_prompt() == "Translate into Simplified Chinese."

    manager.remove_prompt_template("zh")
    assert manager.load(include_env=False).default_prompt() == "Translate into Japanese."
    with pytest.raises(ConfigError):
        manager.remove_prompt_template("zh")
    with pytest.raises(ConfigError):
        manager.update_prompt_template("zh", "x")


def test_project_and_template_lists_merge_by_key() -> None:
    file_overrides = {
        "projects": [
            {"id": "p1", "name": "site", "path": "/work/site"},
            {"id": "p2", "name": "blog", "path": "/work/blog"},
        ],
        "prompt_templates": [{"name": "zh", "content": "Chinese"}],
    }
    env_overrides = {
        "projects": {"SITE": {"upstream_branch": "upstream/next", "rules": {"file_exts": "md"}}},
        "prompt_templates": [{"name": "ja", "content": "Japanese"}],
    }
    cli_overrides = {
        "projects": [{"id": "p2", "prompt": "Translate the blog."}],
        "prompt_templates.zh.content": "Simplified Chinese",
    }

    config = resolve_with_precedence(
        defaults=OpenDocConfig(),
        file_overrides=file_overrides,
        env_overrides=env_overrides,
        cli_overrides=cli_overrides,
    )

    site, blog = config.projects
    assert (site.upstream_branch, site.rules.file_exts, site.rules.include_dirs) == (
        "upstream/next",
        "md",
        "docs",
    )
    assert (blog.path, blog.prompt, blog.upstream_branch) == (
        "/work/blog",
        "Translate the blog.",
        "upstream/main",
    )
    assert [(t.name, t.content) for t in config.prompt_templates] == [
        ("zh", "Simplified Chinese"),
        ("ja", "Japanese"),
    ]


@pytest.mark.parametrize(
    "env_overrides",
    [
        {"projects": {"ghost": {"prompt": "x"}}},
        {"projects": [{"name": "no-id", "path": "/x"}]},
        {"projects": {"site": "not a mapping"}},
        {"prompt_templates": "zh"},
    ],
)
def test_invalid_list_section_overrides_raise(env_overrides) -> None:
    file_overrides = {"projects": [{"id": "p1", "name": "site", "path": "/work/site"}]}

    with pytest.raises(ConfigError):
        resolve_with_precedence(
            defaults=OpenDocConfig(),
            file_overrides=file_overrides,
            env_overrides=env_overrides,
        )


def test_assign_dotted_selects_list_entries_in_file_data() -> None:
    data = {
        "llm": {"model": "gpt-4-turbo"},
        "projects": [{"id": "p1", "name": "site", "path": "/work/site"}],
    }

    assign_dotted(data, ["projects", "site", "upstream_branch"], "upstream/dev")
    assign_dotted(data, ["projects", "p1", "rules"], {"include_dirs": "docs,guides"})
    assign_dotted(data, ["llm", "temperature"], 0.1)

    assert data["projects"][0]["upstream_branch"] == "upstream/dev"
    assert data["projects"][0]["rules"] == {"include_dirs": "docs,guides"}
    assert data["llm"] == {"model": "gpt-4-turbo", "temperature": 0.1}

    with pytest.raises(ConfigError, match="unknown projects entry"):
        assign_dotted(data, ["projects", "ghost", "prompt"], "x")
    with pytest.raises(ConfigError, match="must name a field"):
        assign_dotted(data, ["projects", "site"], {"prompt": "x"})
    with pytest.raises(ConfigError, match="conflicts"):
        assign_dotted(data, ["llm", "model", "name"], "x")
    with pytest.raises(ConfigError):
        assign_dotted(data, [], "x")


def test_environment_addresses_one_project(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    manager = _fresh_manager(tmp_path, monkeypatch)
    manager.add_project(_project())
    manager.add_project(_project(name="blog", path="/work/blog"))

    config = manager.load(
        env_overrides={"OPENDOC__PROJECTS__DOCS-SITE__UPSTREAM_BRANCH": "upstream/dev"}
    )

    assert [p.upstream_branch for p in config.projects] == ["upstream/dev", "upstream/main"]
    assert manager.load(include_env=False).projects[0].upstream_branch == "upstream/main"

    flat = flatten_for_env(config)
    assert flat["OPENDOC__PROJECTS__DOCS-SITE__UPSTREAM_BRANCH"] == "upstream/dev"
    assert flat["OPENDOC__PROJECTS__BLOG__RULES__INCLUDE_DIRS"] == "docs"
    assert "OPENDOC__PROJECTS" not in flat
