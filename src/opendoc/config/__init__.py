"""Configuration management for opendoc."""

from __future__ import annotations

import os
import textwrap
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Mapping

import yaml
from pydantic import ValidationError

from .exceptions import ConfigError
from .models import (
    LLMSettings,
    LoggingSettings,
    OpenDocConfig,
    ProjectRules,
    ProjectSettings,
    PromptTemplate,
)
from .resolver import ENV_PREFIX, assign_dotted, flatten_for_env, resolve_with_precedence

DEFAULT_CONFIG_PATH = Path("~/.opendoc/config.yaml")
_CONFIG_HEADER = textwrap.dedent(
    """\
    # opendoc configuration file
    # Generated automatically; manage via `opendoc config set` or `opendoc project add`.
    """
)


class ConfigManager:
    """Load and persist configuration data, applying precedence rules."""

    def __init__(
        self,
        config_path: Path | None = None,
        *,
        env: Mapping[str, str] | None = None,
    ) -> None:
        self._config_path = (config_path or DEFAULT_CONFIG_PATH).expanduser()
        self._env = env if env is not None else os.environ

    @property
    def config_path(self) -> Path:
        """Return the resolved configuration path."""
        return self._config_path

    def load(
        self,
        *,
        cli_overrides: Mapping[str, Any] | None = None,
        include_env: bool = True,
        ensure_file: bool = True,
        env_overrides: Mapping[str, str] | None = None,
    ) -> OpenDocConfig:
        """Load configuration data from disk, applying precedence rules."""
        if ensure_file:
            self.ensure_exists()

        file_data = self._read_file()
        env_data: Mapping[str, str] | None
        if include_env:
            env_data = env_overrides if env_overrides is not None else self._env
        else:
            env_data = None

        return resolve_with_precedence(
            defaults=OpenDocConfig(),
            file_overrides=file_data,
            env_overrides=self._extract_env(env_data) if env_data else None,
            cli_overrides=cli_overrides,
        )

    def load_file_overrides(self) -> dict[str, Any]:
        """Return raw overrides stored on disk."""
        return self._read_file()

    def save(self, config: OpenDocConfig | Mapping[str, Any]) -> None:
        """Persist configuration data to disk."""
        data = self._coerce_to_dict(config)
        self._write_file(data, include_header=True)

    def ensure_exists(self) -> Path:
        """Create a configuration file with defaults if one does not exist."""
        path = self._config_path
        if path.exists():
            return path

        self._write_file(OpenDocConfig().model_dump(mode="python"), include_header=True)
        return path

    def read_text(self) -> str:
        """Return the current configuration file contents."""
        if not self._config_path.exists():
            return ""
        return self._config_path.read_text(encoding="utf-8")

    # Projects ---------------------------------------------------------

    def add_project(self, project: ProjectSettings) -> None:
        """Register ``project``, rejecting duplicate ids or checkout paths."""

        def _add(config: OpenDocConfig) -> None:
            for existing in config.projects:
                if existing.id == project.id or existing.path == project.path:
                    raise ConfigError(f"Project already registered: {existing.path}")
            config.projects.append(project)

        self._mutate(_add)

    def update_project(self, key: str, updates: Mapping[str, Any]) -> ProjectSettings:
        """Apply top-level field ``updates`` to the project matching ``key``."""
        updated: list[ProjectSettings] = []

        def _update(config: OpenDocConfig) -> None:
            project = config.find_project(key)
            if project is None:
                raise ConfigError(f"Unknown project: {key}")
            merged = {**project.model_dump(mode="python"), **dict(updates)}
            replacement = _validate(ProjectSettings, merged)
            config.projects[config.projects.index(project)] = replacement
            updated.append(replacement)

        self._mutate(_update)
        return updated[0]

    def remove_project(self, key: str) -> ProjectSettings:
        """Unregister the project matching ``key`` and return it."""
        removed: list[ProjectSettings] = []

        def _remove(config: OpenDocConfig) -> None:
            project = config.find_project(key)
            if project is None:
                raise ConfigError(f"Unknown project: {key}")
            config.projects.remove(project)
            removed.append(project)

        self._mutate(_remove)
        return removed[0]

    def get_project(self, key: str) -> ProjectSettings:
        project = self.load(include_env=False).find_project(key)
        if project is None:
            raise ConfigError(f"Unknown project: {key}")
        return project

    # Prompt templates -------------------------------------------------

    def add_prompt_template(self, template: PromptTemplate) -> None:
        def _add(config: OpenDocConfig) -> None:
            if any(existing.name == template.name for existing in config.prompt_templates):
                raise ConfigError(f"Prompt template already exists: {template.name}")
            config.prompt_templates.append(template)

        self._mutate(_add)

    def update_prompt_template(self, name: str, content: str) -> None:
        def _update(config: OpenDocConfig) -> None:
            for index, existing in enumerate(config.prompt_templates):
                if existing.name == name:
                    config.prompt_templates[index] = PromptTemplate(name=name, content=content)
                    return
            raise ConfigError(f"Unknown prompt template: {name}")

        self._mutate(_update)

    def remove_prompt_template(self, name: str) -> None:
        def _remove(config: OpenDocConfig) -> None:
            remaining = [t for t in config.prompt_templates if t.name != name]
            if len(remaining) == len(config.prompt_templates):
                raise ConfigError(f"Unknown prompt template: {name}")
            config.prompt_templates = remaining

        self._mutate(_remove)

    # Internal helpers -------------------------------------------------

    def _mutate(self, mutation: Callable[[OpenDocConfig], None]) -> None:
        config = self.load(include_env=False)
        mutation(config)
        self.save(config)

    def _coerce_to_dict(self, value: OpenDocConfig | Mapping[str, Any]) -> dict[str, Any]:
        if isinstance(value, OpenDocConfig):
            return value.model_dump(mode="python")
        return dict(value)

    def _read_file(self) -> dict[str, Any]:
        if not self._config_path.exists():
            return {}

        try:
            raw = yaml.safe_load(self._config_path.read_text(encoding="utf-8")) or {}
        except yaml.YAMLError as exc:
            raise ConfigError(f"Failed to parse configuration file: {exc}") from exc

        if not isinstance(raw, dict):
            raise ConfigError("Configuration file must contain a mapping at the top level.")

        return raw

    def _write_file(self, data: Mapping[str, Any], *, include_header: bool = False) -> None:
        self._config_path.parent.mkdir(parents=True, exist_ok=True)
        serialized = yaml.safe_dump(dict(data), sort_keys=False, allow_unicode=True)
        header = _CONFIG_HEADER if include_header else ""
        stamp = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
        timestamp = f"# Last updated: {stamp}\n"
        self._config_path.write_text(header + timestamp + serialized, encoding="utf-8")

    def _extract_env(self, env: Mapping[str, str]) -> dict[str, Any]:
        overrides: dict[str, Any] = {}
        for key, raw_value in env.items():
            if not key.startswith(ENV_PREFIX):
                continue
            path = [segment for segment in key[len(ENV_PREFIX) :].split("__") if segment]
            if not path:
                continue
            parsed_value: Any
            try:
                parsed_value = yaml.safe_load(raw_value)
            except yaml.YAMLError:
                parsed_value = raw_value

            assign_dotted(
                overrides,
                [segment.lower() for segment in path],
                parsed_value,
                source_name="environment",
            )

        return overrides


def _validate(model: type[ProjectSettings], data: Mapping[str, Any]) -> ProjectSettings:
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(f"Invalid project settings: {exc}") from exc


__all__ = [
    "ConfigManager",
    "DEFAULT_CONFIG_PATH",
    "OpenDocConfig",
    "LLMSettings",
    "LoggingSettings",
    "ProjectRules",
    "ProjectSettings",
    "PromptTemplate",
    "assign_dotted",
    "resolve_with_precedence",
    "flatten_for_env",
    "ConfigError",
]
