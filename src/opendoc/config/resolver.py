"""Configuration resolution helpers.

Sources are layered defaults < file < environment < CLI. Mapping sections
merge key by key. The list sections ``projects`` and ``prompt_templates``
merge entry by entry: each entry is identified by a key field (``id`` for
projects, ``name`` for templates), overrides for a known entry patch it, and
unknown entries are appended. An override may also address one entry through
a mapping keyed by a selector, which is how ``OPENDOC__PROJECTS__SITE__PROMPT``
or ``projects.site.upstream_branch`` reach a single project.
"""

from __future__ import annotations

from collections.abc import Mapping as MappingABC
from copy import deepcopy
from typing import Any, Dict, Mapping, Sequence

import yaml
from pydantic import ValidationError

from .exceptions import ConfigError
from .models import OpenDocConfig

ENV_PREFIX = "OPENDOC__"

# Section -> fields that identify an entry; the first one is the merge key of list overrides.
KEYED_SECTIONS: dict[str, tuple[str, ...]] = {
    "projects": ("id", "name"),
    "prompt_templates": ("name",),
}


def resolve_with_precedence(
    *,
    defaults: OpenDocConfig,
    file_overrides: Mapping[str, Any] | None = None,
    env_overrides: Mapping[str, Any] | None = None,
    cli_overrides: Mapping[str, Any] | None = None,
) -> OpenDocConfig:
    """Merge configuration sources: defaults < file < environment < CLI.

    Args:
        defaults: Baseline configuration.
        file_overrides: Raw mapping read from the YAML file.
        env_overrides: Nested mapping extracted from ``OPENDOC__`` variables.
        cli_overrides: Mapping whose keys may be dotted paths.

    Returns:
        OpenDocConfig: The validated effective configuration.

    Raises:
        ConfigError: If a source is malformed, addresses an unknown project or
            template, or the merged result fails validation.
    """
    merged = defaults.model_dump(mode="python")
    for name, source in (
        ("file", file_overrides),
        ("environment", env_overrides),
        ("cli", cli_overrides),
    ):
        if source is None:
            continue
        overrides = _normalize_mapping(source, source_name=name)
        merged = _merge_layer(merged, overrides, source_name=name)

    try:
        return OpenDocConfig.model_validate(merged)
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration values: {exc}") from exc


def assign_dotted(
    target: dict[str, Any],
    path: Sequence[str],
    value: Any,
    *,
    source_name: str = "override",
) -> None:
    """Set ``value`` at ``path`` inside ``target``, creating mappings on the way.

    When ``target`` holds a keyed section as a list (the shape written to the
    config file), the segment after the section name selects an entry by its
    identifying fields, so ``projects.site.prompt`` updates that project in
    place. Mapping values are merged into an existing mapping leaf.

    Args:
        target: Mapping updated in place.
        path: Path segments such as ``["llm", "temperature"]``.
        value: Value to store.
        source_name: Label used in error messages.

    Raises:
        ConfigError: If the path is empty, crosses a non-mapping value, or
            selects an entry that does not exist.
    """
    label = source_name.capitalize()
    if not path:
        raise ConfigError(f"{label} override needs a non-empty key.")

    node: dict[str, Any] = target
    index = 0
    while index < len(path) - 1:
        segment = path[index]
        existing = node.get(segment)
        if existing is None:
            existing = {}
            node[segment] = existing
        elif isinstance(existing, list) and node is target and segment in KEYED_SECTIONS:
            index += 1
            if index == len(path) - 1:
                raise ConfigError(
                    f"{label} override for {'.'.join(path)} must name a field of the entry."
                )
            position = _find_entry(segment, existing, path[index])
            if position is None:
                raise ConfigError(
                    f"{label} override targets unknown {segment} entry: {path[index]}"
                )
            existing = existing[position]
        elif not isinstance(existing, dict):
            raise ConfigError(
                f"{label} override for {'.'.join(path)} conflicts with existing value."
            )
        node = existing
        index += 1

    leaf = path[-1]
    if isinstance(value, MappingABC):
        nested = _normalize_mapping(value, source_name=source_name)
        existing_leaf = node.get(leaf)
        if isinstance(existing_leaf, dict):
            nested = _deep_merge(existing_leaf, nested)
        node[leaf] = nested
    else:
        node[leaf] = value


def flatten_for_env(config: OpenDocConfig) -> Dict[str, str]:
    """Flatten the config into ``OPENDOC__SECTION__KEY`` environment variable mappings.

    Entries of keyed sections are addressed by their last identifying field,
    e.g. ``OPENDOC__PROJECTS__SITE__UPSTREAM_BRANCH``.
    """
    flat: Dict[str, str] = {}

    def _recurse(prefix: list[str], value: Any) -> None:
        if isinstance(value, dict):
            for key, child in value.items():
                _recurse(prefix + [str(key)], child)
            return
        env_key = ENV_PREFIX + "__".join(part.upper() for part in prefix)
        if isinstance(value, list):
            rendered = yaml.safe_dump(value, default_flow_style=True).strip()
        else:
            rendered = "null" if value is None else str(value)
        flat[env_key] = rendered

    for top_key, child_value in config.model_dump(mode="python").items():
        if top_key in KEYED_SECTIONS:
            selector_field = KEYED_SECTIONS[top_key][-1]
            for entry in child_value:
                fields = {k: v for k, v in entry.items() if k not in KEYED_SECTIONS[top_key]}
                _recurse([top_key, str(entry[selector_field])], fields)
        else:
            _recurse([str(top_key)], child_value)

    return flat


def _normalize_mapping(source: Mapping[str, Any], *, source_name: str) -> dict[str, Any]:
    if not isinstance(source, MappingABC):
        raise ConfigError(f"{source_name.capitalize()} overrides must be a mapping.")

    result: dict[str, Any] = {}
    for key, value in dict(source).items():
        if not isinstance(key, str):
            raise ConfigError(f"{source_name.capitalize()} override keys must be strings.")
        assign_dotted(result, key.split("."), value, source_name=source_name)
    return result


def _merge_layer(
    base: Mapping[str, Any], overrides: Mapping[str, Any], *, source_name: str
) -> dict[str, Any]:
    merged = deepcopy(dict(base))
    for key, value in overrides.items():
        if key in KEYED_SECTIONS:
            merged[key] = _merge_entries(
                key, merged.get(key) or [], value, source_name=source_name
            )
        elif isinstance(value, MappingABC) and isinstance(merged.get(key), MappingABC):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = deepcopy(value)
    return merged


def _merge_entries(
    section: str, base: list[Any], overrides: Any, *, source_name: str
) -> list[Any]:
    label = source_name.capitalize()
    entries = deepcopy(list(base))

    if isinstance(overrides, MappingABC):
        for selector, patch in overrides.items():
            position = _find_entry(section, entries, selector)
            if position is None:
                raise ConfigError(f"{label} override targets unknown {section} entry: {selector}")
            if not isinstance(patch, MappingABC):
                raise ConfigError(f"{label} override for {section}.{selector} must be a mapping.")
            entries[position] = _deep_merge(entries[position], patch)
        return entries

    if not isinstance(overrides, list):
        raise ConfigError(f"{label} override for {section} must be a list or a mapping.")

    key_field = KEYED_SECTIONS[section][0]
    for item in overrides:
        if not isinstance(item, MappingABC) or item.get(key_field) in (None, ""):
            raise ConfigError(f"Every {section} entry in the {source_name} needs '{key_field}'.")
        for position, entry in enumerate(entries):
            if entry.get(key_field) == item[key_field]:
                entries[position] = _deep_merge(entry, item)
                break
        else:
            entries.append(deepcopy(dict(item)))
    return entries


def _find_entry(section: str, entries: list[Any], selector: Any) -> int | None:
    # Env variable names arrive lowercased, so selectors compare case-insensitively.
    wanted = str(selector).casefold()
    for field in KEYED_SECTIONS[section]:
        for position, entry in enumerate(entries):
            candidate = entry.get(field) if isinstance(entry, MappingABC) else None
            if candidate is not None and str(candidate).casefold() == wanted:
                return position
    return None


def _deep_merge(base: Mapping[str, Any], overrides: Mapping[str, Any]) -> dict[str, Any]:
    merged = deepcopy(dict(base))
    for key, value in overrides.items():
        if isinstance(value, MappingABC) and isinstance(merged.get(key), MappingABC):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = deepcopy(value)
    return merged


__all__ = [
    "ENV_PREFIX",
    "KEYED_SECTIONS",
    "assign_dotted",
    "flatten_for_env",
    "resolve_with_precedence",
]
