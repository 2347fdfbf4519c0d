"""Command line interface for opendoc."""

from __future__ import annotations

import asyncio
import difflib
from dataclasses import asdict
from pathlib import Path
from typing import Any, Iterable, Optional

import click
import yaml
from rich.console import Console
from rich.progress import BarColumn, MofNCompleteColumn, Progress, TextColumn
from rich.syntax import Syntax
from rich.table import Table
from rich.text import Text
from rich.tree import Tree

from opendoc.config import (
    ConfigError,
    ConfigManager,
    OpenDocConfig,
    PromptTemplate,
    assign_dotted,
    flatten_for_env,
    resolve_with_precedence,
)
from opendoc.log import configure_logging
from opendoc.service import ProjectContext, ProjectError, TranslationService
from opendoc.source import SourceBackendError
from opendoc.state import StateError
from opendoc.tracking import (
    FileFilter,
    FileStatus,
    TreeNode,
    files_to_translate,
    iter_files,
    status_stats,
)
from opendoc.translation import TranslationBackendError

console = Console()

_STATUS_STYLES = {
    FileStatus.UNTRANSLATED: "red",
    FileStatus.OUTDATED: "yellow",
    FileStatus.UP_TO_DATE: "green",
}


def _handle_cli_error(
    message: str,
    *,
    code: str,
    json_output: bool,
    original: Exception | None = None,
) -> None:
    """Emit a standardized error and terminate the command.

    Args:
        message: Human-readable error message.
        code: Machine-readable error identifier.
        json_output: Indicates whether JSON mode is active.
        original: Original exception for chaining when not using JSON.

    Raises:
        SystemExit: When emitting JSON output to terminate the command.
        click.ClickException: For non-JSON flows to surface the error.
    """
    if json_output:
        console.print_json(data={"error": {"code": code, "message": message}})
        raise SystemExit(1)
    raise click.ClickException(message) from original


def _load_config(cli_overrides: dict[str, Any] | None = None) -> OpenDocConfig:
    manager = ConfigManager()
    try:
        manager.ensure_exists()
        return manager.load(cli_overrides=cli_overrides)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc


def _open(service: TranslationService, project: str, source_ref: Optional[str]) -> ProjectContext:
    try:
        return service.open_project(project, source_ref=source_ref)
    except ProjectError as exc:
        raise click.ClickException(str(exc)) from exc


def _format_size(size: int) -> str:
    value = float(size)
    for unit in ("B", "KB", "MB"):
        if value < 1024:
            return f"{value:.0f} {unit}" if unit == "B" else f"{value:.1f} {unit}"
        value /= 1024
    return f"{value:.1f} GB"


def _render_tree(nodes: Iterable[TreeNode], parent: Tree) -> None:
    for node in nodes:
        if node.is_file and node.record is not None:
            style = _STATUS_STYLES[node.record.status]
            parent.add(
                f"[{style}]{node.name}[/{style}] "
                f"[dim]{node.record.status.value}, {_format_size(node.record.size)}[/dim]"
            )
        else:
            _render_tree(node.children or [], parent.add(f"[bold]{node.name}/[/bold]"))


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(package_name="opendoc")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default=None,
    help="Override the configured logging level.",
)
@click.pass_context
def cli(ctx: click.Context, log_level: Optional[str]) -> None:
    """Track and translate documentation mirrored from an upstream repository."""
    ctx.ensure_object(dict)
    ctx.obj["log_level"] = log_level


def _setup(ctx: click.Context, config: OpenDocConfig) -> None:
    level = (ctx.obj or {}).get("log_level")
    configure_logging(config.logging, level_override=level)


@cli.group()
def project() -> None:
    """Register and inspect translation projects."""


@project.command("add")
@click.argument("path", type=click.Path(exists=True, file_okay=False, path_type=str))
@click.option("--name", type=str, help="Display name (defaults to the directory name).")
@click.option("--include-dirs", type=str, help="Comma-separated directories to track.")
@click.option("--exts", type=str, help="Comma-separated extensions to track.")
@click.pass_context
def project_add(
    ctx: click.Context,
    path: str,
    name: Optional[str],
    include_dirs: Optional[str],
    exts: Optional[str],
) -> None:
    """Register the git checkout at PATH as a project."""
    config = _load_config()
    _setup(ctx, config)
    try:
        settings = TranslationService.register_project(path)
    except ProjectError as exc:
        raise click.ClickException(str(exc)) from exc

    rules = settings.rules.model_copy(
        update={
            key: value
            for key, value in (("include_dirs", include_dirs), ("file_exts", exts))
            if value is not None
        }
    )
    settings = settings.model_copy(update={"name": name or settings.name, "rules": rules})
    try:
        ConfigManager().add_project(settings)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc
    console.print(f"[green]Registered project {settings.name} ({settings.id}).[/green]")


@project.command("list")
def project_list() -> None:
    """List registered projects."""
    config = _load_config()
    if not config.projects:
        console.print("[yellow]No projects registered. Use `opendoc project add PATH`.[/yellow]")
        return
    table = Table("Name", "ID", "Path", "Upstream branch", "Tracked")
    for item in config.projects:
        table.add_row(
            item.name,
            item.id,
            item.path,
            item.upstream_branch,
            f"{item.rules.include_dirs} ({item.rules.file_exts})",
        )
    console.print(table)


@project.command("remove")
@click.argument("key")
def project_remove(key: str) -> None:
    """Unregister the project KEY (id or name)."""
    try:
        removed = ConfigManager().remove_project(key)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc
    console.print(f"[green]Removed project {removed.name}.[/green]")


@cli.command()
@click.argument("project_key", metavar="PROJECT")
@click.option(
    "--status",
    "statuses",
    multiple=True,
    type=click.Choice([status.value for status in FileStatus]),
    help="Only show files with this status (repeatable).",
)
@click.option("--ext", "extensions", multiple=True, help="Only show this extension (repeatable).")
@click.option("--search", type=str, help="Case-insensitive path substring.")
@click.option("--min-size", type=int, help="Minimum file size in bytes.")
@click.option("--max-size", type=int, help="Maximum file size in bytes.")
@click.option("--source-ref", type=str, help="Override the project's upstream branch.")
@click.option("--json", "json_output", is_flag=True, help="Emit status information as JSON.")
@click.pass_context
def status(
    ctx: click.Context,
    project_key: str,
    statuses: tuple[str, ...],
    extensions: tuple[str, ...],
    search: Optional[str],
    min_size: Optional[int],
    max_size: Optional[int],
    source_ref: Optional[str],
    json_output: bool,
) -> None:
    """Show the translation status of the files tracked by PROJECT."""
    config = _load_config()
    _setup(ctx, config)
    service = TranslationService(config)
    context = _open(service, project_key, source_ref)

    file_filter = FileFilter(
        statuses={FileStatus(value) for value in statuses},
        extensions=set(extensions),
        min_size=min_size,
        max_size=max_size,
        search=search,
    )
    try:
        tree = service.file_tree(context, file_filter)
    except (StateError, SourceBackendError) as exc:
        _handle_cli_error(str(exc), code="status_failed", json_output=json_output, original=exc)
        return

    records = list(iter_files(tree))
    stats = status_stats(records)

    if json_output:
        console.print_json(
            data={
                "project": context.project.name,
                "source_ref": context.source_ref,
                "working_ref": context.working_ref,
                "stats": stats.model_dump(mode="json"),
                "files": [record.model_dump(mode="json") for record in records],
            }
        )
        return

    root = Tree(
        f"[bold]{context.project.name}[/bold] "
        f"[dim]{context.source_ref} -> {context.working_ref}[/dim]"
    )
    _render_tree(tree, root)
    console.print(root)
    console.print(
        f"[green]status summary: total={stats.total}, untranslated={stats.untranslated}, "
        f"outdated={stats.outdated}, up_to_date={stats.up_to_date}.[/green]"
    )


@cli.command()
@click.argument("project_key", metavar="PROJECT")
@click.argument("paths", nargs=-1)
@click.option("--all", "all_pending", is_flag=True, help="Translate every pending file.")
@click.option(
    "--no-outdated",
    is_flag=True,
    help="With --all, only translate files that were never translated.",
)
@click.option("--prompt", type=str, help="System prompt overriding the project prompt.")
@click.option("--concurrency", type=click.IntRange(min=1), help="Documents translated at once.")
@click.option("--source-ref", type=str, help="Override the project's upstream branch.")
@click.option("--json", "json_output", is_flag=True, help="Emit results as JSON.")
@click.option(
    "--quiet/--no-quiet",
    default=None,
    help="Suppress the progress bar and per-file notes (defaults to cli.quiet_default).",
)
@click.pass_context
def translate(
    ctx: click.Context,
    project_key: str,
    paths: tuple[str, ...],
    all_pending: bool,
    no_outdated: bool,
    prompt: Optional[str],
    concurrency: Optional[int],
    source_ref: Optional[str],
    json_output: bool,
    quiet: Optional[bool],
) -> None:
    """Translate PATHS (or every pending file with --all) of PROJECT."""
    if not paths and not all_pending:
        raise click.ClickException("Provide PATHS or use --all.")
    if paths and all_pending:
        raise click.ClickException("PATHS cannot be combined with --all.")

    overrides = {"llm.concurrency": concurrency} if concurrency else None
    config = _load_config(overrides)
    _setup(ctx, config)
    service = TranslationService(config)
    context = _open(service, project_key, source_ref)

    try:
        if all_pending:
            records = service.file_records(context)
            targets = [
                record.path
                for record in files_to_translate(records, include_outdated=not no_outdated)
            ]
        else:
            targets = list(paths)
    except (StateError, SourceBackendError) as exc:
        _handle_cli_error(str(exc), code="status_failed", json_output=json_output, original=exc)
        return

    quiet_mode = config.cli.quiet_default if quiet is None else quiet
    if not targets:
        if json_output:
            console.print_json(
                data={"results": [], "progress": None, "committed": [], "skipped": []}
            )
        else:
            console.print("[green]Nothing to translate.[/green]")
        return

    progress = Progress(
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        console=console,
        disable=json_output or quiet_mode,
    )
    with progress:
        bar = progress.add_task("Translating", total=len(targets))

        def _on_progress(completed: int, total: int, current: str) -> None:
            progress.update(bar, completed=completed, total=total, description=current)

        try:
            outcome = asyncio.run(
                service.batch_translate(context, targets, prompt, on_progress=_on_progress)
            )
        except (StateError, TranslationBackendError) as exc:
            _handle_cli_error(
                str(exc), code="translation_failed", json_output=json_output, original=exc
            )
            return

    if json_output:
        console.print_json(
            data={
                "results": [result.model_dump(mode="json") for result in outcome.results],
                "progress": outcome.progress.model_dump(mode="json"),
                "committed": outcome.committed,
                "skipped": outcome.skipped,
            }
        )
        return

    for error in outcome.progress.errors:
        console.print(f"[red]{error.path}: {error.error}[/red]")
    if quiet_mode:
        return
    for result in outcome.results:
        if result.partial:
            console.print(
                f"[yellow]{result.path}: cells {result.failed_segments} kept untranslated.[/yellow]"
            )
    for path in outcome.skipped:
        console.print(f"[yellow]{path}: not present at {context.source_ref}; skipped.[/yellow]")
    console.print(
        f"[green]translate summary: translated={len(outcome.committed)}, "
        f"failed={outcome.progress.failed}, skipped={len(outcome.skipped)}.[/green]"
    )


@cli.command()
@click.argument("project_key", metavar="PROJECT")
@click.argument("path")
@click.option("--source-ref", type=str, help="Override the project's upstream branch.")
@click.option("--json", "json_output", is_flag=True, help="Emit both texts as JSON.")
@click.pass_context
def compare(
    ctx: click.Context,
    project_key: str,
    path: str,
    source_ref: Optional[str],
    json_output: bool,
) -> None:
    """Show the upstream text of PATH next to its current translation."""
    config = _load_config()
    _setup(ctx, config)
    service = TranslationService(config)
    context = _open(service, project_key, source_ref)

    try:
        comparison = service.file_comparison(context, path)
    except (ProjectError, OSError, ValueError) as exc:
        _handle_cli_error(str(exc), code="compare_failed", json_output=json_output, original=exc)
        return

    if json_output:
        console.print_json(data={"path": path, **asdict(comparison)})
        return

    table = Table(
        f"Original ({context.source_ref})",
        f"Translation ({context.working_ref})",
        expand=True,
    )
    translated = (
        Text(comparison.translated) if comparison.exists else Text("not translated yet", "dim")
    )
    table.add_row(Text(comparison.original), translated)
    console.print(table)


@cli.command()
@click.argument("project_key", metavar="PROJECT")
@click.option("--json", "json_output", is_flag=True, help="Emit the fetched branches as JSON.")
@click.pass_context
def fetch(ctx: click.Context, project_key: str, json_output: bool) -> None:
    """Fetch the upstream remote of PROJECT and list its branches."""
    config = _load_config()
    _setup(ctx, config)
    service = TranslationService(config)
    context = _open(service, project_key, None)

    try:
        branches = service.fetch_upstream(context)
    except SourceBackendError as exc:
        _handle_cli_error(str(exc), code="fetch_failed", json_output=json_output, original=exc)
        return

    if json_output:
        console.print_json(
            data={
                "project": context.project.name,
                "upstream_branch": context.source_ref,
                "branches": branches,
            }
        )
        return

    for name in branches:
        marker = "[green]*[/green]" if name == context.source_ref else " "
        console.print(f"{marker} {name}")
    if context.source_ref not in branches:
        console.print(
            f"[yellow]{context.source_ref} was not fetched; "
            "pick another with `opendoc branch PROJECT --upstream BRANCH`.[/yellow]"
        )


@cli.command()
@click.argument("project_key", metavar="PROJECT")
@click.option("--upstream", type=str, help="Persist this upstream branch as the source.")
@click.option("--switch", "switch_to", type=str, help="Check out this working branch.")
@click.option("--json", "json_output", is_flag=True, help="Emit branch information as JSON.")
@click.pass_context
def branch(
    ctx: click.Context,
    project_key: str,
    upstream: Optional[str],
    switch_to: Optional[str],
    json_output: bool,
) -> None:
    """Show or change the branches PROJECT reads from and translates into."""
    config = _load_config()
    _setup(ctx, config)
    service = TranslationService(config)
    context = _open(service, project_key, None)

    try:
        if upstream:
            context = service.set_upstream_branch(context, upstream, ConfigManager())
        if switch_to:
            context = service.switch_working_branch(context, switch_to)
        available = service.upstream_branches(context)
    except (ProjectError, SourceBackendError) as exc:
        _handle_cli_error(str(exc), code="branch_failed", json_output=json_output, original=exc)
        return

    if json_output:
        console.print_json(
            data={
                "project": context.project.name,
                "upstream_branch": context.source_ref,
                "working_branch": context.working_ref,
                "upstream_branches": available,
            }
        )
        return

    console.print(f"upstream: [bold]{context.source_ref}[/bold]")
    console.print(f"working:  [bold]{context.working_ref}[/bold]")
    others = [name for name in available if name != context.source_ref]
    if others:
        console.print(f"[dim]other upstream branches: {', '.join(others)}[/dim]")


@cli.command()
@click.argument("project_key", metavar="PROJECT")
@click.option("--json", "json_output", is_flag=True, help="Emit the changes as JSON.")
@click.pass_context
def changes(ctx: click.Context, project_key: str, json_output: bool) -> None:
    """List uncommitted changes in the checkout of PROJECT."""
    config = _load_config()
    _setup(ctx, config)
    service = TranslationService(config)
    context = _open(service, project_key, None)

    try:
        summary = service.working_tree_status(context)
    except SourceBackendError as exc:
        _handle_cli_error(str(exc), code="changes_failed", json_output=json_output, original=exc)
        return

    if json_output:
        console.print_json(data={"clean": summary.clean, **asdict(summary)})
        return
    if summary.clean:
        console.print("[green]Working tree clean.[/green]")
        return

    table = Table("Change", "Path")
    for label, paths in asdict(summary).items():
        for path in paths:
            table.add_row(label, Text(path))
    console.print(table)


@cli.command()
@click.argument("project_key", metavar="PROJECT")
@click.argument("paths", nargs=-1)
@click.option("-m", "--message", required=True, help="Commit message.")
@click.pass_context
def commit(ctx: click.Context, project_key: str, paths: tuple[str, ...], message: str) -> None:
    """Commit translated files of PROJECT (every change unless PATHS are given)."""
    config = _load_config()
    _setup(ctx, config)
    service = TranslationService(config)
    context = _open(service, project_key, None)

    try:
        commit_id = service.commit_changes(context, message, paths)
    except SourceBackendError as exc:
        raise click.ClickException(str(exc)) from exc
    console.print(f"[green]Committed {commit_id[:12]} on {context.working_ref}.[/green]")


@cli.command()
@click.argument("project_key", metavar="PROJECT")
@click.pass_context
def push(ctx: click.Context, project_key: str) -> None:
    """Push the working branch of PROJECT to origin."""
    config = _load_config()
    _setup(ctx, config)
    service = TranslationService(config)
    context = _open(service, project_key, None)

    try:
        service.push_changes(context)
    except SourceBackendError as exc:
        raise click.ClickException(str(exc)) from exc
    console.print(f"[green]Pushed {context.working_ref} to origin.[/green]")


@cli.group()
def config() -> None:
    """Manage opendoc configuration files and overrides."""


@config.command("view")
@click.option("--no-env", is_flag=True, help="Ignore environment overrides when displaying output.")
@click.option(
    "--env-names",
    is_flag=True,
    help="List the OPENDOC__ variable that overrides each value instead of YAML.",
)
def config_view(no_env: bool, env_names: bool) -> None:
    """Display the effective configuration after applying precedence rules."""
    manager = ConfigManager()
    try:
        manager.ensure_exists()
        loaded = manager.load(include_env=not no_env)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    if env_names:
        for name, value in flatten_for_env(loaded).items():
            console.print(f"{name}={value}", markup=False, highlight=False, soft_wrap=True)
        return

    yaml_text = yaml.safe_dump(
        loaded.model_dump(mode="python"), sort_keys=False, allow_unicode=True
    )
    console.print(Syntax(yaml_text, "yaml", word_wrap=True))


@config.command("set")
@click.argument("key")
@click.option("--value", required=True, help="Value to assign to KEY.")
def config_set(key: str, value: str) -> None:
    """Persist a configuration value expressed as a dotted KEY."""
    manager = ConfigManager()
    manager.ensure_exists()

    before = manager.read_text().splitlines()
    segments = [segment.strip() for segment in key.split(".") if segment.strip()]
    if not segments:
        raise click.ClickException("KEY must specify a dotted path such as 'llm.temperature'.")

    try:
        parsed_value = yaml.safe_load(value)
    except yaml.YAMLError as exc:
        raise click.ClickException(f"Unable to parse value: {exc}") from exc

    try:
        file_data = manager.load_file_overrides()
        assign_dotted(file_data, segments, parsed_value, source_name="config set")
        resolve_with_precedence(defaults=OpenDocConfig(), file_overrides=file_data)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    manager.save(file_data)
    after = manager.read_text().splitlines()

    diff = [
        line
        for line in difflib.unified_diff(
            before,
            after,
            fromfile="config.yaml (before)",
            tofile="config.yaml (after)",
            lineterm="",
        )
        if not line.lstrip("+-").startswith("# Last updated:")
    ]

    if any(line.startswith(("+", "-")) and not line.startswith(("+++", "---")) for line in diff):
        console.print(Syntax("\n".join(diff), "diff", word_wrap=False))
    else:
        console.print("[yellow]No changes applied; value already up to date.[/yellow]")
        return

    console.print(f"[green]Updated {'.'.join(segments)}.[/green]")


@cli.group("prompt")
def prompt_group() -> None:
    """Manage reusable system prompts; the first template is the default."""


def _template_text(content: Optional[str], source_file: Optional[Path]) -> str:
    if (content is None) == (source_file is None):
        raise click.UsageError("Provide exactly one of --content or --file.")
    if source_file is not None:
        text = source_file.read_text(encoding="utf-8")
    else:
        text = content or ""
    if not text.strip():
        raise click.UsageError("Prompt content must not be empty.")
    return text


@prompt_group.command("list")
@click.option("--json", "json_output", is_flag=True, help="Emit the templates as JSON.")
def prompt_list(json_output: bool) -> None:
    """List prompt templates in priority order."""
    config = _load_config()
    if json_output:
        console.print_json(
            data=[template.model_dump(mode="json") for template in config.prompt_templates]
        )
        return
    if not config.prompt_templates:
        console.print("[yellow]No prompt templates; the built-in prompt is used.[/yellow]")
        return
    table = Table("Name", "Default", "Content")
    for index, template in enumerate(config.prompt_templates):
        first_line = (template.content.strip().splitlines() or [""])[0]
        table.add_row(template.name, "yes" if index == 0 else "", Text(first_line[:80]))
    console.print(table)


@prompt_group.command("add")
@click.argument("name")
@click.option("--content", type=str, help="Prompt text.")
@click.option(
    "--file",
    "source_file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Read the prompt text from a file.",
)
def prompt_add(name: str, content: Optional[str], source_file: Optional[Path]) -> None:
    """Add the prompt template NAME."""
    text = _template_text(content, source_file)
    try:
        ConfigManager().add_prompt_template(PromptTemplate(name=name, content=text))
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc
    console.print(f"[green]Added prompt template {name}.[/green]")


@prompt_group.command("update")
@click.argument("name")
@click.option("--content", type=str, help="Prompt text.")
@click.option(
    "--file",
    "source_file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Read the prompt text from a file.",
)
def prompt_update(name: str, content: Optional[str], source_file: Optional[Path]) -> None:
    """Replace the text of the prompt template NAME."""
    text = _template_text(content, source_file)
    try:
        ConfigManager().update_prompt_template(name, text)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc
    console.print(f"[green]Updated prompt template {name}.[/green]")


@prompt_group.command("remove")
@click.argument("name")
def prompt_remove(name: str) -> None:
    """Remove the prompt template NAME."""
    try:
        ConfigManager().remove_prompt_template(name)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc
    console.print(f"[green]Removed prompt template {name}.[/green]")


@cli.group("llm")
def llm_group() -> None:
    """Check the configured translation backend."""


@llm_group.command("test")
@click.pass_context
def llm_test(ctx: click.Context) -> None:
    """Send a minimal completion request to the configured backend."""
    config = _load_config()
    _setup(ctx, config)
    target = f"{config.llm.base_url} ({config.llm.model})"
    if not asyncio.run(TranslationService(config).check_llm_connection()):
        raise click.ClickException(f"Connection to {target} failed.")
    console.print(f"[green]Connection to {target} succeeded.[/green]")


@llm_group.command("models")
@click.option("--json", "json_output", is_flag=True, help="Emit the model list as JSON.")
@click.pass_context
def llm_models(ctx: click.Context, json_output: bool) -> None:
    """List models offered by the configured backend."""
    config = _load_config()
    _setup(ctx, config)
    try:
        models = asyncio.run(TranslationService(config).available_models())
    except TranslationBackendError as exc:
        _handle_cli_error(str(exc), code="llm_failed", json_output=json_output, original=exc)
        return

    if json_output:
        console.print_json(data={"models": models})
        return
    for name in models:
        marker = "[green]*[/green]" if name == config.llm.model else " "
        console.print(f"{marker} {name}")


def main() -> None:
    """Invoke the Click CLI as the console script entry point."""
    cli()


if __name__ == "__main__":
    main()
