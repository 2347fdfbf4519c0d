"""Configuration models describing opendoc settings."""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_UPSTREAM_BRANCH = "upstream/main"
DEFAULT_PROMPT = "Translate the following document into Chinese."


class OpenDocBaseModel(BaseModel):
    """Shared configuration for opendoc Pydantic models."""

    model_config = ConfigDict(extra="forbid")


class LLMSettings(OpenDocBaseModel):
    """Chat-completions backend options.

    Attributes:
        api_key: Bearer credential sent to the API.
        base_url: Root URL of an OpenAI-compatible API.
        model: Model name to target when issuing requests.
        temperature: Sampling temperature for generative calls.
        max_tokens: Maximum number of tokens in responses.
        concurrency: Number of documents translated at once in a batch.
        segment_concurrency: Number of notebook cells translated at once per document.
        batch_delay_seconds: Pause between scheduler waves.
        timeout_seconds: Request timeout for a single completion call.
    """

    api_key: str = ""
    base_url: str = "https://api.openai.com/v1"
    model: str = "gpt-4-turbo"
    temperature: float = 0.7
    max_tokens: int = 4_000
    concurrency: int = Field(default=5, ge=1)
    segment_concurrency: int = Field(default=4, ge=1)
    batch_delay_seconds: float = Field(default=1.0, ge=0)
    timeout_seconds: float = Field(default=60.0, gt=0)


class ProjectRemotes(OpenDocBaseModel):
    """Fetch URLs of the remotes a project mirrors.

    Attributes:
        origin: Remote that receives translated commits.
        upstream: Remote that publishes the original-language documents.
    """

    origin: str = ""
    upstream: str = ""


class ProjectRules(OpenDocBaseModel):
    """Rules selecting which upstream files are tracked.

    Attributes:
        include_dirs: Comma-separated directories to scan.
        file_exts: Comma-separated extensions (without the dot).
        special_files: Comma-separated paths or globs that are always tracked.
    """

    include_dirs: str = "docs"
    file_exts: str = "md,mdx"
    special_files: str = ""

    def include_dir_set(self) -> set[str]:
        return _split_csv(self.include_dirs)

    def extension_set(self) -> set[str]:
        return {ext.lstrip(".").lower() for ext in _split_csv(self.file_exts)}

    def always_include_set(self) -> set[str]:
        return _split_csv(self.special_files)


class ProjectSettings(OpenDocBaseModel):
    """A registered translation project.

    Attributes:
        id: Opaque project handle.
        name: Display name, defaults to the directory name.
        path: Absolute path of the working checkout.
        remotes: Remote URLs recorded at registration time.
        rules: File selection rules.
        prompt: Project-specific system prompt; empty to use templates.
        upstream_branch: Reference the original documents are read from.
    """

    id: str
    name: str
    path: str
    remotes: ProjectRemotes = Field(default_factory=ProjectRemotes)
    rules: ProjectRules = Field(default_factory=ProjectRules)
    prompt: str = ""
    upstream_branch: str = DEFAULT_UPSTREAM_BRANCH


class PromptTemplate(OpenDocBaseModel):
    """Named system prompt."""

    name: str
    content: str


class LoggingSettings(OpenDocBaseModel):
    """Runtime logging configuration.

    Attributes:
        level: Logging verbosity level.
        file: Optional log file path; rotation applies when set.
        max_size_mb: Maximum log size before rotation.
        backup_count: Number of historical log files to retain.
    """

    level: str = "WARNING"
    file: Optional[str] = None
    max_size_mb: int = 100
    backup_count: int = 5


class CLIOptions(OpenDocBaseModel):
    """CLI behavior defaults.

    Attributes:
        quiet_default: Whether commands suppress non-error output by default.
    """

    quiet_default: bool = False


class OpenDocConfig(OpenDocBaseModel):
    """Top-level configuration struct for opendoc.

    Attributes:
        llm: Translation backend settings.
        projects: Registered projects.
        prompt_templates: Reusable system prompts; the first is the default.
        logging: Logging configuration.
        cli: CLI presentation defaults.
    """

    llm: LLMSettings = Field(default_factory=LLMSettings)
    projects: List[ProjectSettings] = Field(default_factory=list)
    prompt_templates: List[PromptTemplate] = Field(default_factory=list)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    cli: CLIOptions = Field(default_factory=CLIOptions)

    def find_project(self, key: str) -> Optional[ProjectSettings]:
        """Return the project whose id or name equals ``key``."""
        for project in self.projects:
            if project.id == key:
                return project
        for project in self.projects:
            if project.name == key:
                return project
        return None

    def default_prompt(self) -> str:
        if self.prompt_templates and self.prompt_templates[0].content:
            return self.prompt_templates[0].content
        return DEFAULT_PROMPT


def _split_csv(value: str) -> set[str]:
    return {part.strip() for part in value.split(",") if part.strip()}


__all__ = [
    "DEFAULT_PROMPT",
    "DEFAULT_UPSTREAM_BRANCH",
    "OpenDocBaseModel",
    "LLMSettings",
    "ProjectRemotes",
    "ProjectRules",
    "ProjectSettings",
    "PromptTemplate",
    "LoggingSettings",
    "CLIOptions",
    "OpenDocConfig",
]
