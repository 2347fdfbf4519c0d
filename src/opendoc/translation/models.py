"""Translation task, result, and progress models."""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field


class TranslationTask(BaseModel):
    """One document queued for translation.

    Attributes:
        path: Repository-relative path of the document.
        content: Original-language document text.
        source_hash: Upstream hash the content was read at; committed on success.
    """

    path: str
    content: str
    source_hash: str


class TranslationResult(BaseModel):
    """Outcome of translating one document.

    Attributes:
        path: Repository-relative path of the document.
        translated_content: Translated text; empty on failure.
        success: Whether the document may be committed.
        error: Failure message when ``success`` is False.
        failed_segments: Indices of notebook cells left untranslated.
    """

    path: str
    translated_content: str = ""
    success: bool
    error: Optional[str] = None
    failed_segments: List[int] = Field(default_factory=list)

    @property
    def partial(self) -> bool:
        return self.success and bool(self.failed_segments)


class TranslationError(BaseModel):
    """Path and message of a failed document."""

    path: str
    error: str


class BatchProgress(BaseModel):
    """Aggregate progress of a batch translation.

    Attributes:
        total: Number of tasks in the batch.
        completed: Tasks finished so far, successful or not.
        failed: Tasks that finished unsuccessfully.
        current: Path of the most recently finished task.
        errors: Failure details in completion order.
    """

    total: int
    completed: int = 0
    failed: int = 0
    current: str = ""
    errors: List[TranslationError] = Field(default_factory=list)

    def record(self, result: TranslationResult) -> None:
        self.completed += 1
        self.current = result.path
        if not result.success:
            self.failed += 1
            self.errors.append(TranslationError(path=result.path, error=result.error or ""))


__all__ = ["TranslationTask", "TranslationResult", "TranslationError", "BatchProgress"]
