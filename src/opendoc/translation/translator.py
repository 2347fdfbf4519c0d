"""Translate whole documents through a text translation backend."""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol, Union

from .client import TranslationBackendError
from .models import TranslationResult, TranslationTask
from .units import Segment, adapter_for

LOGGER = logging.getLogger(__name__)


class TextTranslator(Protocol):
    """Anything that turns a prompt and a text into translated text."""

    async def translate(self, system_prompt: str, text: str) -> str: ...


class DocumentTranslator:
    """Translate one task at a time, splitting notebooks into cells.

    Instances are callable with a ``TranslationTask`` so they plug directly
    into ``run_batch``. A notebook whose cells partly fail is still a success:
    failed cells keep their original text and are listed in
    ``failed_segments``. A notebook whose every cell fails is a failure.
    """

    def __init__(
        self,
        backend: TextTranslator,
        prompt: str,
        *,
        segment_concurrency: int = 4,
    ) -> None:
        if segment_concurrency < 1:
            raise ValueError("segment_concurrency must be a positive integer")
        self._backend = backend
        self._prompt = prompt
        self._segment_concurrency = segment_concurrency

    @property
    def prompt(self) -> str:
        return self._prompt

    async def __call__(self, task: TranslationTask) -> TranslationResult:
        return await self.translate(task)

    async def translate(self, task: TranslationTask) -> TranslationResult:
        """Translate ``task``; backend errors on whole documents propagate."""
        adapter = adapter_for(task.path)
        segments = adapter.decompose(task.content)
        if not segments:
            return TranslationResult(path=task.path, translated_content=task.content, success=True)

        if len(segments) == 1 and segments[0].kind == "document":
            translated = await self._backend.translate(self._prompt, segments[0].text)
            return TranslationResult(
                path=task.path,
                translated_content=adapter.recompose(task.content, [(0, translated)]),
                success=True,
            )

        semaphore = asyncio.Semaphore(self._segment_concurrency)

        async def _translate_segment(segment: Segment) -> str:
            async with semaphore:
                return await self._backend.translate(self._prompt, segment.text)

        outcomes: list[Union[str, BaseException]] = await asyncio.gather(
            *(_translate_segment(segment) for segment in segments), return_exceptions=True
        )

        translations: list[tuple[int, str]] = []
        failed: list[int] = []
        errors: list[Exception] = []
        for segment, outcome in zip(segments, outcomes):
            if isinstance(outcome, Exception):
                LOGGER.warning(
                    "Cell %d of %s kept untranslated: %s", segment.index, task.path, outcome
                )
                failed.append(segment.index)
                errors.append(outcome)
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                translations.append((segment.index, outcome))

        if not translations:
            raise TranslationBackendError(
                f"All {len(segments)} cell(s) failed to translate: {errors[0]}"
            ) from errors[0]

        return TranslationResult(
            path=task.path,
            translated_content=adapter.recompose(task.content, translations),
            success=True,
            failed_segments=failed,
        )


__all__ = ["DocumentTranslator", "TextTranslator"]
