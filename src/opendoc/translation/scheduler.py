"""Wave-based batch scheduler for translation calls."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Sequence

from .models import TranslationResult, TranslationTask

LOGGER = logging.getLogger(__name__)

CANCELLED_ERROR = "cancelled"

ProgressCallback = Callable[[int, int, str], None]
TranslateFn = Callable[[TranslationTask], Awaitable[TranslationResult]]


async def _run_task(translate: TranslateFn, task: TranslationTask) -> TranslationResult:
    try:
        return await translate(task)
    except Exception as exc:
        LOGGER.warning("Translation of %s failed: %s", task.path, exc)
        return TranslationResult(path=task.path, success=False, error=str(exc) or repr(exc))


def _notify(on_progress: Optional[ProgressCallback], completed: int, total: int, path: str) -> None:
    if on_progress is None:
        return
    try:
        on_progress(completed, total, path)
    except Exception:
        LOGGER.exception("Progress callback raised for %s", path)


async def run_batch(
    tasks: Sequence[TranslationTask],
    translate: TranslateFn,
    concurrency: int,
    on_progress: Optional[ProgressCallback] = None,
    *,
    wave_delay: float = 0.0,
    cancel_event: Optional[asyncio.Event] = None,
) -> list[TranslationResult]:
    """Translate ``tasks`` in sequential waves of at most ``concurrency`` calls.

    Every task yields exactly one result. Exceptions raised by ``translate``
    become failed results, and ``on_progress(completed, total, path)`` runs
    after each task finishes. Results keep wave order; inside a wave they
    appear in completion order, so callers should index them by path.

    Args:
        tasks: Tasks in scheduling order.
        translate: Coroutine function translating one task.
        concurrency: Maximum number of in-flight calls.
        on_progress: Callback invoked after each finished task.
        wave_delay: Seconds to pause between waves.
        cancel_event: When set, no further waves start and the remaining
            tasks are reported as cancelled.

    Returns:
        list[TranslationResult]: One result per task.

    Raises:
        ValueError: If ``concurrency`` is lower than one.
    """
    if concurrency < 1:
        raise ValueError("concurrency must be a positive integer")

    pending = list(tasks)
    total = len(pending)
    results: list[TranslationResult] = []
    completed = 0

    for start in range(0, total, concurrency):
        if cancel_event is not None and cancel_event.is_set():
            LOGGER.info("Batch cancelled with %d task(s) not started", total - start)
            for task in pending[start:]:
                results.append(
                    TranslationResult(path=task.path, success=False, error=CANCELLED_ERROR)
                )
                completed += 1
                _notify(on_progress, completed, total, task.path)
            break

        wave = pending[start : start + concurrency]
        LOGGER.debug("Starting wave of %d task(s) at offset %d", len(wave), start)
        running = [asyncio.create_task(_run_task(translate, task)) for task in wave]
        try:
            for finished in asyncio.as_completed(running):
                result = await finished
                results.append(result)
                completed += 1
                _notify(on_progress, completed, total, result.path)
        finally:
            # Reached with unfinished tasks only when the caller itself is cancelled.
            unfinished = [item for item in running if not item.done()]
            for item in unfinished:
                item.cancel()
            if unfinished:
                await asyncio.gather(*unfinished, return_exceptions=True)

        if wave_delay > 0 and start + concurrency < total:
            await asyncio.sleep(wave_delay)

    return results


__all__ = ["CANCELLED_ERROR", "ProgressCallback", "TranslateFn", "run_batch"]
