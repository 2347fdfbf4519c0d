"""Translation backend, document adapters, and batch scheduling."""

from .client import (
    ChatCompletionClient,
    TranslationBackendError,
    TranslationHTTPError,
    TranslationResponseError,
    TranslationTimeoutError,
)
from .models import BatchProgress, TranslationError, TranslationResult, TranslationTask
from .scheduler import CANCELLED_ERROR, run_batch
from .translator import DocumentTranslator, TextTranslator
from .units import NotebookAdapter, Segment, TextAdapter, adapter_for

__all__ = [
    "BatchProgress",
    "CANCELLED_ERROR",
    "ChatCompletionClient",
    "DocumentTranslator",
    "NotebookAdapter",
    "Segment",
    "TextAdapter",
    "TextTranslator",
    "TranslationBackendError",
    "TranslationError",
    "TranslationHTTPError",
    "TranslationResponseError",
    "TranslationResult",
    "TranslationTask",
    "TranslationTimeoutError",
    "adapter_for",
    "run_batch",
]
