"""Split documents into independently translatable segments and reassemble them."""

from __future__ import annotations

import json
import logging
from typing import Any, Iterable, Literal, Mapping, Optional, Tuple, Union

from pydantic import BaseModel

LOGGER = logging.getLogger(__name__)

Translations = Union[Mapping[int, str], Iterable[Tuple[int, str]]]


class Segment(BaseModel):
    """Translatable unit of a document.

    Attributes:
        index: Position of the unit in its container (cell index, or 0 for a whole document).
        text: Text to translate.
        kind: ``cell`` for notebook cells, ``document`` for whole-document fallback.
    """

    index: int
    text: str
    kind: Literal["cell", "document"]


class TextAdapter:
    """Treat the entire document as one segment."""

    def decompose(self, document: str) -> list[Segment]:
        """Return the document as a single segment.

        Args:
            document: Full text of the file.

        Returns:
            list[Segment]: One ``document`` segment, or nothing for blank input.
        """
        if not document.strip():
            return []
        return [Segment(index=0, text=document, kind="document")]

    def recompose(self, document: str, translations: Translations) -> str:
        """Return the translation of segment 0, or ``document`` when there is none."""
        return dict(translations).get(0, document)


class NotebookAdapter:
    """Translate the markdown cells of a Jupyter notebook independently.

    Code cells, outputs, and metadata are never sent for translation. Input
    that is not a notebook falls back to whole-document handling.
    """

    def __init__(self) -> None:
        self._fallback = TextAdapter()

    def decompose(self, document: str) -> list[Segment]:
        """Return one segment per non-blank markdown cell, in document order."""
        notebook = self._parse(document)
        if notebook is None:
            return self._fallback.decompose(document)

        segments: list[Segment] = []
        for index, cell in enumerate(notebook["cells"]):
            if not isinstance(cell, dict) or cell.get("cell_type") != "markdown":
                continue
            text = _join_source(cell.get("source"))
            if text is None or not text.strip():
                continue
            segments.append(Segment(index=index, text=text, kind="cell"))
        return segments

    def recompose(self, document: str, translations: Translations) -> str:
        """Write translated text back into the targeted cells.

        List-valued sources are re-split into lines with their endings kept.
        The notebook is serialized the way nbformat writes it; a document with
        no translations is returned unchanged.

        Raises:
            ValueError: If a translation targets a cell that is not markdown.
        """
        mapping = dict(translations)
        notebook = self._parse(document)
        if notebook is None:
            return self._fallback.recompose(document, mapping)
        if not mapping:
            return document

        cells = notebook["cells"]
        for index, text in mapping.items():
            if not 0 <= index < len(cells) or not isinstance(cells[index], dict):
                raise ValueError(f"No cell at index {index}")
            cell = cells[index]
            if cell.get("cell_type") != "markdown":
                raise ValueError(f"Cell {index} is not a markdown cell")
            if isinstance(cell.get("source"), list):
                cell["source"] = text.splitlines(keepends=True)
            else:
                cell["source"] = text
        return json.dumps(notebook, indent=1, ensure_ascii=False) + "\n"

    @staticmethod
    def _parse(document: str) -> Optional[dict[str, Any]]:
        try:
            notebook = json.loads(document)
        except ValueError as exc:
            LOGGER.debug("Not a notebook, translating as a whole document: %s", exc)
            return None
        if not isinstance(notebook, dict) or not isinstance(notebook.get("cells"), list):
            LOGGER.debug("JSON document has no cell list; translating as a whole document")
            return None
        return notebook


def _join_source(source: Any) -> Optional[str]:
    if isinstance(source, str):
        return source
    if isinstance(source, list) and all(isinstance(line, str) for line in source):
        return "".join(source)
    return None


DocumentAdapter = Union[TextAdapter, NotebookAdapter]


def adapter_for(path: str) -> DocumentAdapter:
    """Return the adapter matching the file type of ``path``."""
    if path.lower().endswith(".ipynb"):
        return NotebookAdapter()
    return TextAdapter()


__all__ = ["DocumentAdapter", "NotebookAdapter", "Segment", "TextAdapter", "adapter_for"]
