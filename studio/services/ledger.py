"""CSV ledger written at the end of every image batch."""

from __future__ import annotations

import csv
import io
import re
from pathlib import Path
from typing import TYPE_CHECKING, Iterable

from .artifacts import ArtifactStore

if TYPE_CHECKING:
    from .batch_images import BatchResult

LEDGER_COLUMNS = (
    "id",
    "original_prompt",
    "final_prompt",
    "success",
    "filename",
    "imageUrl",
    "error",
    "timestamp",
    "was_revised",
)

_LINE_BREAKS = re.compile(r"\s*[\r\n]+\s*")


def ledger_filename(batch_id: int) -> str:
    return f"batch-results-{batch_id}.csv"


def render_ledger(results: Iterable["BatchResult"]) -> str:
    """Render one header line plus one line per result."""

    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(LEDGER_COLUMNS)
    for result in results:
        writer.writerow(
            [
                _single_line(result.id),
                _single_line(result.original_prompt),
                _single_line(result.final_prompt),
                _flag(result.success),
                result.filename or "",
                result.image_url or "",
                _single_line(result.error or ""),
                result.timestamp,
                _flag(result.was_revised),
            ]
        )
    return buffer.getvalue()


def write_ledger(store: ArtifactStore, directory: Path, batch_id: int, results: Iterable["BatchResult"]) -> Path:
    return store.save_text(directory, ledger_filename(batch_id), render_ledger(results))


def _flag(value: bool) -> str:
    return "true" if value else "false"


def _single_line(value: object) -> str:
    return _LINE_BREAKS.sub(" ", str(value))
