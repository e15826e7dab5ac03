"""Sequential batch image generation with a CSV results ledger.

Items run strictly one after another with a fixed pause between requests.
Every item produces exactly one :class:`BatchResult`, in input order; only a
failure to create the batch directory aborts the run, and that happens before
any request is made.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from api_handler import interpret_generation_error

from .artifacts import IMAGES_DIRNAME, ArtifactSaveError, ArtifactStore, download_artifact, now_ms
from .image_generation import ErrorInterpreter, Fetcher, ImageClient, ImageSettings, generate_with_revision
from .ledger import write_ledger

LOGGER = logging.getLogger(__name__)

ProgressCallback = Callable[["BatchResult", int, int], None]
EMPTY_PROMPT_ERROR = "The prompt is empty."


class BatchValidationError(ValueError):
    """Raised when a batch request has no usable prompts."""


@dataclass(frozen=True)
class BatchPromptItem:
    id: str
    prompt: str
    size: Optional[str] = None
    style: Optional[str] = None
    quality: Optional[str] = None

    @classmethod
    def from_payload(cls, data: Any, position: int) -> "BatchPromptItem":
        """Build an item; a blank or malformed entry keeps an empty prompt and fails on its own."""

        if isinstance(data, str):
            data = {"prompt": data}
        if not isinstance(data, dict):
            data = {}
        prompt = data.get("prompt")
        if not isinstance(prompt, str):
            prompt = ""
        raw_id = data.get("id")
        item_id = str(raw_id).strip() if raw_id not in (None, "") else str(position)
        return cls(
            id=item_id,
            prompt=prompt.strip(),
            size=data.get("size"),
            style=data.get("style"),
            quality=data.get("quality"),
        )

    def settings(self, defaults: ImageSettings) -> ImageSettings:
        return defaults.merged(size=self.size, style=self.style, quality=self.quality)


@dataclass(frozen=True)
class BatchResult:
    id: str
    original_prompt: str
    final_prompt: str
    success: bool
    timestamp: int
    was_revised: bool = False
    filename: Optional[str] = None
    image_url: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        prompt = self.original_prompt
        if self.was_revised:
            prompt = f"{self.original_prompt} (REVISED: {self.final_prompt})"
        payload: Dict[str, Any] = {
            "id": self.id,
            "prompt": prompt,
            "originalPrompt": self.original_prompt,
            "finalPrompt": self.final_prompt,
            "wasRevised": self.was_revised,
            "success": self.success,
            "timestamp": self.timestamp,
        }
        if self.success:
            payload.update({"imageUrl": self.image_url, "filename": self.filename})
        else:
            payload["error"] = self.error
        return payload


@dataclass
class BatchSummary:
    batch_id: int
    directory: Path
    results: List[BatchResult] = field(default_factory=list)
    csv_path: Optional[Path] = None
    csv_url: Optional[str] = None

    @property
    def batch_folder(self) -> str:
        return self.directory.name

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def success_count(self) -> int:
        return sum(1 for result in self.results if result.success)

    @property
    def error_count(self) -> int:
        return self.total - self.success_count

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "totalProcessed": self.total,
            "successCount": self.success_count,
            "errorCount": self.error_count,
            "results": [result.to_dict() for result in self.results],
            "csvFile": self.csv_url,
            "batchId": self.batch_id,
            "batchFolder": self.batch_folder,
        }


def parse_batch_request(payload: Any) -> Tuple[List[BatchPromptItem], ImageSettings]:
    if not isinstance(payload, dict):
        raise BatchValidationError("Request body must be a JSON object.")
    prompts = payload.get("prompts")
    if not isinstance(prompts, list) or not prompts:
        raise BatchValidationError("The prompts array is required and must not be empty.")
    items = [BatchPromptItem.from_payload(entry, position) for position, entry in enumerate(prompts, start=1)]
    return items, ImageSettings.from_payload(payload.get("globalSettings"))


class BatchImagePipeline:
    def __init__(
        self,
        client: ImageClient,
        store: ArtifactStore,
        *,
        fetch: Fetcher = download_artifact,
        interpret: ErrorInterpreter = interpret_generation_error,
        delay_seconds: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.client = client
        self.store = store
        self.fetch = fetch
        self.interpret = interpret
        self.delay_seconds = max(float(delay_seconds), 0.0)
        self.sleep = sleep
        self.clock = clock

    def run(
        self,
        items: Sequence[BatchPromptItem],
        defaults: ImageSettings,
        *,
        on_progress: Optional[ProgressCallback] = None,
    ) -> BatchSummary:
        if not items:
            raise BatchValidationError("The prompts array is required and must not be empty.")

        batch_id, directory = self.store.create_batch_directory(IMAGES_DIRNAME)
        summary = BatchSummary(batch_id=batch_id, directory=directory)
        total = len(items)

        for position, item in enumerate(items, start=1):
            LOGGER.info("Processing %d/%d: %s", position, total, item.prompt[:50])
            try:
                result = self._process_item(position, item, item.settings(defaults), directory)
            except Exception as exc:  # one bad item must not stop the batch
                LOGGER.exception("Error generating image for prompt %d", position)
                result = BatchResult(
                    id=item.id,
                    original_prompt=item.prompt,
                    final_prompt=item.prompt,
                    success=False,
                    timestamp=self.clock(),
                    error=f"Internal error: {exc}",
                )
            summary.results.append(result)
            if on_progress is not None:
                on_progress(result, position, total)

            if position < total and self.delay_seconds:
                self.sleep(self.delay_seconds)

        summary.csv_path = write_ledger(self.store, directory, batch_id, summary.results)
        summary.csv_url = self.store.public_url(summary.csv_path)
        LOGGER.info(
            "Batch %s finished: %d succeeded, %d failed",
            batch_id,
            summary.success_count,
            summary.error_count,
        )
        return summary

    def _process_item(
        self,
        position: int,
        item: BatchPromptItem,
        settings: ImageSettings,
        directory: Path,
    ) -> BatchResult:
        if not item.prompt:
            return BatchResult(
                id=item.id,
                original_prompt=item.prompt,
                final_prompt=item.prompt,
                success=False,
                timestamp=self.clock(),
                error=EMPTY_PROMPT_ERROR,
            )

        attempt = generate_with_revision(
            self.client,
            item.prompt,
            settings,
            interpret=self.interpret,
            label=f"prompt {position}",
        )
        if not attempt.success:
            return BatchResult(
                id=item.id,
                original_prompt=item.prompt,
                final_prompt=attempt.final_prompt,
                success=False,
                timestamp=self.clock(),
                error=attempt.error,
            )

        timestamp = self.clock()
        marker = "-revised" if attempt.was_revised else ""
        filename = f"image-{position}{marker}-{timestamp}.png"
        try:
            path = self.store.save(directory, filename, self.fetch(attempt.image.url))
        except (ArtifactSaveError, OSError) as exc:
            LOGGER.error("Error saving image for prompt %d: %s", position, exc)
            return BatchResult(
                id=item.id,
                original_prompt=item.prompt,
                final_prompt=attempt.final_prompt,
                success=False,
                timestamp=self.clock(),
                was_revised=attempt.was_revised,
                error=f"Saving the image failed: {exc}",
            )

        return BatchResult(
            id=item.id,
            original_prompt=item.prompt,
            final_prompt=attempt.final_prompt,
            success=True,
            timestamp=timestamp,
            was_revised=attempt.was_revised,
            filename=filename,
            image_url=self.store.public_url(path),
        )
