"""Filesystem sink for generated media and the HTTP download helper."""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Callable, Optional, Tuple

import requests

LOGGER = logging.getLogger(__name__)

IMAGES_DIRNAME = "generated-images"
VIDEOS_DIRNAME = "generated-videos"


class ArtifactSaveError(RuntimeError):
    """Raised when a generated artifact cannot be downloaded or written."""


class BatchDirectoryError(RuntimeError):
    """Raised when a batch output directory cannot be created."""


def now_ms() -> int:
    return int(time.time() * 1000)


def download_artifact(url: str, *, timeout: float = 120.0, headers: Optional[dict] = None) -> bytes:
    try:
        response = requests.get(url, timeout=timeout, headers=headers)
        response.raise_for_status()
    except requests.RequestException as exc:
        raise ArtifactSaveError(f"Download failed for {url}: {exc}") from exc
    return response.content


class ArtifactStore:
    """Write artifacts below ``media_root`` and map them to public URLs.

    ``media_root`` is served as-is, so ``<media_root>/generated-images/x.png``
    is reachable at ``/generated-images/x.png``.
    """

    def __init__(self, media_root: str | Path, *, clock: Callable[[], int] = now_ms) -> None:
        self.media_root = Path(media_root)
        self._clock = clock

    def collection(self, name: str) -> Path:
        path = self.media_root / name
        path.mkdir(parents=True, exist_ok=True)
        return path

    def create_batch_directory(self, collection: str = IMAGES_DIRNAME) -> Tuple[int, Path]:
        """Create ``batch-<ms>`` exclusively and return ``(batch_id, path)``."""

        try:
            parent = self.collection(collection)
        except OSError as exc:
            raise BatchDirectoryError(f"Error creating batch directory: {exc}") from exc

        batch_id = self._clock()
        while True:
            path = parent / f"batch-{batch_id}"
            try:
                path.mkdir()
            except FileExistsError:
                batch_id += 1
                continue
            except OSError as exc:
                raise BatchDirectoryError(f"Error creating batch directory: {exc}") from exc
            LOGGER.info("Created batch directory: %s", path)
            return batch_id, path

    def save(self, directory: Path, filename: str, data: bytes) -> Path:
        target = Path(directory) / filename
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as exc:
            raise ArtifactSaveError(f"Could not write {filename}: {exc}") from exc
        return target

    def save_text(self, directory: Path, filename: str, content: str) -> Path:
        return self.save(directory, filename, content.encode("utf-8"))

    def public_url(self, path: Path) -> str:
        relative = Path(path).resolve().relative_to(self.media_root.resolve())
        return "/" + relative.as_posix()
