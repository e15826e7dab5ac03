from __future__ import annotations

from pathlib import Path

from flask import current_app, send_from_directory

from ..services.artifacts import IMAGES_DIRNAME, VIDEOS_DIRNAME
from . import bp


def _collection_root(name: str) -> Path:
    return Path(current_app.config["MEDIA_ROOT"]) / name


@bp.route(f"/{IMAGES_DIRNAME}/<path:filename>")
def generated_image(filename: str):
    return send_from_directory(_collection_root(IMAGES_DIRNAME), filename)


@bp.route(f"/{VIDEOS_DIRNAME}/<path:filename>")
def generated_video(filename: str):
    return send_from_directory(_collection_root(VIDEOS_DIRNAME), filename)
