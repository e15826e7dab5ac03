from __future__ import annotations

from typing import Optional

from flask import current_app, jsonify, request

from api_handler import AzureChatGenerator, AzureImageGenerator, CompletionError, ImageGenerationError

from ..config import ProviderConfigurationError, ProviderSettings
from ..services.artifacts import ArtifactStore, BatchDirectoryError, download_artifact
from ..services.batch_images import BatchImagePipeline, BatchResult, BatchValidationError, parse_batch_request
from ..services.chat import ChatValidationError, build_chat_request
from ..services.image_generation import ImageSettings, generate_single_image
from ..services.rewrite import RewriteError, RewriteSettings, RewriteValidationError, TextRewriter
from ..services.video_generation import (
    VeoVideoGenerator,
    VideoGenerationError,
    VideoRequest,
    VideoTimeoutError,
    generate_and_store_video,
)
from . import bp


def _error(message: str, http_status: int, **extra):
    payload = {"error": message}
    payload.update(extra)
    return jsonify(payload), http_status


@bp.route("/rewrite", methods=["POST"])
def rewrite():
    payload = request.get_json(silent=True) or {}
    text = payload.get("text") if isinstance(payload, dict) else None
    text_length = len(text) if isinstance(text, str) else 0
    current_app.logger.info("Rewrite request received: %d characters", text_length)

    try:
        rewriter = _get_text_rewriter(chunked=text_length > current_app.config["REWRITE_CHUNK_THRESHOLD"])
    except ProviderConfigurationError as exc:
        return _error(str(exc), 500)

    try:
        result = rewriter.rewrite(text)
    except RewriteValidationError as exc:
        return _error(str(exc), 400)
    except RewriteError as exc:
        current_app.logger.warning("Rewrite failed: %s", exc)
        return _error(str(exc), exc.status_code)
    except Exception as exc:
        current_app.logger.exception("Unexpected error while rewriting text")
        return _error(f"Internal server error: {exc}", 500)

    return jsonify(result.to_dict())


@bp.route("/batch-generate", methods=["POST"])
def batch_generate():
    payload = request.get_json(silent=True)

    try:
        _provider_settings().image.require()
    except ProviderConfigurationError as exc:
        return _error(str(exc), 500)

    try:
        items, defaults = parse_batch_request(payload)
    except BatchValidationError as exc:
        return _error(str(exc), 400)

    current_app.logger.info("Batch image generation request: %d prompts", len(items))
    try:
        summary = _get_batch_pipeline().run(items, defaults, on_progress=_log_batch_progress)
    except BatchDirectoryError as exc:
        current_app.logger.error("Batch aborted: %s", exc)
        return _error(str(exc), 500)
    except Exception as exc:
        current_app.logger.exception("Unexpected error during batch generation")
        return _error(f"Internal server error: {exc}", 500)

    return jsonify(summary.to_dict())


@bp.route("/generate-image", methods=["POST"])
def generate_image():
    payload = request.get_json(silent=True) or {}

    try:
        _provider_settings().image.require()
    except ProviderConfigurationError as exc:
        return _error(str(exc), 500)

    prompt = payload.get("prompt") if isinstance(payload, dict) else None
    if not isinstance(prompt, str) or not prompt.strip():
        return _error("A prompt is required.", 400)

    settings = ImageSettings.from_payload(payload)
    current_app.logger.info("Image generation request (%s, %s, %s)", settings.size, settings.style, settings.quality)
    try:
        result = generate_single_image(
            _get_image_client(),
            _artifact_store(),
            prompt.strip(),
            settings,
            fetch=_fetch_artifact,
        )
    except ImageGenerationError as exc:
        status = exc.status_code or 500
        return _error(str(exc), status, status=status)
    except Exception as exc:
        current_app.logger.exception("Unexpected error while generating an image")
        return _error(f"Internal server error: {exc}", 500)

    return jsonify(result)


@bp.route("/generate-video", methods=["POST"])
def generate_video():
    payload = request.get_json(silent=True) or {}

    try:
        _provider_settings().video.require()
    except ProviderConfigurationError as exc:
        return _error(str(exc), 500)

    try:
        video_request = VideoRequest.from_payload(payload)
    except ValueError as exc:
        return _error(str(exc), 400)

    current_app.logger.info(
        "Video generation request: model=%s aspect=%s duration=%ss",
        video_request.model,
        video_request.aspect_ratio,
        video_request.duration,
    )
    try:
        result = generate_and_store_video(_get_video_generator(), _artifact_store(), video_request)
    except VideoTimeoutError as exc:
        return _error(str(exc), exc.status_code, operationName=exc.operation_name)
    except VideoGenerationError as exc:
        current_app.logger.warning("Video generation failed: %s", exc)
        return _error(str(exc), exc.status_code)
    except ProviderConfigurationError as exc:
        return _error(str(exc), 500)
    except Exception as exc:
        current_app.logger.exception("Unexpected error while generating a video")
        return _error(f"Video generation failed: {exc}", 500)

    return jsonify(result)


@bp.route("/chat", methods=["POST"])
def chat():
    payload = request.get_json(silent=True)

    try:
        generator = _get_chat_generator()
    except ProviderConfigurationError as exc:
        return _error(str(exc), 500)

    try:
        chat_request = build_chat_request(payload)
    except ChatValidationError as exc:
        return _error(str(exc), 400)

    current_app.logger.info("Chat request received: %d messages", len(chat_request.messages))
    try:
        result = generator.complete(chat_request.messages, **chat_request.parameters)
    except CompletionError as exc:
        status = exc.status_code or 500
        return _error(str(exc), status, status=status)
    except Exception as exc:
        current_app.logger.exception("Unexpected error during chat completion")
        return _error(f"Internal server error: {exc}", 500)

    return jsonify({"content": result.text, "usage": result.usage})


def _log_batch_progress(result: BatchResult, position: int, total: int) -> None:
    outcome = "ok" if result.success else "failed"
    if result.was_revised:
        outcome += " (revised prompt)"
    current_app.logger.info("Batch item %d/%d [%s]: %s", position, total, result.id, outcome)


def _provider_settings() -> ProviderSettings:
    return current_app.config["PROVIDER_SETTINGS"]


def _artifact_store() -> ArtifactStore:
    return ArtifactStore(current_app.config["MEDIA_ROOT"])


def _fetch_artifact(url: str) -> bytes:
    return download_artifact(url)


def _get_text_rewriter(*, chunked: bool) -> TextRewriter:
    providers = _provider_settings()
    rewrite_settings = providers.rewrite.require()
    chunk_generator: Optional[AzureChatGenerator] = None
    if chunked:
        chat_settings = providers.chat.require()
        chunk_generator = AzureChatGenerator(
            api_key=chat_settings.api_key,
            endpoint=chat_settings.endpoint,
            deployment=chat_settings.deployment,
            api_version=chat_settings.api_version,
        )
    single_pass_generator = AzureChatGenerator(
        api_key=rewrite_settings.api_key,
        endpoint=rewrite_settings.endpoint,
        deployment=rewrite_settings.deployment,
        api_version=rewrite_settings.api_version,
    )
    return TextRewriter(
        chunk_generator=chunk_generator,
        single_pass_generator=single_pass_generator,
        settings=RewriteSettings(
            chunk_threshold=current_app.config["REWRITE_CHUNK_THRESHOLD"],
            chunk_size=current_app.config["REWRITE_CHUNK_SIZE"],
        ),
    )


def _get_chat_generator() -> AzureChatGenerator:
    settings = _provider_settings().chat.require()
    return AzureChatGenerator(
        api_key=settings.api_key,
        endpoint=settings.endpoint,
        deployment=settings.deployment,
        api_version=settings.api_version,
    )


def _get_image_client() -> AzureImageGenerator:
    settings = _provider_settings().image.require()
    return AzureImageGenerator(
        api_key=settings.api_key,
        endpoint=settings.endpoint,
        deployment=settings.deployment,
        api_version=settings.api_version,
    )


def _get_batch_pipeline() -> BatchImagePipeline:
    return BatchImagePipeline(
        _get_image_client(),
        _artifact_store(),
        fetch=_fetch_artifact,
        delay_seconds=current_app.config["BATCH_REQUEST_DELAY"],
    )


def _get_video_generator() -> VeoVideoGenerator:
    return VeoVideoGenerator(
        _provider_settings().video,
        poll_interval=current_app.config["VIDEO_POLL_INTERVAL"],
        max_attempts=current_app.config["VIDEO_MAX_POLL_ATTEMPTS"],
    )
