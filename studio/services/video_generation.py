"""Vertex AI Veo video generation through the google-genai SDK."""

from __future__ import annotations

import base64
import json
import logging
import random
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from google import genai
from google.genai import types
from google.oauth2 import service_account

from ..config import ProviderConfigurationError, VertexVideoSettings
from .artifacts import VIDEOS_DIRNAME, ArtifactSaveError, ArtifactStore, now_ms

LOGGER = logging.getLogger(__name__)

CLOUD_PLATFORM_SCOPE = "https://www.googleapis.com/auth/cloud-platform"

VEO_MODELS = {
    "veo-3.0": "veo-3.0-generate-preview",
    "veo-2.0": "veo-2.0-generate-001",
}


class VideoGenerationError(RuntimeError):
    def __init__(self, message: str, *, status_code: int = 500) -> None:
        super().__init__(message)
        self.status_code = status_code


class VideoTimeoutError(VideoGenerationError):
    """Raised when the long-running operation does not finish in time."""

    def __init__(self, message: str, *, operation_name: Optional[str] = None) -> None:
        super().__init__(message, status_code=408)
        self.operation_name = operation_name


@dataclass(frozen=True)
class VideoRequest:
    prompt: str
    aspect_ratio: str = "16:9"
    duration: int = 8
    model: str = "veo-3.0"
    temperature: float = 0.7

    @classmethod
    def from_payload(cls, payload: Any) -> "VideoRequest":
        if not isinstance(payload, dict):
            raise ValueError("Request body must be a JSON object.")
        prompt = payload.get("prompt")
        if not isinstance(prompt, str) or not prompt.strip():
            raise ValueError("A video description is required.")
        model = payload.get("model") or "veo-3.0"
        if model not in VEO_MODELS:
            raise ValueError(f"Unsupported model '{model}'.")
        try:
            duration = int(payload.get("duration") or 8)
            temperature = float(payload.get("temperature", 0.7))
        except (TypeError, ValueError) as exc:
            raise ValueError("duration and temperature must be numeric.") from exc
        return cls(
            prompt=prompt.strip(),
            aspect_ratio=payload.get("aspectRatio") or "16:9",
            duration=duration,
            model=model,
            temperature=temperature,
        )

    @property
    def model_name(self) -> str:
        return VEO_MODELS[self.model]


@dataclass(frozen=True)
class GeneratedVideo:
    operation_name: Optional[str]
    uri: Optional[str]
    data: Optional[bytes]
    mime_type: str = "video/mp4"

    @property
    def extension(self) -> str:
        return "mp4" if "mp4" in self.mime_type else "webm"


def load_service_account_credentials(encoded_key: str) -> service_account.Credentials:
    """Decode a base64 service-account JSON key into scoped credentials."""

    try:
        info = json.loads(base64.b64decode(encoded_key).decode("utf-8"))
    except (ValueError, UnicodeDecodeError) as exc:
        raise ProviderConfigurationError("GOOGLE_CLOUD_SERVICE_ACCOUNT_KEY is not valid base64-encoded JSON.") from exc
    try:
        return service_account.Credentials.from_service_account_info(info, scopes=[CLOUD_PLATFORM_SCOPE])
    except ValueError as exc:
        raise ProviderConfigurationError(f"GOOGLE_CLOUD_SERVICE_ACCOUNT_KEY is not a usable service account: {exc}") from exc


class VeoVideoGenerator:
    def __init__(
        self,
        settings: VertexVideoSettings,
        *,
        client: Any = None,
        poll_interval: float = 5.0,
        max_attempts: int = 60,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.settings = settings
        if client is None:
            settings.require()
            client = genai.Client(
                vertexai=True,
                project=settings.project_id,
                location=settings.location,
                credentials=load_service_account_credentials(settings.service_account_key),
            )
        self._client = client
        self.poll_interval = poll_interval
        self.max_attempts = max_attempts
        self.sleep = sleep

    def generate(self, request: VideoRequest) -> GeneratedVideo:
        config = types.GenerateVideosConfig(
            aspect_ratio=request.aspect_ratio,
            duration_seconds=request.duration,
            number_of_videos=1,
            seed=random.randint(0, 999999),
        )
        try:
            operation = self._client.models.generate_videos(
                model=request.model_name,
                prompt=request.prompt,
                config=config,
            )
        except Exception as exc:
            raise VideoGenerationError(f"Vertex AI Veo API Error: {exc}") from exc

        operation_name = getattr(operation, "name", None)
        LOGGER.info("Operation started: %s", operation_name)

        attempts = 0
        while not getattr(operation, "done", False):
            if attempts >= self.max_attempts:
                raise VideoTimeoutError(
                    "Video generation took too long. Please try again later.",
                    operation_name=operation_name,
                )
            self.sleep(self.poll_interval)
            attempts += 1
            try:
                operation = self._client.operations.get(operation)
            except Exception as exc:  # transient poll failures are retried
                LOGGER.warning("Poll attempt %d error: %s", attempts, exc)
                continue
            LOGGER.info("Poll attempt %d: %s", attempts, "COMPLETED" if operation.done else "IN_PROGRESS")

        error = getattr(operation, "error", None)
        if error:
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise VideoGenerationError(f"Video generation failed: {message}")

        response = getattr(operation, "response", None)
        samples = getattr(response, "generated_videos", None) or []
        video = getattr(samples[0], "video", None) if samples else None
        if video is None or not (getattr(video, "uri", None) or getattr(video, "video_bytes", None)):
            raise VideoGenerationError("The response did not contain a video.")

        return GeneratedVideo(
            operation_name=operation_name,
            uri=getattr(video, "uri", None),
            data=getattr(video, "video_bytes", None),
            mime_type=getattr(video, "mime_type", None) or "video/mp4",
        )


def generate_and_store_video(
    generator: VeoVideoGenerator,
    store: ArtifactStore,
    request: VideoRequest,
    *,
    clock: Callable[[], int] = now_ms,
) -> Dict[str, Any]:
    video = generator.generate(request)
    payload: Dict[str, Any] = {
        "originalUrl": video.uri,
        "prompt": request.prompt,
        "aspectRatio": request.aspect_ratio,
        "duration": request.duration,
        "model": request.model,
        "temperature": request.temperature,
        "mimeType": video.mime_type,
        "operationName": video.operation_name,
    }

    timestamp = clock()
    filename = f"generated-video-{timestamp}.{video.extension}"
    try:
        if not video.data:
            raise ArtifactSaveError("The provider returned a URI without video bytes.")
        path = store.save(store.collection(VIDEOS_DIRNAME), filename, video.data)
    except (ArtifactSaveError, OSError) as exc:
        LOGGER.error("Error saving video: %s", exc)
        payload.update(
            {
                "videoUrl": video.uri,
                "timestamp": clock(),
                "saveError": "Saving the video failed; the original URL is shown instead.",
            }
        )
        return payload

    payload.update({"videoUrl": store.public_url(path), "timestamp": timestamp})
    return payload
