"""Image generation with the content-policy revision retry.

Azure DALL-E sometimes rejects a prompt with ``content_policy_violation`` and
suggests a ``revised_prompt``. :func:`generate_with_revision` retries exactly
once with that suggestion; the detection itself is delegated to an
interpreter callable so other providers can plug in their own error shapes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, Optional, Protocol

from api_handler import GeneratedImage, GenerationErrorInfo, ImageGenerationError, interpret_generation_error

from .artifacts import IMAGES_DIRNAME, ArtifactSaveError, ArtifactStore, download_artifact, now_ms

LOGGER = logging.getLogger(__name__)

RETRY_FAILED_SUFFIX = " (Retry with revised prompt also failed)"

ErrorInterpreter = Callable[[Any], GenerationErrorInfo]
Fetcher = Callable[[str], bytes]


class ImageClient(Protocol):
    def generate(self, prompt: str, *, size: str, style: str, quality: str) -> GeneratedImage:
        ...


@dataclass(frozen=True)
class ImageSettings:
    size: str = "1024x1024"
    style: str = "vivid"
    quality: str = "standard"

    def merged(
        self,
        *,
        size: Optional[str] = None,
        style: Optional[str] = None,
        quality: Optional[str] = None,
    ) -> "ImageSettings":
        """Return a copy where every non-empty override replaces the default."""

        overrides = {
            key: value.strip()
            for key, value in (("size", size), ("style", style), ("quality", quality))
            if isinstance(value, str) and value.strip()
        }
        return replace(self, **overrides) if overrides else self

    @classmethod
    def from_payload(cls, payload: Any) -> "ImageSettings":
        if not isinstance(payload, dict):
            return cls()
        return cls().merged(size=payload.get("size"), style=payload.get("style"), quality=payload.get("quality"))

    def as_dict(self) -> Dict[str, str]:
        return {"size": self.size, "style": self.style, "quality": self.quality}


@dataclass(frozen=True)
class ImageAttempt:
    original_prompt: str
    final_prompt: str
    image: Optional[GeneratedImage] = None
    error: Optional[str] = None
    status_code: Optional[int] = None
    retried: bool = False

    @property
    def success(self) -> bool:
        return self.image is not None

    @property
    def was_revised(self) -> bool:
        return self.success and self.retried


def generate_with_revision(
    client: ImageClient,
    prompt: str,
    settings: ImageSettings,
    *,
    interpret: ErrorInterpreter = interpret_generation_error,
    label: str = "prompt",
) -> ImageAttempt:
    """Generate one image, retrying once with a provider-revised prompt."""

    try:
        image = client.generate(prompt, **settings.as_dict())
        return ImageAttempt(original_prompt=prompt, final_prompt=prompt, image=image)
    except ImageGenerationError as exc:
        LOGGER.warning("Image API error for %s: %s", label, exc)
        first_error = exc

    info = interpret(first_error)
    if not info.revised_prompt:
        return ImageAttempt(
            original_prompt=prompt,
            final_prompt=prompt,
            error=str(first_error),
            status_code=first_error.status_code,
        )

    LOGGER.info("Retrying %s with revised prompt: %s", label, info.revised_prompt)
    try:
        image = client.generate(info.revised_prompt, **settings.as_dict())
    except ImageGenerationError as retry_exc:
        LOGGER.warning("Retry also failed for %s: %s", label, retry_exc)
        return ImageAttempt(
            original_prompt=prompt,
            final_prompt=prompt,
            error=f"{first_error}{RETRY_FAILED_SUFFIX}",
            status_code=first_error.status_code,
            retried=True,
        )
    return ImageAttempt(original_prompt=prompt, final_prompt=info.revised_prompt, image=image, retried=True)


def generate_single_image(
    client: ImageClient,
    store: ArtifactStore,
    prompt: str,
    settings: ImageSettings,
    *,
    fetch: Fetcher = download_artifact,
    interpret: ErrorInterpreter = interpret_generation_error,
    clock: Callable[[], int] = now_ms,
) -> Dict[str, Any]:
    """Generate and persist one image, returning the response payload.

    Raises :class:`ImageGenerationError` when neither attempt produced an image.
    A save failure is not an error: the provider URL is returned instead.
    """

    attempt = generate_with_revision(client, prompt, settings, interpret=interpret)
    if not attempt.success:
        raise ImageGenerationError(f"DALL-E {attempt.error}", status_code=attempt.status_code)

    remote_url = attempt.image.url
    payload: Dict[str, Any] = {
        "originalUrl": remote_url,
        "prompt": prompt,
        **settings.as_dict(),
    }
    if attempt.was_revised:
        payload.update(
            {
                "prompt": f"{prompt} (REVISED: {attempt.final_prompt})",
                "originalPrompt": prompt,
                "revisedPrompt": attempt.final_prompt,
                "wasRevised": True,
            }
        )

    timestamp = clock()
    filename = f"generated-revised-{timestamp}.png" if attempt.was_revised else f"generated-{timestamp}.png"
    try:
        path = store.save(store.collection(IMAGES_DIRNAME), filename, fetch(remote_url))
    except (ArtifactSaveError, OSError) as exc:
        LOGGER.error("Error saving image: %s", exc)
        payload.update(
            {
                "imageUrl": remote_url,
                "timestamp": clock(),
                "saveError": "Saving the image failed; the original URL is shown instead.",
            }
        )
        return payload

    payload.update({"imageUrl": store.public_url(path), "timestamp": timestamp})
    return payload
