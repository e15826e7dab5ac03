import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

BASE_DIR = Path(__file__).resolve().parent.parent

DEFAULT_IMAGE_API_VERSION = "2024-04-01-preview"
DEFAULT_CHAT_API_VERSION = "2024-10-21"


class ProviderConfigurationError(RuntimeError):
    """Raised when credentials or endpoints for a provider are missing."""


def _clean(value: Optional[str]) -> str:
    return (value or "").strip()


@dataclass(frozen=True)
class AzureChatSettings:
    """Credentials for one Azure OpenAI chat-completions deployment."""

    api_key: str = ""
    endpoint: str = ""
    deployment: str = ""
    api_version: str = DEFAULT_CHAT_API_VERSION
    key_variable: str = "AZURE_OPENAI_KEY"
    endpoint_variable: str = "AZURE_OPENAI_ENDPOINT"

    @property
    def configured(self) -> bool:
        return bool(self.api_key and self.endpoint)

    def require(self) -> "AzureChatSettings":
        missing = [
            name
            for name, value in ((self.key_variable, self.api_key), (self.endpoint_variable, self.endpoint))
            if not value
        ]
        if missing:
            raise ProviderConfigurationError(
                "Azure OpenAI settings are missing from the environment. Check " + " and ".join(missing) + "."
            )
        return self


def _rewrite_settings(**values: str) -> AzureChatSettings:
    return AzureChatSettings(key_variable="AZURE_OPENAI_O1_KEY", endpoint_variable="AZURE_OPENAI_O1_ENDPOINT", **values)


@dataclass(frozen=True)
class AzureImageSettings:
    api_key: str = ""
    endpoint: str = ""
    deployment: str = "dall-e-3"
    api_version: str = DEFAULT_IMAGE_API_VERSION

    @property
    def configured(self) -> bool:
        return bool(self.api_key and self.endpoint)

    def require(self) -> "AzureImageSettings":
        if not self.configured:
            raise ProviderConfigurationError(
                "Azure OpenAI image settings are missing from the environment. "
                "Check AZURE_OPENAI_API_KEY and AZURE_OPENAI_IMAGE_ENDPOINT."
            )
        return self


@dataclass(frozen=True)
class VertexVideoSettings:
    project_id: str = ""
    location: str = "us-central1"
    service_account_key: str = field(default="", repr=False)

    @property
    def configured(self) -> bool:
        return bool(self.project_id and self.service_account_key)

    def require(self) -> "VertexVideoSettings":
        if not self.configured:
            raise ProviderConfigurationError(
                "Google Cloud settings are missing from the environment. "
                "Check GOOGLE_CLOUD_PROJECT_ID and GOOGLE_CLOUD_SERVICE_ACCOUNT_KEY."
            )
        return self


@dataclass(frozen=True)
class ProviderSettings:
    """Immutable provider configuration, read once when the app is created."""

    chat: AzureChatSettings = field(default_factory=AzureChatSettings)
    rewrite: AzureChatSettings = field(default_factory=_rewrite_settings)
    image: AzureImageSettings = field(default_factory=AzureImageSettings)
    video: VertexVideoSettings = field(default_factory=VertexVideoSettings)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ProviderSettings":
        env = os.environ if environ is None else environ
        chat_api_version = _clean(env.get("AZURE_OPENAI_CHAT_API_VERSION")) or DEFAULT_CHAT_API_VERSION
        chat = AzureChatSettings(
            api_key=_clean(env.get("AZURE_OPENAI_KEY")),
            endpoint=_clean(env.get("AZURE_OPENAI_ENDPOINT")),
            deployment=_clean(env.get("AZURE_OPENAI_DEPLOYMENT")) or "gpt-4.1",
            api_version=chat_api_version,
        )
        rewrite = _rewrite_settings(
            api_key=_clean(env.get("AZURE_OPENAI_O1_KEY")),
            endpoint=_clean(env.get("AZURE_OPENAI_O1_ENDPOINT")),
            deployment=_clean(env.get("AZURE_OPENAI_O1_DEPLOYMENT")) or "o1",
            api_version=chat_api_version,
        )
        image = AzureImageSettings(
            api_key=_clean(env.get("AZURE_OPENAI_API_KEY")),
            endpoint=_clean(env.get("AZURE_OPENAI_IMAGE_ENDPOINT")),
            deployment=_clean(env.get("DALL_E_DEPLOYMENT")) or "dall-e-3",
            api_version=_clean(env.get("OPENAI_API_VERSION")) or DEFAULT_IMAGE_API_VERSION,
        )
        video = VertexVideoSettings(
            project_id=_clean(env.get("GOOGLE_CLOUD_PROJECT_ID")),
            location=_clean(env.get("GOOGLE_CLOUD_LOCATION")) or "us-central1",
            service_account_key=_clean(env.get("GOOGLE_CLOUD_SERVICE_ACCOUNT_KEY")),
        )
        return cls(chat=chat, rewrite=rewrite, image=image, video=video)


# Flask settings that .env or the process environment may override.
ENV_SETTINGS = {
    "SECRET_KEY": str,
    "MEDIA_ROOT": str,
    "LOG_LEVEL": str,
    "BATCH_REQUEST_DELAY": float,
}


def read_env_settings(environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """Return the :data:`ENV_SETTINGS` present in ``environ``, converted to their types."""

    env = os.environ if environ is None else environ
    values: Dict[str, Any] = {}
    for name, cast in ENV_SETTINGS.items():
        raw = _clean(env.get(name))
        if not raw:
            continue
        try:
            values[name] = cast(raw)
        except ValueError as exc:
            raise ProviderConfigurationError(f"{name} has an invalid value: {raw!r}") from exc
    return values


class Config:
    """Base configuration shared across environments."""

    SECRET_KEY = "dev-change-me"
    MEDIA_ROOT = str(BASE_DIR / "public")
    LOG_LEVEL = "INFO"
    BATCH_REQUEST_DELAY = 1.0
    # Applied in create_app, after .env has been loaded.
    READ_ENVIRONMENT = True
    REWRITE_CHUNK_THRESHOLD = 20000
    REWRITE_CHUNK_SIZE = 15000
    VIDEO_POLL_INTERVAL = 5.0
    VIDEO_MAX_POLL_ATTEMPTS = 60
    # None means "read from the environment" in create_app.
    PROVIDER_SETTINGS: Optional[ProviderSettings] = None


class TestConfig(Config):
    TESTING = True
    READ_ENVIRONMENT = False
    BATCH_REQUEST_DELAY = 0.0
    VIDEO_POLL_INTERVAL = 0.0
    PROVIDER_SETTINGS = ProviderSettings(
        chat=AzureChatSettings(api_key="test-chat-key", endpoint="https://chat.example.test", deployment="gpt-test"),
        rewrite=_rewrite_settings(api_key="test-o1-key", endpoint="https://o1.example.test", deployment="o1-test"),
        image=AzureImageSettings(api_key="test-image-key", endpoint="https://images.example.test"),
        video=VertexVideoSettings(project_id="test-project", service_account_key="e30="),
    )
