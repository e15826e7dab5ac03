from __future__ import annotations

from pathlib import Path

from flask import Flask
from dotenv import load_dotenv

from .config import Config, ProviderSettings, read_env_settings


BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(BASE_DIR / ".env")


def create_app(config_class: type[Config] = Config) -> Flask:
    app = Flask(__name__, instance_relative_config=True, static_folder=None)
    app.config.from_object(config_class)
    if app.config.get("READ_ENVIRONMENT"):
        app.config.update(read_env_settings())
    if app.config.get("PROVIDER_SETTINGS") is None:
        app.config["PROVIDER_SETTINGS"] = ProviderSettings.from_env()
    app.logger.setLevel(app.config.get("LOG_LEVEL", "INFO"))

    Path(app.config["MEDIA_ROOT"]).mkdir(parents=True, exist_ok=True)
    _log_provider_status(app)
    register_blueprints(app)

    return app


def register_blueprints(app: Flask) -> None:
    from .api import bp as api_bp
    from .media import bp as media_bp

    app.register_blueprint(api_bp)
    app.register_blueprint(media_bp)


def _log_provider_status(app: Flask) -> None:
    providers: ProviderSettings = app.config["PROVIDER_SETTINGS"]
    # Only report whether credentials exist, never their values.
    app.logger.info(
        "Providers configured: chat=%s rewrite=%s image=%s video=%s",
        providers.chat.configured,
        providers.rewrite.configured,
        providers.image.configured,
        providers.video.configured,
    )
