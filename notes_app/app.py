import logging
from typing import Optional

from flask import Flask
from werkzeug.middleware.proxy_fix import ProxyFix

from notes_app.api import bp, register_error_handlers
from notes_app.config import NotesSettings, get_settings
from notes_app.database import Database

logger = logging.getLogger(__name__)


def configure_logging(settings: NotesSettings) -> None:
    logging.basicConfig(level=settings.log_level, format=settings.log_format)


def create_app(settings: Optional[NotesSettings] = None,
               database: Optional[Database] = None) -> Flask:
    """Application factory.

    Args:
        settings: Settings to use; read from the environment when omitted.
        database: Store to use; built from ``settings.database`` when omitted.

    Returns:
        The configured Flask application.

    Raises:
        ConfigurationError: If the secret key or database settings are missing.
    """
    settings = settings or get_settings()
    configure_logging(settings)

    app = Flask(__name__)
    app.config["SECRET_KEY"] = settings.secret_key.get_secret_value()
    app.config["DEBUG"] = settings.debug
    app.json.sort_keys = False

    if settings.trusted_proxy_count:
        count = settings.trusted_proxy_count
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=count, x_proto=1, x_host=1)

    app.extensions["notes_database"] = database or Database.from_settings(settings.database)

    app.register_blueprint(bp)
    register_error_handlers(app)

    logger.info("Notes service initialised")
    return app
