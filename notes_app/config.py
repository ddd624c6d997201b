"""Runtime configuration for the notes service.

Settings come from environment variables (and an optional ``.env`` file) via
pydantic-settings. Nothing secret has a default: the database credentials and
the Flask secret key must be injected at runtime, which on ECS is done from
Secrets Manager.
"""

from typing import Literal, Optional

from pydantic import Field, SecretStr, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.engine import URL

from notes_app.errors import ConfigurationError


class DatabaseSettings(BaseSettings):
    """Connection settings for the notes store.

    Args:
        url: Full SQLAlchemy URL; when set the component fields are ignored.
        host: Database host name.
        port: Database port.
        name: Schema (database) name.
        user: Database user.
        password: Database password.
        pool_size: Connections kept open per process.
        max_overflow: Extra connections allowed above pool_size.
        pool_recycle: Seconds after which a pooled connection is replaced.
        echo: Log every SQL statement.
    """

    model_config = SettingsConfigDict(
        env_prefix="NOTES_DATABASE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    url: Optional[SecretStr] = Field(default=None, description="Full database URL")
    host: Optional[str] = Field(default=None, description="Database host")
    port: int = Field(default=3306, description="Database port")
    name: str = Field(default="notes", description="Database name")
    user: Optional[str] = Field(default=None, description="Database username")
    password: Optional[SecretStr] = Field(default=None, description="Database password")

    pool_size: int = Field(default=5, ge=1, description="SQLAlchemy connection pool size")
    max_overflow: int = Field(default=10, ge=0, description="SQLAlchemy max overflow connections")
    pool_recycle: int = Field(default=3600, ge=1, description="Seconds before a connection is recycled")
    echo: bool = Field(default=False, description="Echo SQL statements")

    def get_url(self) -> str:
        """Return the database URL.

        Raises:
            ConfigurationError: If neither a URL nor host, user and password are set.
        """
        if self.url is not None:
            return self.url.get_secret_value()

        if not self.host or not self.user or self.password is None:
            raise ConfigurationError(
                "Database not configured: set NOTES_DATABASE_URL or "
                "NOTES_DATABASE_HOST, NOTES_DATABASE_USER and NOTES_DATABASE_PASSWORD"
            )

        return URL.create(
            "mysql+pymysql",
            username=self.user,
            password=self.password.get_secret_value(),
            host=self.host,
            port=self.port,
            database=self.name,
            query={"charset": "utf8mb4"},
        ).render_as_string(hide_password=False)


class NotesSettings(BaseSettings):
    """Application settings.

    Args:
        secret_key: Flask secret key. Required.
        log_level: Root log level.
        log_format: Format string passed to logging.basicConfig.
        debug: Flask debug mode.
        trusted_proxy_count: Proxies in front of the app whose forwarded
            headers are trusted (edge proxy and load balancer).
        database: Store connection settings.
    """

    model_config = SettingsConfigDict(
        env_prefix="NOTES_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    secret_key: SecretStr = Field(description="Flask secret key")

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    log_format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Logging format string",
    )
    debug: bool = Field(default=False, description="Enable debug mode")
    trusted_proxy_count: int = Field(
        default=2, ge=0, description="Number of trusted reverse proxies"
    )

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)


class ServerSettings(BaseSettings):
    """gunicorn settings; read by notes_app.gunicorn_conf."""

    model_config = SettingsConfigDict(
        env_prefix="NOTES_SERVER_",
        case_sensitive=False,
        extra="ignore",
    )

    bind: str = Field(default="0.0.0.0:5000")
    workers: int = Field(default=2, ge=1)
    threads: int = Field(default=4, ge=1)
    timeout: int = Field(default=30, ge=1)
    # Longer than the load balancer idle timeout (60s).
    keepalive: int = Field(default=75, ge=1)
    log_level: str = Field(default="info")


# Global settings instance
_settings: Optional[NotesSettings] = None


def get_settings() -> NotesSettings:
    """Get global settings instance.

    Raises:
        ConfigurationError: If required settings are missing or invalid.
    """
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def load_settings(**kwargs) -> NotesSettings:
    """Build settings from the environment, with optional overrides."""
    try:
        return NotesSettings(**kwargs)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e


def reset_settings() -> None:
    """Clear the cached settings so the next get_settings re-reads the environment."""
    global _settings
    _settings = None
