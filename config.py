import os
import re
from dataclasses import dataclass, field
from typing import Mapping, Optional

BASE_DIR = os.path.abspath(os.path.dirname(__file__))


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in {"1", "true", "yes", "on"}


class Config:
    # Secrets (signs the session id cookie)
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-only-change-me")

    # SQLite database file stored next to the app as dashgate.db
    SQLALCHEMY_DATABASE_URI = os.getenv(
        "DATABASE_URL",
        "sqlite:///" + os.path.join(BASE_DIR, "dashgate.db")
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    AUTO_CREATE_TABLES = _env_flag("AUTO_CREATE_TABLES", "true")

    # Public address of the dashboard, host[:port]; drives the cookie domain
    BASE_URL = os.getenv("BASE_URL", "localhost:9090")
    SSL_ENABLED = _env_flag("SSL_ENABLED")

    # Login
    LOGIN_ENABLED = _env_flag("LOGIN_ENABLED")
    # Comma separated provider names, e.g. "twitch,steam"
    LOGIN_PROVIDERS = os.getenv("LOGIN_PROVIDERS", "")
    LOGIN_PATH = "/login"

    # Session cookie (holds the signed session id only)
    SESSION_COOKIE_NAME = "dashgate.sid"
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = "Lax"
    SESSION_COOKIE_SECURE = SSL_ENABLED
    SESSION_REFRESH_EACH_REQUEST = True

    # Server-side session rows: 24h lifetime, swept every 15 minutes
    SESSION_EXPIRATION = int(os.getenv("SESSION_EXPIRATION", str(24 * 60 * 60)))
    SESSION_CHECK_EXPIRATION_INTERVAL = int(os.getenv("SESSION_CHECK_EXPIRATION_INTERVAL", str(15 * 60)))
    SESSION_SWEEPER_ENABLED = _env_flag("SESSION_SWEEPER_ENABLED", "true")

    # Logging
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    LOG_JSON = _env_flag("LOG_JSON")

    DEBUG = False


@dataclass(frozen=True)
class LoginSettings:
    """Login-related configuration handed to the auth gate at construction."""

    enabled: bool = False
    providers: Mapping[str, bool] = field(default_factory=dict)
    base_url: str = "localhost"
    ssl_enabled: bool = False
    login_path: str = "/login"

    @classmethod
    def from_app_config(cls, config: Mapping) -> "LoginSettings":
        return cls(
            enabled=bool(config.get("LOGIN_ENABLED", False)),
            providers=_parse_providers(config.get("LOGIN_PROVIDERS")),
            base_url=config.get("BASE_URL") or "localhost",
            ssl_enabled=bool(config.get("SSL_ENABLED", False)),
            login_path=config.get("LOGIN_PATH", "/login"),
        )

    def provider_enabled(self, provider: Optional[str]) -> bool:
        if not provider or provider == "none":
            return False
        return bool(self.providers.get(provider, False))

    @property
    def cookie_domain(self) -> Optional[str]:
        # Browsers refuse "localhost" as a cookie domain attribute, so leave it unset.
        domain = re.sub(r":[0-9]+", "", self.base_url, count=1)
        if domain == "localhost":
            return None
        return domain


def _parse_providers(value) -> dict:
    """
    Accepts either {"twitch": {"enabled": True}} / {"twitch": True}
    or a comma separated string of enabled provider names.
    """
    if not value:
        return {}
    if isinstance(value, str):
        return {name.strip(): True for name in value.split(",") if name.strip()}

    providers = {}
    for name, options in value.items():
        if isinstance(options, Mapping):
            providers[name] = bool(options.get("enabled", False))
        else:
            providers[name] = bool(options)
    return providers
