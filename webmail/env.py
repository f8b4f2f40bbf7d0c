from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv
from pydantic import AnyHttpUrl, TypeAdapter, ValidationError

from .constants import AUTH_LOGGER, JMAP_LOGGER, LOGGER

REQUIRED_ENV = (
    "OAUTH_AUTHORITY",
    "OAUTH_CLIENT_ID",
    "BASE_URL",
    "OAUTH_SCOPES",
    "JMAP_ENDPOINT",
    "JMAP_SESSION_ENDPOINT",
)
URL_ENV = ("OAUTH_AUTHORITY", "BASE_URL", "JMAP_ENDPOINT", "JMAP_SESSION_ENDPOINT")

_URL_ADAPTER = TypeAdapter(AnyHttpUrl)


@dataclass(frozen=True)
class SessionConfig:
    authority: str
    client_id: str
    redirect_uri: str
    scopes: tuple[str, ...]
    jmap_endpoint: str
    jmap_session_endpoint: str
    http_timeout: float = 30.0
    proactive_refresh: bool = False
    token_store_path: str | None = None
    namespace: str = "default"


def is_truthy(value: str | None) -> bool:
    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_env_float(key: str, default: float) -> float:
    raw = os.getenv(key, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise RuntimeError(f"{key} must be a number.")


def load_env() -> None:
    env_path = Path(__file__).resolve().parent.parent / ".env"
    if not env_path.exists():
        return
    load_dotenv(env_path, override=True)


def validate_env() -> None:
    missing = [key for key in REQUIRED_ENV if not os.getenv(key, "").strip()]
    if missing:
        raise RuntimeError(f"Invalid configuration, missing: {', '.join(missing)}")

    for key in URL_ENV:
        try:
            _URL_ADAPTER.validate_python(os.getenv(key, "").strip())
        except ValidationError:
            raise RuntimeError(f"{key} must be an absolute http(s) URL.")

    if not os.getenv("OAUTH_SCOPES", "").split():
        raise RuntimeError("OAUTH_SCOPES must name at least one scope.")
    if "offline_access" not in os.getenv("OAUTH_SCOPES", "").split():
        LOGGER.warning("OAUTH_SCOPES is missing offline_access; refresh tokens may not be issued.")


def load_config() -> SessionConfig:
    validate_env()
    base_url = os.getenv("BASE_URL", "").strip().rstrip("/")
    store_path = os.getenv("WEBMAIL_TOKEN_STORE_PATH", "").strip()
    return SessionConfig(
        authority=os.getenv("OAUTH_AUTHORITY", "").strip(),
        client_id=os.getenv("OAUTH_CLIENT_ID", "").strip(),
        redirect_uri=f"{base_url}/auth/callback",
        scopes=tuple(os.getenv("OAUTH_SCOPES", "").split()),
        jmap_endpoint=os.getenv("JMAP_ENDPOINT", "").strip(),
        jmap_session_endpoint=os.getenv("JMAP_SESSION_ENDPOINT", "").strip(),
        http_timeout=_get_env_float("WEBMAIL_HTTP_TIMEOUT", 30.0),
        proactive_refresh=is_truthy(os.getenv("WEBMAIL_PROACTIVE_REFRESH")),
        token_store_path=store_path or None,
    )


def setup_logging() -> bool:
    debug_enabled = is_truthy(os.getenv("WEBMAIL_DEBUG", "1"))
    if debug_enabled:
        logging.basicConfig(level=logging.INFO)
        for logger in (LOGGER, JMAP_LOGGER, AUTH_LOGGER):
            logger.setLevel(logging.INFO)
    return debug_enabled
