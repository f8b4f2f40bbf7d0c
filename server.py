from __future__ import annotations

import os
from typing import TYPE_CHECKING

import uvicorn

from webmail.constants import APP_VERSION, AUTH_MODE, LOGGER
from webmail.env import load_config, load_env, setup_logging
from webmail.session import Session
from webmail.web import create_web_app

if TYPE_CHECKING:
    from starlette.applications import Starlette


def create_app() -> "Starlette":
    load_env()
    debug_enabled = setup_logging()
    config = load_config()
    session = Session(config, debug=debug_enabled)
    LOGGER.info(
        "Starting webmail session layer version=%s auth_mode=%s issuer=%s",
        APP_VERSION,
        AUTH_MODE,
        config.authority,
    )
    return create_web_app(session)


def main() -> None:
    host = os.getenv("WEBMAIL_HOST", "127.0.0.1")
    port = int(os.getenv("WEBMAIL_PORT", "8000"))
    uvicorn.run(create_app(), host=host, port=port)


if __name__ == "__main__":
    main()
