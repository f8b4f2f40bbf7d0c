from __future__ import annotations

import contextlib
from typing import TYPE_CHECKING

from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, RedirectResponse, Response
from starlette.routing import Route

from . import mail
from .constants import APP_VERSION, AUTH_MODE, LOGGER
from .errors import AuthorizationError, ProtocolError, SessionExpired, TransportError

if TYPE_CHECKING:
    from .session import Session

LOGIN_PATH = "/login"
CALLBACK_PATH = "/auth/callback"


def error_response(code: str, description: str, status_code: int) -> Response:
    return JSONResponse(
        {"error": code, "error_description": description},
        status_code=status_code,
    )


def create_web_app(session: "Session") -> Starlette:
    async def login_route(request: Request) -> Response:
        del request
        return RedirectResponse(url=await session.login(), status_code=302)

    async def callback_route(request: Request) -> Response:
        await session.complete_login(str(request.url))
        return RedirectResponse(url="/", status_code=302)

    async def logout_route(request: Request) -> Response:
        del request
        await session.logout()
        return RedirectResponse(url=LOGIN_PATH, status_code=303)

    async def session_route(request: Request) -> Response:
        del request
        return JSONResponse(
            {"authenticated": session.is_authenticated(), "state": session.state.value}
        )

    async def mailboxes_route(request: Request) -> Response:
        del request
        return JSONResponse({"mailboxes": await mail.list_mailboxes(session)})

    async def health_route(request: Request) -> Response:
        del request
        return JSONResponse({"status": "ok", "version": APP_VERSION, "auth_mode": AUTH_MODE})

    async def session_expired_handler(request: Request, exc: Exception) -> Response:
        LOGGER.info("Redirecting to login after %s on %s", exc, request.url.path)
        return RedirectResponse(url=LOGIN_PATH, status_code=302)

    async def authorization_error_handler(request: Request, exc: Exception) -> Response:
        del request
        return error_response("authorization_failed", str(exc), 400)

    async def upstream_error_handler(request: Request, exc: Exception) -> Response:
        del request
        code = "jmap_protocol_error" if isinstance(exc, ProtocolError) else "jmap_transport_error"
        return error_response(code, str(exc), 502)

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette):
        del app
        await session.open()
        try:
            yield
        finally:
            await session.close()

    return Starlette(
        routes=[
            Route(LOGIN_PATH, login_route, methods=["GET"]),
            Route(CALLBACK_PATH, callback_route, methods=["GET"]),
            Route("/logout", logout_route, methods=["POST"]),
            Route("/session", session_route, methods=["GET"]),
            Route("/mailboxes", mailboxes_route, methods=["GET"]),
            Route("/health", health_route, methods=["GET"]),
        ],
        exception_handlers={
            SessionExpired: session_expired_handler,
            AuthorizationError: authorization_error_handler,
            TransportError: upstream_error_handler,
            ProtocolError: upstream_error_handler,
        },
        lifespan=lifespan,
    )
