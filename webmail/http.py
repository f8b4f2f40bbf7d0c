from __future__ import annotations

import httpx

from .constants import JMAP_LOGGER

MAX_LOGGED_BODY = 1000


def friendly_error_message(status_code: int) -> str:
    if status_code == 401:
        return "Authentication failed. Your access token may have expired."
    if status_code == 403:
        return "You don't have permission to perform this action."
    if status_code == 404:
        return "The requested JMAP resource was not found."
    if status_code == 429:
        return "Rate limit exceeded. Please try again later."
    if status_code >= 500:
        return "The JMAP server is experiencing issues. Please try again later."
    return f"JMAP request failed with status {status_code}."


async def log_request(request: httpx.Request) -> None:
    JMAP_LOGGER.info("HTTP request %s %s", request.method, request.url)


async def log_response(response: httpx.Response) -> None:
    JMAP_LOGGER.info(
        "HTTP response %s %s -> %s",
        response.request.method,
        response.request.url,
        response.status_code,
    )
    if response.status_code >= 400:
        body = await response.aread()
        text = body.decode("utf-8", errors="replace")
        if len(text) > MAX_LOGGED_BODY:
            text = text[:MAX_LOGGED_BODY] + "...<truncated>"
        JMAP_LOGGER.warning("HTTP error body: %s", text)


def build_http_client(
    *,
    timeout: float = 30.0,
    debug: bool = False,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    event_hooks: dict[str, list] = {"request": [], "response": []}
    if debug:
        event_hooks["request"].append(log_request)
        event_hooks["response"].append(log_response)
    return httpx.AsyncClient(
        timeout=timeout,
        transport=transport,
        event_hooks=event_hooks,
        follow_redirects=True,
    )
