from __future__ import annotations

import base64
import hashlib
import hmac
import secrets
import time

import httpx

from auth.models import Credentials, PendingAuthorization, ServerMetadata
from auth.urls import append_query_params, parse_callback_params
from webmail.constants import AUTH_LOGGER
from webmail.errors import AuthorizationError

DISCOVERY_PATH = "/.well-known/openid-configuration"


def generate_code_verifier() -> str:
    while True:
        verifier = secrets.token_urlsafe(48)
        if 43 <= len(verifier) <= 128:
            return verifier


def generate_code_challenge(verifier: str) -> str:
    digest = hashlib.sha256(verifier.encode("utf-8")).digest()
    return base64.urlsafe_b64encode(digest).decode("utf-8").rstrip("=")


def generate_state() -> str:
    return secrets.token_urlsafe(32)


def build_authorization_url(
    authorization_endpoint: str,
    client_id: str,
    redirect_uri: str,
    scopes: list[str] | tuple[str, ...],
    state: str,
    code_challenge: str,
) -> str:
    return append_query_params(
        authorization_endpoint,
        {
            "client_id": client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": " ".join(scopes),
            "state": state,
            "code_challenge": code_challenge,
            "code_challenge_method": "S256",
        },
    )


def _normalize_issuer(issuer: str) -> str:
    return issuer.rstrip("/")


async def discover_server_metadata(issuer: str, *, client: httpx.AsyncClient) -> ServerMetadata:
    url = f"{_normalize_issuer(issuer)}{DISCOVERY_PATH}"
    AUTH_LOGGER.info("Discovering authorization server metadata from %s", url)
    try:
        response = await client.get(url)
        response.raise_for_status()
        metadata = ServerMetadata.from_payload(response.json())
    except httpx.HTTPStatusError as error:
        raise AuthorizationError(
            f"Metadata discovery failed with status {error.response.status_code}.",
            error="discovery_failed",
        ) from error
    except (httpx.HTTPError, ValueError) as error:
        raise AuthorizationError(
            f"Metadata discovery failed: {error}", error="discovery_failed"
        ) from error

    if _normalize_issuer(metadata.issuer) != _normalize_issuer(issuer):
        raise AuthorizationError(
            f"Discovered issuer {metadata.issuer!r} does not match {issuer!r}.",
            error="invalid_issuer",
        )
    return metadata


class AuthorizationFlow:
    """Builds PKCE authorization requests and performs token endpoint exchanges.

    The flow is a public client: no client secret is ever sent.
    """

    def __init__(
        self,
        *,
        client_id: str,
        redirect_uri: str,
        metadata: ServerMetadata,
        client: httpx.AsyncClient,
    ) -> None:
        self.client_id = client_id
        self.redirect_uri = redirect_uri
        self.metadata = metadata
        self._client = client

    def begin_authorization(
        self,
        scopes: list[str] | tuple[str, ...],
        redirect_uri: str | None = None,
    ) -> tuple[str, PendingAuthorization]:
        code_verifier = generate_code_verifier()
        pending = PendingAuthorization(
            code_verifier=code_verifier,
            state=generate_state(),
            created_at=time.time(),
            redirect_uri=redirect_uri or self.redirect_uri,
        )
        url = build_authorization_url(
            self.metadata.authorization_endpoint,
            client_id=self.client_id,
            redirect_uri=pending.redirect_uri,
            scopes=scopes,
            state=pending.state,
            code_challenge=generate_code_challenge(code_verifier),
        )
        return url, pending

    async def exchange_code(
        self,
        callback_url: str,
        pending: PendingAuthorization,
    ) -> Credentials:
        try:
            params = parse_callback_params(callback_url)
        except ValueError as error:
            raise AuthorizationError(str(error), error="invalid_request") from error

        if params.get("error"):
            raise AuthorizationError(
                f"Authorization server returned an error: {params['error']}",
                error=params["error"],
                description=params.get("error_description"),
            )

        state = params.get("state")
        if not state or not hmac.compare_digest(state.encode(), pending.state.encode()):
            raise AuthorizationError("Authorization state does not match.", error="invalid_state")

        issuer = params.get("iss")
        if issuer and _normalize_issuer(issuer) != _normalize_issuer(self.metadata.issuer):
            raise AuthorizationError(
                "Authorization response issuer does not match.", error="invalid_issuer"
            )

        code = params.get("code")
        if not code:
            raise AuthorizationError("Authorization response is missing code.", error="invalid_request")

        return await self._token_request(
            {
                "grant_type": "authorization_code",
                "client_id": self.client_id,
                "code": code,
                "redirect_uri": pending.redirect_uri or self.redirect_uri,
                "code_verifier": pending.code_verifier,
            }
        )

    async def exchange_refresh_token(self, refresh_token: str) -> Credentials:
        return await self._token_request(
            {
                "grant_type": "refresh_token",
                "client_id": self.client_id,
                "refresh_token": refresh_token,
            },
            previous_refresh_token=refresh_token,
        )

    async def _token_request(
        self,
        payload: dict[str, str],
        *,
        previous_refresh_token: str | None = None,
    ) -> Credentials:
        grant_type = payload["grant_type"]
        try:
            response = await self._client.post(
                self.metadata.token_endpoint,
                data=payload,
                headers={"Accept": "application/json"},
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as error:
            error_code, description = _token_error_details(error.response)
            AUTH_LOGGER.warning(
                "Token request failed grant_type=%s status=%s error=%s",
                grant_type,
                error.response.status_code,
                error_code,
            )
            raise AuthorizationError(
                f"Token request failed with status {error.response.status_code}: "
                f"{description or error.response.text}",
                error=error_code,
                description=description,
            ) from error
        except httpx.HTTPError as error:
            raise AuthorizationError(f"Token request failed: {error}") from error

        try:
            return Credentials.from_token_response(
                response.json(),
                previous_refresh_token=previous_refresh_token,
            )
        except ValueError as error:
            raise AuthorizationError(f"Invalid token response: {error}") from error


def _token_error_details(response: httpx.Response) -> tuple[str | None, str | None]:
    try:
        payload = response.json()
    except ValueError:
        return None, None
    if not isinstance(payload, dict):
        return None, None
    return payload.get("error"), payload.get("error_description")
