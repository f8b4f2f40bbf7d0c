import json
import time
import urllib.parse

import httpx

from auth.credential_store import MemoryCredentialStore
from auth.models import Credentials
from webmail.constants import (
    CALENDARS_CAPABILITY,
    CONTACTS_CAPABILITY,
    CORE_CAPABILITY,
    MAIL_CAPABILITY,
)
from webmail.env import SessionConfig
from webmail.session import Session

ISSUER = "https://id.example.com/realms/mail"
DISCOVERY_URL = f"{ISSUER}/.well-known/openid-configuration"
AUTHORIZATION_URL = f"{ISSUER}/protocol/openid-connect/auth"
TOKEN_URL = f"{ISSUER}/protocol/openid-connect/token"
SESSION_URL = "https://jmap.example.com/.well-known/jmap"
API_URL = "https://jmap.example.com/jmap/api"
REDIRECT_URI = "https://webmail.example.com/auth/callback"
ACCOUNT_ID = "acc-1"

METADATA = {
    "issuer": ISSUER,
    "authorization_endpoint": AUTHORIZATION_URL,
    "token_endpoint": TOKEN_URL,
}


def make_config(**overrides) -> SessionConfig:
    values = {
        "authority": ISSUER,
        "client_id": "webmail",
        "redirect_uri": REDIRECT_URI,
        "scopes": ("openid", "offline_access", CORE_CAPABILITY, MAIL_CAPABILITY),
        "jmap_endpoint": API_URL,
        "jmap_session_endpoint": SESSION_URL,
    }
    values.update(overrides)
    return SessionConfig(**values)


def jmap_session_payload() -> dict:
    return {
        "apiUrl": API_URL,
        "username": "alice@example.com",
        "state": "s1",
        "capabilities": {
            CORE_CAPABILITY: {},
            MAIL_CAPABILITY: {},
            CONTACTS_CAPABILITY: {},
            CALENDARS_CAPABILITY: {},
        },
        "accounts": {ACCOUNT_ID: {"name": "alice@example.com", "isPersonal": True}},
        "primaryAccounts": {
            MAIL_CAPABILITY: ACCOUNT_ID,
            CONTACTS_CAPABILITY: ACCOUNT_ID,
            CALENDARS_CAPABILITY: ACCOUNT_ID,
        },
    }


def default_result(name: str, arguments: dict) -> dict:
    suffix = name.rpartition("/")[2]
    if suffix == "get":
        return {"accountId": ACCOUNT_ID, "state": "1", "list": [], "notFound": []}
    if suffix == "query":
        return {"accountId": ACCOUNT_ID, "queryState": "1", "ids": [], "position": 0}
    if suffix == "set":
        return {"accountId": ACCOUNT_ID, "oldState": "1", "newState": "2"}
    return {"accountId": ACCOUNT_ID}


class FakeServers:
    """In-process identity provider and JMAP server for ``httpx.MockTransport``.

    ``api`` receives the decoded request body and returns the list of
    method responses; override it per test. Bearer tokens outside
    ``valid_tokens`` get a 401 from both JMAP endpoints.
    """

    def __init__(self) -> None:
        self.valid_tokens = {"access-1"}
        self.token_requests: list[dict[str, str]] = []
        self.api_requests: list[dict] = []
        self.api_tokens: list[str] = []
        self.session_requests = 0
        self.refresh_error: tuple[int, dict] | None = None
        self.issued = 1
        self.api = self.default_api

    @property
    def refresh_count(self) -> int:
        return sum(1 for form in self.token_requests if form["grant_type"] == "refresh_token")

    def default_api(self, payload: dict) -> list:
        return [
            [name, default_result(name, arguments), client_id]
            for name, arguments, client_id in payload["methodCalls"]
        ]

    def handle_token(self, form: dict[str, str]) -> httpx.Response:
        if form["grant_type"] == "refresh_token" and self.refresh_error is not None:
            status, body = self.refresh_error
            return httpx.Response(status, json=body)
        if form["grant_type"] == "authorization_code":
            access_token = "access-1"
        else:
            self.issued += 1
            access_token = f"access-{self.issued}"
        self.valid_tokens = {access_token}
        return httpx.Response(
            200,
            json={
                "access_token": access_token,
                "refresh_token": f"refresh-{self.issued}",
                "expires_in": 300,
                "token_type": "Bearer",
            },
        )

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url).split("?")[0]
        if url == DISCOVERY_URL:
            return httpx.Response(200, json=METADATA)
        if url == TOKEN_URL:
            form = dict(urllib.parse.parse_qsl(request.content.decode("utf-8")))
            self.token_requests.append(form)
            return self.handle_token(form)

        token = request.headers.get("Authorization", "").removeprefix("Bearer ")
        if url == SESSION_URL:
            self.session_requests += 1
            if token not in self.valid_tokens:
                return httpx.Response(401, text="invalid token")
            return httpx.Response(200, json=jmap_session_payload())
        if url == API_URL:
            payload = json.loads(request.content)
            self.api_requests.append(payload)
            self.api_tokens.append(token)
            if token not in self.valid_tokens:
                return httpx.Response(401, text="invalid token")
            return httpx.Response(
                200,
                json={"methodResponses": self.api(payload), "sessionState": "s1"},
            )
        return httpx.Response(404)


def mock_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


async def authenticated_session(
    client: httpx.AsyncClient,
    *,
    access_token: str = "access-1",
    refresh_token: str | None = "refresh-1",
    expires_in: float = 3600,
    **config_overrides,
) -> Session:
    store = MemoryCredentialStore()
    credentials = Credentials(
        access_token=access_token,
        refresh_token=refresh_token,
        expires_at=time.time() + expires_in,
    )
    await store.set("default:credentials", credentials.to_dict())
    session = Session(make_config(**config_overrides), store=store, http_client=client)
    return await session.open()
