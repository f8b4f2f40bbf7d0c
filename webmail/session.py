from __future__ import annotations

from typing import Any, Awaitable, Callable, Iterable, TypeVar

import httpx

from auth.credential_store import CredentialStore, FileCredentialStore, MemoryCredentialStore
from auth.models import Credentials
from auth.session_manager import SessionManager, SessionState

from .constants import LOGGER, MAIL_CAPABILITY
from .env import SessionConfig
from .http import build_http_client
from .invoker import AuthenticatedInvoker
from .protocol import Invocation, ProtocolClient, RequestBuilder
from .types import JmapSession, MethodResponse

T = TypeVar("T")


def build_store(config: SessionConfig) -> CredentialStore:
    if config.token_store_path:
        return FileCredentialStore(config.token_store_path)
    return MemoryCredentialStore()


class Session:
    """One authenticated identity: credentials, JMAP client and invoker.

    Usage::

        async with Session(config) as session:
            url = await session.login()
            ...
            await session.complete_login(callback_url)
            mailboxes = await session.call("Mailbox/get", {"accountId": account_id})

    Feature code runs its calls through ``invoke`` so that an expired token is
    refreshed at most once per operation.
    """

    def __init__(
        self,
        config: SessionConfig,
        *,
        store: CredentialStore | None = None,
        http_client: httpx.AsyncClient | None = None,
        debug: bool = False,
    ) -> None:
        self.config = config
        self._owns_client = http_client is None
        self._http_client = http_client or build_http_client(
            timeout=config.http_timeout,
            debug=debug,
        )
        self.auth = SessionManager(
            issuer=config.authority,
            client_id=config.client_id,
            redirect_uri=config.redirect_uri,
            scopes=config.scopes,
            client=self._http_client,
            store=store or build_store(config),
            namespace=config.namespace,
        )
        self.client = ProtocolClient(
            session_url=config.jmap_session_endpoint,
            api_url=config.jmap_endpoint,
            session_manager=self.auth,
            client=self._http_client,
        )
        self.invoker = AuthenticatedInvoker(
            self.auth,
            self.client,
            proactive_refresh=config.proactive_refresh,
        )
        self._closed = False

    async def __aenter__(self) -> "Session":
        await self.open()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    @property
    def state(self) -> SessionState:
        return self.auth.state

    async def open(self) -> "Session":
        state = await self.auth.restore()
        LOGGER.info("Session opened namespace=%s state=%s", self.config.namespace, state.value)
        return self

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.client.reset()
        if self._owns_client:
            await self._http_client.aclose()

    async def login(self) -> str:
        return await self.auth.login()

    async def complete_login(self, callback_url: str) -> Credentials:
        credentials = await self.auth.complete_login(callback_url)
        self.client.reset()
        return credentials

    async def refresh(self) -> Credentials:
        return await self.auth.refresh()

    def is_authenticated(self) -> bool:
        return self.auth.is_authenticated()

    async def logout(self) -> None:
        await self.auth.logout()
        self.client.reset()

    async def invoke(self, fn: Callable[[], Awaitable[T]]) -> T:
        return await self.invoker.invoke(fn)

    async def jmap_session(self) -> JmapSession:
        return await self.invoke(self.client.get_session)

    async def account_id(self, capability: str = MAIL_CAPABILITY) -> str:
        return await self.invoke(lambda: self.client.account_id(capability))

    async def call(
        self,
        name: str,
        arguments: dict[str, Any] | None = None,
        *,
        using: Iterable[str] | None = None,
    ) -> MethodResponse:
        return await self.invoke(lambda: self.client.call(name, arguments, using=using))

    async def call_batch(
        self,
        build: Callable[[RequestBuilder], dict[str, Invocation]],
        *,
        using: Iterable[str] | None = None,
    ) -> dict[str, MethodResponse]:
        return await self.invoke(lambda: self.client.call_batch(build, using=using))
