from __future__ import annotations

import asyncio
import time
from enum import Enum
from typing import Callable

import httpx

from auth.credential_store import CredentialStore, MemoryCredentialStore
from auth.models import Credentials, PendingAuthorization
from auth.oauth2 import AuthorizationFlow, discover_server_metadata
from webmail.constants import AUTH_LOGGER
from webmail.errors import AuthorizationError


class SessionState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    REFRESHING = "refreshing"
    LOGGED_OUT = "logged_out"


class RefreshOutcome(Enum):
    REFRESHED = "refreshed"
    FAILED = "failed"
    NOT_ATTEMPTED = "not_attempted"


class SessionManager:
    """Owns the credential lifecycle of one authenticated identity.

    Every credential write goes through ``_write_lock`` so that refresh,
    login completion and logout never interleave their store updates.
    Refreshes are additionally serialized by ``_refresh_lock``; the
    ``generation`` counter lets callers detect that somebody else already
    replaced the credentials they failed with. ``logout`` bumps ``_epoch``,
    which makes any exchange still in flight discard its result.
    """

    def __init__(
        self,
        *,
        issuer: str,
        client_id: str,
        redirect_uri: str,
        scopes: list[str] | tuple[str, ...],
        client: httpx.AsyncClient,
        store: CredentialStore | None = None,
        namespace: str = "default",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.issuer = issuer
        self.client_id = client_id
        self.redirect_uri = redirect_uri
        self.scopes = list(scopes)
        self._client = client
        self._store = store or MemoryCredentialStore()
        self._clock = clock
        self._credentials_key = f"{namespace}:credentials"
        self._pending_key = f"{namespace}:pending"

        self._flow: AuthorizationFlow | None = None
        self._credentials: Credentials | None = None
        self._state = SessionState.UNAUTHENTICATED
        self._generation = 0
        self._epoch = 0

        self._discovery_lock = asyncio.Lock()
        self._refresh_lock = asyncio.Lock()
        self._write_lock = asyncio.Lock()

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def credentials(self) -> Credentials | None:
        return self._credentials

    @property
    def access_token(self) -> str | None:
        return None if self._credentials is None else self._credentials.access_token

    @property
    def refresh_token(self) -> str | None:
        return None if self._credentials is None else self._credentials.refresh_token

    def is_expired(self) -> bool:
        if self._credentials is None:
            return True
        return self._credentials.is_expired(self._clock())

    def is_authenticated(self) -> bool:
        return self._credentials is not None and not self.is_expired()

    async def restore(self) -> SessionState:
        payload = await self._store.get(self._credentials_key)
        if payload is not None:
            self._credentials = Credentials.from_dict(payload)
            self._state = SessionState.AUTHENTICATED
        elif await self._store.get(self._pending_key) is not None:
            self._state = SessionState.AUTHENTICATING
        return self._state

    async def authorization_flow(self) -> AuthorizationFlow:
        if self._flow is None:
            async with self._discovery_lock:
                if self._flow is None:
                    metadata = await discover_server_metadata(self.issuer, client=self._client)
                    self._flow = AuthorizationFlow(
                        client_id=self.client_id,
                        redirect_uri=self.redirect_uri,
                        metadata=metadata,
                        client=self._client,
                    )
        return self._flow

    async def login(self) -> str:
        flow = await self.authorization_flow()
        url, pending = flow.begin_authorization(self.scopes)
        async with self._write_lock:
            # A newer login always supersedes an older one.
            await self._store.set(self._pending_key, pending.to_dict())
            self._state = SessionState.AUTHENTICATING
        AUTH_LOGGER.info("Authorization started client_id=%s", self.client_id)
        return url

    async def complete_login(self, callback_url: str) -> Credentials:
        async with self._write_lock:
            payload = await self._store.get(self._pending_key)
            await self._store.delete(self._pending_key)
            epoch = self._epoch

        if payload is None:
            self._settle_state()
            raise AuthorizationError(
                "No authorization is in progress.", error="no_pending_authorization"
            )

        try:
            flow = await self.authorization_flow()
            credentials = await flow.exchange_code(
                callback_url, PendingAuthorization.from_dict(payload)
            )
        except BaseException:
            if epoch == self._epoch:
                self._settle_state()
            raise

        if not await self._write_credentials(credentials, epoch):
            raise AuthorizationError("Login was superseded by logout.", error="logged_out")
        AUTH_LOGGER.info("Authorization completed client_id=%s", self.client_id)
        return credentials

    def _settle_state(self) -> None:
        # A failed login leaves existing credentials in place.
        if self._credentials is None:
            self._state = SessionState.UNAUTHENTICATED
        else:
            self._state = SessionState.AUTHENTICATED

    async def refresh(self) -> Credentials:
        async with self._refresh_lock:
            if self.refresh_token is None:
                raise AuthorizationError("No refresh token available.", error="no_refresh_token")
            return await self._refresh_locked()

    async def refresh_after(self, generation: int) -> RefreshOutcome:
        async with self._refresh_lock:
            if self._generation != generation:
                if self._credentials is None:
                    return RefreshOutcome.FAILED
                return RefreshOutcome.REFRESHED
            if self.refresh_token is None:
                return RefreshOutcome.NOT_ATTEMPTED
            try:
                await self._refresh_locked()
            except AuthorizationError:
                return RefreshOutcome.FAILED
            return RefreshOutcome.REFRESHED

    async def logout(self) -> None:
        async with self._write_lock:
            self._epoch += 1
            self._generation += 1
            self._credentials = None
            self._state = SessionState.LOGGED_OUT
            await self._store.delete(self._credentials_key)
            await self._store.delete(self._pending_key)
        AUTH_LOGGER.info("Logged out client_id=%s", self.client_id)

    async def _refresh_locked(self) -> Credentials:
        refresh_token = self.refresh_token
        epoch = self._epoch
        previous_state = self._state
        self._state = SessionState.REFRESHING
        AUTH_LOGGER.info("Refreshing access token generation=%s", self._generation)

        try:
            flow = await self.authorization_flow()
            credentials = await flow.exchange_refresh_token(refresh_token)
        except AuthorizationError as error:
            AUTH_LOGGER.warning("Token refresh failed: %s", error)
            await self._clear_credentials(epoch)
            raise
        except BaseException:
            if epoch == self._epoch and self._state is SessionState.REFRESHING:
                self._state = previous_state
            raise

        if not await self._write_credentials(credentials, epoch):
            raise AuthorizationError("Refresh was superseded by logout.", error="logged_out")
        return credentials

    async def _write_credentials(self, credentials: Credentials, epoch: int) -> bool:
        async with self._write_lock:
            if epoch != self._epoch:
                return False
            await self._store.set(self._credentials_key, credentials.to_dict())
            self._credentials = credentials
            self._generation += 1
            self._state = SessionState.AUTHENTICATED
            return True

    async def _clear_credentials(self, epoch: int) -> None:
        async with self._write_lock:
            if epoch != self._epoch:
                return
            await self._store.delete(self._credentials_key)
            self._credentials = None
            self._generation += 1
            self._state = SessionState.UNAUTHENTICATED
