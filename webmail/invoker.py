from __future__ import annotations

from typing import TYPE_CHECKING, Awaitable, Callable, TypeVar

from auth.session_manager import RefreshOutcome, SessionManager

from .constants import LOGGER
from .errors import SessionExpired, is_authorization_failure

if TYPE_CHECKING:
    from .protocol import ProtocolClient

T = TypeVar("T")


class AuthenticatedInvoker:
    """Runs remote operations with one-shot refresh-and-replay on auth failure.

    For one ``invoke`` call there is at most one refresh attempt and at most
    one replay of ``fn``, no matter how many HTTP requests ``fn`` issues.
    """

    def __init__(
        self,
        session_manager: SessionManager,
        protocol_client: "ProtocolClient",
        *,
        proactive_refresh: bool = False,
    ) -> None:
        self._session_manager = session_manager
        self._protocol_client = protocol_client
        self._proactive_refresh = proactive_refresh

    async def invoke(self, fn: Callable[[], Awaitable[T]]) -> T:
        manager = self._session_manager
        if manager.credentials is None:
            raise SessionExpired()

        generation = manager.generation
        refreshed = False
        if self._proactive_refresh and manager.is_expired() and manager.refresh_token:
            outcome = await manager.refresh_after(generation)
            if outcome is not RefreshOutcome.REFRESHED:
                await self._expire(outcome)
            refreshed = True
            generation = manager.generation

        try:
            return await fn()
        except Exception as error:
            if refreshed or not is_authorization_failure(error):
                raise
            LOGGER.info("Authorization failure, refreshing once: %s", error)
            outcome = await manager.refresh_after(generation)
            if outcome is not RefreshOutcome.REFRESHED:
                await self._expire(outcome, cause=error)

        return await fn()

    async def _expire(self, outcome: RefreshOutcome, cause: BaseException | None = None) -> None:
        LOGGER.warning("Session expired after refresh outcome=%s", outcome.value)
        await self._session_manager.logout()
        self._protocol_client.reset()
        raise SessionExpired() from cause
