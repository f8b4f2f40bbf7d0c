from __future__ import annotations


class SessionError(RuntimeError):
    pass


class AuthorizationError(SessionError):
    """Terminal failure of the authorization code or refresh token exchange."""

    def __init__(
        self,
        message: str,
        *,
        error: str | None = None,
        description: str | None = None,
    ) -> None:
        super().__init__(message)
        self.error = error
        self.description = description


class TransportError(SessionError):
    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        body: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class ProtocolError(SessionError):
    """A well-formed JMAP error, either request-level or for a single method call."""

    def __init__(
        self,
        error_type: str,
        description: str | None = None,
        *,
        method: str | None = None,
        client_id: str | None = None,
        status_code: int | None = None,
    ) -> None:
        detail = f"JMAP error {error_type}"
        if method:
            detail += f" in {method} ({client_id})"
        if description:
            detail += f": {description}"
        super().__init__(detail)
        self.type = error_type
        self.description = description
        self.method = method
        self.client_id = client_id
        self.status_code = status_code


class SessionExpired(SessionError):
    def __init__(self, message: str = "Session expired. Please log in again.") -> None:
        super().__init__(message)
        self.status_code = 401


_AUTH_FAILURE_MARKERS = ("unauthorized", "expired", "401")


def is_authorization_failure(error: BaseException) -> bool:
    if not isinstance(error, TransportError):
        return False
    if error.status_code == 401:
        return True
    message = str(error).lower()
    return any(marker in message for marker in _AUTH_FAILURE_MARKERS)
