from __future__ import annotations

import time
from dataclasses import asdict, dataclass


@dataclass
class Credentials:
    access_token: str
    refresh_token: str | None = None
    expires_at: float | None = None

    def is_expired(self, now: float | None = None) -> bool:
        # No expiry means we cannot prove the token is still valid.
        if self.expires_at is None:
            return True
        current = time.time() if now is None else now
        return current >= self.expires_at

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, payload: dict) -> "Credentials":
        return cls(
            access_token=payload["access_token"],
            refresh_token=payload.get("refresh_token"),
            expires_at=payload.get("expires_at"),
        )

    @classmethod
    def from_token_response(
        cls,
        payload: dict,
        *,
        previous_refresh_token: str | None = None,
        now: float | None = None,
    ) -> "Credentials":
        if not isinstance(payload, dict):
            raise ValueError("Token response must be a JSON object.")
        access_token = payload.get("access_token")
        refresh_token = payload.get("refresh_token")
        expires_in = payload.get("expires_in")

        if not isinstance(access_token, str) or not access_token:
            raise ValueError("Token response missing access_token.")
        if refresh_token is not None and not isinstance(refresh_token, str):
            raise ValueError("Token response refresh_token must be a string.")
        if expires_in is not None and (
            isinstance(expires_in, bool) or not isinstance(expires_in, (int, float))
        ):
            raise ValueError("Token response expires_in must be a number.")

        current = time.time() if now is None else now
        return cls(
            access_token=access_token,
            refresh_token=refresh_token or previous_refresh_token,
            expires_at=None if expires_in is None else current + expires_in,
        )


@dataclass
class PendingAuthorization:
    code_verifier: str
    state: str
    created_at: float
    redirect_uri: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, payload: dict) -> "PendingAuthorization":
        return cls(**payload)


@dataclass(frozen=True)
class ServerMetadata:
    issuer: str
    authorization_endpoint: str
    token_endpoint: str

    @classmethod
    def from_payload(cls, payload: dict) -> "ServerMetadata":
        if not isinstance(payload, dict):
            raise ValueError("Server metadata must be a JSON object.")
        issuer = payload.get("issuer")
        authorization_endpoint = payload.get("authorization_endpoint")
        token_endpoint = payload.get("token_endpoint")

        if not isinstance(issuer, str) or not issuer:
            raise ValueError("Server metadata missing issuer.")
        if not isinstance(authorization_endpoint, str) or not authorization_endpoint:
            raise ValueError("Server metadata missing authorization_endpoint.")
        if not isinstance(token_endpoint, str) or not token_endpoint:
            raise ValueError("Server metadata missing token_endpoint.")

        return cls(
            issuer=issuer,
            authorization_endpoint=authorization_endpoint,
            token_endpoint=token_endpoint,
        )
