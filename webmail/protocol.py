from __future__ import annotations

import asyncio
import functools
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Iterable

import httpx
from pydantic import ValidationError

from .constants import DEFAULT_USING, JMAP_ERROR_PREFIX, JMAP_LOGGER, MAIL_CAPABILITY
from .errors import ProtocolError, TransportError
from .http import friendly_error_message
from .types import JmapSession, MethodResponse, Request, Response

if TYPE_CHECKING:
    from auth.session_manager import SessionManager


@dataclass(frozen=True)
class ResultReference:
    """Back-reference to a JSON Pointer path inside an earlier call's result."""

    result_of: str
    name: str
    path: str
    source: "Invocation" = field(compare=False, repr=False)

    def to_wire(self) -> dict[str, str]:
        return {"resultOf": self.result_of, "name": self.name, "path": self.path}


class Invocation:
    def __init__(
        self,
        builder: "RequestBuilder",
        index: int,
        name: str,
        arguments: dict[str, Any],
    ) -> None:
        self.builder = builder
        self.index = index
        self.name = name
        self.arguments = arguments
        self.client_id = f"c{index}"

    def ref(self, path: str) -> ResultReference:
        if not path.startswith("/"):
            raise ValueError(f"Result reference path must be a JSON Pointer, got {path!r}.")
        return ResultReference(
            result_of=self.client_id,
            name=self.name,
            path=path,
            source=self,
        )

    def __repr__(self) -> str:
        return f"Invocation({self.name!r}, client_id={self.client_id!r})"


class _EntityCalls:
    def __init__(self, builder: "RequestBuilder", entity: str) -> None:
        self._builder = builder
        self._entity = entity

    def __getattr__(self, method: str) -> Callable[..., Invocation]:
        if method.startswith("_"):
            raise AttributeError(method)
        return functools.partial(self._builder.call, f"{self._entity}/{method}")


class RequestBuilder:
    """Collects method calls for one JMAP request in declaration order.

    ``builder.call("Email/query", {...})`` and ``builder.Email.query({...})``
    are equivalent.
    """

    def __init__(self, using: Iterable[str] = DEFAULT_USING) -> None:
        self.using = list(dict.fromkeys(using))
        self.invocations: list[Invocation] = []

    def call(self, name: str, arguments: dict[str, Any] | None = None) -> Invocation:
        if "/" not in name:
            raise ValueError(f"JMAP method names look like 'Type/method', got {name!r}.")
        invocation = Invocation(self, len(self.invocations), name, dict(arguments or {}))
        self.invocations.append(invocation)
        return invocation

    def add_capability(self, capability: str) -> None:
        if capability not in self.using:
            self.using.append(capability)

    def __getattr__(self, entity: str) -> _EntityCalls:
        if entity.startswith("_") or not entity[:1].isupper():
            raise AttributeError(entity)
        return _EntityCalls(self, entity)

    def to_request(self) -> Request:
        if not self.invocations:
            raise ValueError("A JMAP request needs at least one method call.")
        return Request(
            using=self.using,
            method_calls=[
                (invocation.name, self._encode_arguments(invocation), invocation.client_id)
                for invocation in self.invocations
            ],
        )

    def _encode_arguments(self, invocation: Invocation) -> dict[str, Any]:
        encoded: dict[str, Any] = {}
        for key, value in invocation.arguments.items():
            if isinstance(value, ResultReference):
                self._check_reference(invocation, key, value)
                encoded[f"#{key}"] = value.to_wire()
            elif _contains_reference(value):
                raise ValueError(
                    f"{invocation.name} argument {key!r}: result references are only "
                    "allowed as top-level arguments."
                )
            else:
                encoded[key] = value
        return encoded

    def _check_reference(self, invocation: Invocation, key: str, reference: ResultReference) -> None:
        source = reference.source
        if source.builder is not self:
            raise ValueError(
                f"{invocation.name} argument {key!r} references a call from another request."
            )
        if source.index >= invocation.index:
            raise ValueError(
                f"{invocation.name} argument {key!r} references {source.name} "
                f"({source.client_id}), which is not declared before it."
            )


def _contains_reference(value: Any) -> bool:
    if isinstance(value, ResultReference):
        return True
    if isinstance(value, dict):
        return any(_contains_reference(item) for item in value.values())
    if isinstance(value, (list, tuple)):
        return any(_contains_reference(item) for item in value)
    return False


def _problem_type(response: httpx.Response) -> tuple[str | None, str | None]:
    try:
        payload = response.json()
    except ValueError:
        return None, None
    if not isinstance(payload, dict):
        return None, None
    problem_type = payload.get("type")
    if not isinstance(problem_type, str):
        return None, None
    return problem_type, payload.get("detail")


class ProtocolClient:
    """Issues JMAP requests with the current bearer token.

    The client never refreshes credentials and never retries; it only reads
    the access token from the session manager on every call.
    """

    def __init__(
        self,
        *,
        session_url: str,
        session_manager: "SessionManager",
        client: httpx.AsyncClient,
        api_url: str | None = None,
        using: Iterable[str] = DEFAULT_USING,
    ) -> None:
        self.session_url = session_url
        self.api_url = api_url
        self.using = tuple(using)
        self._session_manager = session_manager
        self._client = client
        self._session: JmapSession | None = None
        self._session_lock = asyncio.Lock()

    async def get_session(self) -> JmapSession:
        if self._session is None:
            async with self._session_lock:
                if self._session is None:
                    self._session = await self._fetch_session()
        return self._session

    async def account_id(self, capability: str = MAIL_CAPABILITY) -> str:
        session = await self.get_session()
        account_id = session.primary_accounts.get(capability)
        if account_id is None:
            raise ProtocolError(
                "unknownCapability",
                f"No primary account for capability {capability}.",
            )
        return account_id

    def reset(self) -> None:
        self._session = None

    async def call(
        self,
        name: str,
        arguments: dict[str, Any] | None = None,
        *,
        using: Iterable[str] | None = None,
    ) -> MethodResponse:
        responses = await self.call_batch(
            lambda builder: {"result": builder.call(name, arguments)},
            using=using,
        )
        return responses["result"]

    async def call_batch(
        self,
        build: Callable[[RequestBuilder], dict[str, Invocation]],
        *,
        using: Iterable[str] | None = None,
    ) -> dict[str, MethodResponse]:
        builder = RequestBuilder(self.using if using is None else using)
        named = build(builder)
        if not isinstance(named, dict):
            raise TypeError("Batch builder must return a mapping of names to invocations.")
        for name, invocation in named.items():
            if not isinstance(invocation, Invocation) or invocation.builder is not builder:
                raise ValueError(f"Batch entry {name!r} is not a call of this request.")

        request = builder.to_request()
        envelope = await self._post(request)
        by_client_id = self._correlate(builder, envelope)
        return {name: by_client_id[invocation.client_id] for name, invocation in named.items()}

    async def _fetch_session(self) -> JmapSession:
        response = await self._send("GET", self.session_url)
        try:
            session = JmapSession.model_validate(response.json())
        except ValueError as error:
            raise TransportError(
                f"JMAP session resource is malformed: {error}",
                status_code=response.status_code,
                body=response.text,
            ) from error
        JMAP_LOGGER.info(
            "JMAP session loaded api_url=%s accounts=%s",
            session.api_url,
            len(session.accounts),
        )
        return session

    async def _post(self, request: Request) -> Response:
        session = await self.get_session()
        api_url = session.api_url or self.api_url
        if not api_url:
            raise TransportError("JMAP session resource does not name an apiUrl.")

        payload = request.model_dump(by_alias=True, exclude_none=True)
        response = await self._send("POST", api_url, json=payload)
        try:
            return Response.model_validate(response.json())
        except ValidationError as error:
            raise TransportError(
                f"JMAP response is malformed: {error}",
                status_code=response.status_code,
                body=response.text,
            ) from error
        except ValueError as error:
            raise TransportError(
                "JMAP response is not valid JSON.",
                status_code=response.status_code,
                body=response.text,
            ) from error

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        token = self._session_manager.access_token
        if not token:
            raise TransportError("No access token available (401 Unauthorized).", status_code=401)

        headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/json",
        }
        try:
            response = await self._client.request(method, url, headers=headers, **kwargs)
        except httpx.HTTPError as error:
            raise TransportError(f"JMAP request to {url} failed: {error}") from error

        self._raise_for_status(response)
        return response

    def _raise_for_status(self, response: httpx.Response) -> None:
        if response.is_success:
            return

        if response.status_code != 401:
            problem_type, detail = _problem_type(response)
            if problem_type and problem_type.startswith(JMAP_ERROR_PREFIX):
                raise ProtocolError(
                    problem_type,
                    detail,
                    status_code=response.status_code,
                )

        raise TransportError(
            f"{friendly_error_message(response.status_code)} (status {response.status_code})",
            status_code=response.status_code,
            body=response.text,
        )

    def _correlate(self, builder: RequestBuilder, envelope: Response) -> dict[str, MethodResponse]:
        grouped: dict[str, list[tuple[str, dict[str, Any]]]] = {}
        for name, arguments, client_id in envelope.method_responses:
            grouped.setdefault(client_id, []).append((name, arguments))

        known = {invocation.client_id for invocation in builder.invocations}
        unknown = [client_id for client_id in grouped if client_id not in known]
        if unknown:
            JMAP_LOGGER.debug("Ignoring responses for unknown client ids %s", unknown)

        results: dict[str, MethodResponse] = {}
        for invocation in builder.invocations:
            entries = grouped.get(invocation.client_id)
            if not entries:
                raise TransportError(
                    f"JMAP response has no result for {invocation.name} ({invocation.client_id})."
                )

            names = [name for name, _ in entries]
            if "error" in names:
                primary_index = names.index("error")
            elif invocation.name in names:
                primary_index = names.index(invocation.name)
            else:
                primary_index = 0
            name, arguments = entries[primary_index]
            if name == "error":
                raise ProtocolError(
                    str(arguments.get("type", "serverFail")),
                    arguments.get("description"),
                    method=invocation.name,
                    client_id=invocation.client_id,
                )

            results[invocation.client_id] = MethodResponse(
                name=name,
                arguments=arguments,
                client_id=invocation.client_id,
                request_arguments=invocation.arguments,
                implicit=[
                    MethodResponse(
                        name=implicit_name,
                        arguments=implicit_arguments,
                        client_id=invocation.client_id,
                    )
                    for index, (implicit_name, implicit_arguments) in enumerate(entries)
                    if index != primary_index
                ],
            )
        return results
