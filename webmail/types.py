from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterator, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .constants import JMAP_LOGGER
from .errors import TransportError


class JmapModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")


class SetError(JmapModel):
    type: str
    description: str | None = None
    properties: list[str] | None = None


class GetResponse(JmapModel):
    account_id: str = Field(alias="accountId")
    state: str | None = None
    items: list[dict[str, Any]] = Field(default_factory=list, alias="list")
    not_found: list[str] = Field(default_factory=list, alias="notFound")


class QueryResponse(JmapModel):
    account_id: str = Field(alias="accountId")
    query_state: str | None = Field(default=None, alias="queryState")
    can_calculate_changes: bool = Field(default=False, alias="canCalculateChanges")
    position: int = 0
    ids: list[str] = Field(default_factory=list)
    total: int | None = None
    limit: int | None = None


class ChangesResponse(JmapModel):
    account_id: str = Field(alias="accountId")
    old_state: str = Field(alias="oldState")
    new_state: str = Field(alias="newState")
    has_more_changes: bool = Field(default=False, alias="hasMoreChanges")
    created: list[str] = Field(default_factory=list)
    updated: list[str] = Field(default_factory=list)
    destroyed: list[str] = Field(default_factory=list)


class SetResponse(JmapModel):
    account_id: str = Field(alias="accountId")
    old_state: str | None = Field(default=None, alias="oldState")
    new_state: str | None = Field(default=None, alias="newState")
    created: dict[str, dict[str, Any]] | None = None
    updated: dict[str, dict[str, Any] | None] | None = None
    destroyed: list[str] | None = None
    not_created: dict[str, SetError] | None = Field(default=None, alias="notCreated")
    not_updated: dict[str, SetError] | None = Field(default=None, alias="notUpdated")
    not_destroyed: dict[str, SetError] | None = Field(default=None, alias="notDestroyed")


class JmapSession(JmapModel):
    api_url: str | None = Field(default=None, alias="apiUrl")
    download_url: str | None = Field(default=None, alias="downloadUrl")
    upload_url: str | None = Field(default=None, alias="uploadUrl")
    event_source_url: str | None = Field(default=None, alias="eventSourceUrl")
    username: str | None = None
    state: str | None = None
    capabilities: dict[str, Any] = Field(default_factory=dict)
    accounts: dict[str, dict[str, Any]] = Field(default_factory=dict)
    primary_accounts: dict[str, str] = Field(default_factory=dict, alias="primaryAccounts")


class Request(JmapModel):
    using: list[str]
    method_calls: list[tuple[str, dict[str, Any], str]] = Field(alias="methodCalls")
    created_ids: dict[str, str] | None = Field(default=None, alias="createdIds")


class Response(JmapModel):
    method_responses: list[tuple[str, dict[str, Any], str]] = Field(alias="methodResponses")
    session_state: str | None = Field(default=None, alias="sessionState")
    created_ids: dict[str, str] | None = Field(default=None, alias="createdIds")


MethodResult = Union[GetResponse, QueryResponse, ChangesResponse, SetResponse, dict]

_RESULT_TYPES: dict[str, type[JmapModel]] = {
    "get": GetResponse,
    "query": QueryResponse,
    "changes": ChangesResponse,
    "set": SetResponse,
}


@dataclass
class SetItem:
    """Outcome of one create key, update id or destroy id of a ``*/set`` call."""

    key: str
    value: dict[str, Any] | None = None
    error: SetError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class SetReport:
    created: dict[str, SetItem] = field(default_factory=dict)
    updated: dict[str, SetItem] = field(default_factory=dict)
    destroyed: dict[str, SetItem] = field(default_factory=dict)
    old_state: str | None = None
    new_state: str | None = None

    def items(self) -> Iterator[SetItem]:
        yield from self.created.values()
        yield from self.updated.values()
        yield from self.destroyed.values()

    @property
    def succeeded(self) -> list[SetItem]:
        return [item for item in self.items() if item.ok]

    @property
    def failed(self) -> list[SetItem]:
        return [item for item in self.items() if not item.ok]

    @property
    def partial_failure(self) -> bool:
        return bool(self.succeeded) and bool(self.failed)

    @property
    def all_succeeded(self) -> bool:
        return not self.failed


def _attempted_keys(value: Any) -> list[str]:
    if isinstance(value, dict):
        return [str(key) for key in value]
    if isinstance(value, (list, tuple)):
        return [str(key) for key in value]
    return []


def _resolve_items(
    method: str,
    attempted: list[str],
    successes: dict[str, Any],
    failures: dict[str, SetError],
) -> dict[str, SetItem]:
    keys = list(attempted)
    for key in (*successes.keys(), *failures.keys()):
        if key not in keys:
            keys.append(key)

    items: dict[str, SetItem] = {}
    for key in keys:
        if key in failures:
            if key in successes:
                JMAP_LOGGER.warning("%s reported %s as both success and failure", method, key)
            items[key] = SetItem(key=key, error=failures[key])
        elif key in successes:
            items[key] = SetItem(key=key, value=successes[key])
        else:
            items[key] = SetItem(
                key=key,
                error=SetError(
                    type="serverFail",
                    description=f"{method} reported no outcome for {key}.",
                ),
            )
    return items


def build_set_report(method: str, arguments: dict[str, Any], result: SetResponse) -> SetReport:
    destroyed = {item_id: None for item_id in result.destroyed or []}
    return SetReport(
        created=_resolve_items(
            method,
            _attempted_keys(arguments.get("create")),
            result.created or {},
            result.not_created or {},
        ),
        updated=_resolve_items(
            method,
            _attempted_keys(arguments.get("update")),
            result.updated or {},
            result.not_updated or {},
        ),
        destroyed=_resolve_items(
            method,
            _attempted_keys(arguments.get("destroy")),
            destroyed,
            result.not_destroyed or {},
        ),
        old_state=result.old_state,
        new_state=result.new_state,
    )


@dataclass
class MethodResponse:
    name: str
    arguments: dict[str, Any]
    client_id: str
    request_arguments: dict[str, Any] = field(default_factory=dict)
    implicit: list["MethodResponse"] = field(default_factory=list)

    @property
    def method_suffix(self) -> str:
        return self.name.rpartition("/")[2]

    @property
    def result(self) -> MethodResult:
        model = _RESULT_TYPES.get(self.method_suffix)
        if model is None:
            return self.arguments
        return self._decode(model)

    def as_get(self) -> GetResponse:
        return self._decode(GetResponse)

    def as_query(self) -> QueryResponse:
        return self._decode(QueryResponse)

    def as_changes(self) -> ChangesResponse:
        return self._decode(ChangesResponse)

    def as_set(self) -> SetResponse:
        return self._decode(SetResponse)

    def set_report(self) -> SetReport:
        return build_set_report(self.name, self.request_arguments, self.as_set())

    def _decode(self, model: type[JmapModel]) -> Any:
        try:
            return model.model_validate(self.arguments)
        except ValidationError as error:
            raise TransportError(
                f"Malformed {self.name} response ({self.client_id}): {error}"
            ) from error
