from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from .constants import CALENDARS_CAPABILITY, CORE_CAPABILITY
from .types import SetReport

if TYPE_CHECKING:
    from .session import Session

CALENDARS_USING = (CORE_CAPABILITY, CALENDARS_CAPABILITY)


def format_utc(value: datetime) -> str:
    """Render ``value`` in UTC without an offset, the form event filters take."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S")


async def list_calendars(session: "Session") -> list[dict[str, Any]]:
    async def run() -> list[dict[str, Any]]:
        account_id = await session.client.account_id(CALENDARS_CAPABILITY)
        response = await session.client.call(
            "Calendar/get", {"accountId": account_id, "ids": None}, using=CALENDARS_USING
        )
        return response.as_get().items

    return await session.invoke(run)


async def _set(session: "Session", method: str, arguments: dict[str, Any]) -> SetReport:
    async def run() -> SetReport:
        account_id = await session.client.account_id(CALENDARS_CAPABILITY)
        response = await session.client.call(
            method, {"accountId": account_id, **arguments}, using=CALENDARS_USING
        )
        return response.set_report()

    return await session.invoke(run)


async def create_calendars(session: "Session", calendars: dict[str, dict[str, Any]]) -> SetReport:
    return await _set(session, "Calendar/set", {"create": calendars})


async def update_calendar(session: "Session", calendar_id: str, patch: dict[str, Any]) -> SetReport:
    return await _set(session, "Calendar/set", {"update": {calendar_id: patch}})


async def delete_calendar(session: "Session", calendar_id: str) -> SetReport:
    """Destroy a calendar together with its events in one request.

    The events are found with ``CalendarEvent/query`` and destroyed through a
    back-reference before the calendar itself; the returned report covers the
    calendar only.
    """

    async def run() -> SetReport:
        account_id = await session.client.account_id(CALENDARS_CAPABILITY)

        def build(request):
            query = request.CalendarEvent.query(
                {"accountId": account_id, "filter": {"inCalendar": calendar_id}}
            )
            events = request.CalendarEvent.set(
                {
                    "accountId": account_id,
                    "destroy": query.ref("/ids"),
                    "sendSchedulingMessages": True,
                }
            )
            calendar = request.Calendar.set({"accountId": account_id, "destroy": [calendar_id]})
            return {"query": query, "events": events, "calendar": calendar}

        responses = await session.client.call_batch(build, using=CALENDARS_USING)
        return responses["calendar"].set_report()

    return await session.invoke(run)


async def list_events(
    session: "Session",
    calendar_id: str | None = None,
    *,
    after: datetime | None = None,
    before: datetime | None = None,
) -> list[dict[str, Any]]:
    """Events, optionally limited to one calendar and a time window, in one request."""

    async def run() -> list[dict[str, Any]]:
        account_id = await session.client.account_id(CALENDARS_CAPABILITY)
        query_filter: dict[str, Any] = {}
        if calendar_id:
            query_filter["inCalendar"] = calendar_id
        if after is not None:
            query_filter["after"] = format_utc(after)
        if before is not None:
            query_filter["before"] = format_utc(before)

        def build(request):
            query = request.CalendarEvent.query(
                {"accountId": account_id, "timeZone": "UTC", "filter": query_filter}
            )
            get = request.CalendarEvent.get({"accountId": account_id, "ids": query.ref("/ids")})
            return {"query": query, "get": get}

        responses = await session.client.call_batch(build, using=CALENDARS_USING)
        return responses["get"].as_get().items

    return await session.invoke(run)


async def get_event(session: "Session", event_id: str) -> dict[str, Any] | None:
    async def run() -> dict[str, Any] | None:
        account_id = await session.client.account_id(CALENDARS_CAPABILITY)
        response = await session.client.call(
            "CalendarEvent/get", {"accountId": account_id, "ids": [event_id]}, using=CALENDARS_USING
        )
        items = response.as_get().items
        return items[0] if items else None

    return await session.invoke(run)


async def create_events(session: "Session", events: dict[str, dict[str, Any]]) -> SetReport:
    """Create events keyed by creation id; participants are notified by the server."""
    return await _set(
        session, "CalendarEvent/set", {"create": events, "sendSchedulingMessages": True}
    )


async def update_event(session: "Session", event_id: str, patch: dict[str, Any]) -> SetReport:
    return await _set(
        session,
        "CalendarEvent/set",
        {"update": {event_id: patch}, "sendSchedulingMessages": True},
    )


async def delete_events(session: "Session", event_ids: list[str]) -> SetReport:
    return await _set(
        session,
        "CalendarEvent/set",
        {"destroy": list(event_ids), "sendSchedulingMessages": True},
    )
