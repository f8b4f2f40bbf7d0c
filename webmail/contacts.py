from __future__ import annotations

from typing import TYPE_CHECKING, Any

from .constants import CONTACTS_CAPABILITY, CORE_CAPABILITY
from .types import SetReport

if TYPE_CHECKING:
    from .session import Session

CONTACTS_USING = (CORE_CAPABILITY, CONTACTS_CAPABILITY)


async def list_address_books(session: "Session") -> list[dict[str, Any]]:
    async def run() -> list[dict[str, Any]]:
        account_id = await session.client.account_id(CONTACTS_CAPABILITY)
        response = await session.client.call(
            "AddressBook/get", {"accountId": account_id, "ids": None}, using=CONTACTS_USING
        )
        return response.as_get().items

    return await session.invoke(run)


async def list_contacts(
    session: "Session",
    address_book_id: str | None = None,
) -> list[dict[str, Any]]:
    async def run() -> list[dict[str, Any]]:
        account_id = await session.client.account_id(CONTACTS_CAPABILITY)
        query_filter = {"inAddressBook": address_book_id} if address_book_id else {}

        def build(request):
            query = request.ContactCard.query({"accountId": account_id, "filter": query_filter})
            get = request.ContactCard.get({"accountId": account_id, "ids": query.ref("/ids")})
            return {"query": query, "get": get}

        responses = await session.client.call_batch(build, using=CONTACTS_USING)
        return responses["get"].as_get().items

    return await session.invoke(run)


async def _set_contacts(session: "Session", arguments: dict[str, Any]) -> SetReport:
    async def run() -> SetReport:
        account_id = await session.client.account_id(CONTACTS_CAPABILITY)
        response = await session.client.call(
            "ContactCard/set", {"accountId": account_id, **arguments}, using=CONTACTS_USING
        )
        return response.set_report()

    return await session.invoke(run)


async def create_contacts(session: "Session", cards: dict[str, dict[str, Any]]) -> SetReport:
    """Create contact cards keyed by caller-chosen creation ids.

    Every creation id appears in ``report.created`` either as the created
    card or with the ``SetError`` the server returned for it.
    """
    return await _set_contacts(session, {"create": cards})


async def update_contact(session: "Session", contact_id: str, patch: dict[str, Any]) -> SetReport:
    return await _set_contacts(session, {"update": {contact_id: patch}})


async def delete_contacts(session: "Session", contact_ids: list[str]) -> SetReport:
    return await _set_contacts(session, {"destroy": list(contact_ids)})


async def _set_address_books(session: "Session", arguments: dict[str, Any]) -> SetReport:
    async def run() -> SetReport:
        account_id = await session.client.account_id(CONTACTS_CAPABILITY)
        response = await session.client.call(
            "AddressBook/set", {"accountId": account_id, **arguments}, using=CONTACTS_USING
        )
        return response.set_report()

    return await session.invoke(run)


async def create_address_book(session: "Session", name: str) -> SetReport:
    """Create an address book reported under creation id ``addressBook``."""
    return await _set_address_books(session, {"create": {"addressBook": {"name": name}}})


async def update_address_book(
    session: "Session", address_book_id: str, patch: dict[str, Any]
) -> SetReport:
    return await _set_address_books(session, {"update": {address_book_id: patch}})


async def delete_address_book(
    session: "Session",
    address_book_id: str,
    *,
    remove_contents: bool = False,
) -> SetReport:
    return await _set_address_books(
        session,
        {"destroy": [address_book_id], "onDestroyRemoveContents": remove_contents},
    )
