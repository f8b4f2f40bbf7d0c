import pytest

from webmail import contacts
from webmail.constants import CONTACTS_CAPABILITY, CORE_CAPABILITY
from tests.helpers import ACCOUNT_ID, FakeServers, authenticated_session, mock_client


@pytest.mark.asyncio
async def test_create_contacts_reports_each_creation_id() -> None:
    servers = FakeServers()
    servers.api = lambda payload: [
        [
            "ContactCard/set",
            {
                "accountId": ACCOUNT_ID,
                "created": {"k1": {"id": "card-1"}},
                "notCreated": {"k2": {"type": "invalidProperties", "properties": ["name"]}},
            },
            "c0",
        ]
    ]

    async with mock_client(servers) as client:
        session = await authenticated_session(client)
        report = await contacts.create_contacts(
            session,
            {
                "k1": {"name": {"full": "Ada Lovelace"}},
                "k2": {"name": 42},
                "k3": {"name": {"full": "Grace Hopper"}},
            },
        )

    assert report.created["k1"].value == {"id": "card-1"}
    assert report.created["k2"].error.properties == ["name"]
    assert report.created["k3"].error.type == "serverFail"
    assert report.partial_failure
    assert servers.api_requests[0]["using"] == [CORE_CAPABILITY, CONTACTS_CAPABILITY]


@pytest.mark.asyncio
async def test_list_contacts_uses_back_reference() -> None:
    servers = FakeServers()

    def api(payload: dict) -> list:
        (query_name, _, query_id), (get_name, get_args, get_id) = payload["methodCalls"]
        assert get_args["#ids"]["resultOf"] == query_id
        return [
            [query_name, {"accountId": ACCOUNT_ID, "ids": ["card-1"]}, query_id],
            [get_name, {"accountId": ACCOUNT_ID, "list": [{"id": "card-1"}]}, get_id],
        ]

    servers.api = api

    async with mock_client(servers) as client:
        session = await authenticated_session(client)
        cards = await contacts.list_contacts(session, "book-1")

    assert cards == [{"id": "card-1"}]
    assert servers.api_requests[0]["methodCalls"][0][1]["filter"] == {"inAddressBook": "book-1"}


@pytest.mark.asyncio
async def test_update_and_delete_contacts() -> None:
    servers = FakeServers()

    async with mock_client(servers) as client:
        session = await authenticated_session(client)
        updated = await contacts.update_contact(session, "card-1", {"name/full": "Ada"})
        deleted = await contacts.delete_contacts(session, ["card-2"])

    # The default fake server acknowledges nothing.
    assert updated.updated["card-1"].error.type == "serverFail"
    assert deleted.destroyed["card-2"].error.type == "serverFail"
    assert servers.api_requests[0]["methodCalls"][0][1]["update"] == {
        "card-1": {"name/full": "Ada"}
    }
    assert servers.api_requests[1]["methodCalls"][0][1]["destroy"] == ["card-2"]


@pytest.mark.asyncio
async def test_list_address_books() -> None:
    servers = FakeServers()
    servers.api = lambda payload: [
        ["AddressBook/get", {"accountId": ACCOUNT_ID, "list": [{"id": "book-1"}]}, "c0"]
    ]

    async with mock_client(servers) as client:
        session = await authenticated_session(client)
        books = await contacts.list_address_books(session)

    assert books == [{"id": "book-1"}]


@pytest.mark.asyncio
async def test_address_book_create_update_delete() -> None:
    servers = FakeServers()

    def api(payload: dict) -> list:
        name, arguments, client_id = payload["methodCalls"][0]
        result = {"accountId": ACCOUNT_ID}
        if "create" in arguments:
            result["created"] = {"addressBook": {"id": "book-2"}}
        if "update" in arguments:
            result["updated"] = {"book-2": None}
        if "destroy" in arguments:
            result["destroyed"] = ["book-2"]
        return [[name, result, client_id]]

    servers.api = api

    async with mock_client(servers) as client:
        session = await authenticated_session(client)
        created = await contacts.create_address_book(session, "Work")
        updated = await contacts.update_address_book(session, "book-2", {"name": "Office"})
        deleted = await contacts.delete_address_book(session, "book-2", remove_contents=True)

    assert created.created["addressBook"].value == {"id": "book-2"}
    assert updated.updated["book-2"].ok
    assert deleted.destroyed["book-2"].ok
    calls = [request["methodCalls"][0] for request in servers.api_requests]
    assert [call[0] for call in calls] == ["AddressBook/set"] * 3
    assert calls[0][1]["create"] == {"addressBook": {"name": "Work"}}
    assert calls[1][1]["update"] == {"book-2": {"name": "Office"}}
    assert calls[2][1]["onDestroyRemoveContents"] is True
