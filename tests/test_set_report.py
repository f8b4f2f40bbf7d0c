import pytest

from webmail.errors import TransportError
from webmail.types import GetResponse, MethodResponse, SetResponse, build_set_report


def _set_response(arguments: dict, request_arguments: dict) -> MethodResponse:
    return MethodResponse(
        name="ContactCard/set",
        arguments={"accountId": "acc-1", **arguments},
        client_id="c0",
        request_arguments=request_arguments,
    )


def test_partial_create_reports_every_key() -> None:
    response = _set_response(
        {
            "oldState": "1",
            "newState": "2",
            "created": {"k1": {"id": "card-1"}},
            "notCreated": {
                "k2": {"type": "invalidProperties", "properties": ["emails"]},
            },
        },
        {"create": {"k1": {"name": {"full": "Ada"}}, "k2": {"emails": "nope"}}},
    )

    report = response.set_report()

    assert list(report.created) == ["k1", "k2"]
    assert report.created["k1"].ok
    assert report.created["k1"].value == {"id": "card-1"}
    assert report.created["k2"].error.type == "invalidProperties"
    assert report.created["k2"].error.properties == ["emails"]
    assert report.partial_failure
    assert not report.all_succeeded
    assert report.new_state == "2"


def test_unreported_key_becomes_server_fail() -> None:
    response = _set_response(
        {"updated": {"card-1": None}},
        {"update": {"card-1": {"name": {"full": "Ada"}}, "card-2": {}}},
    )

    report = response.set_report()

    assert report.updated["card-1"].ok
    assert report.updated["card-2"].error.type == "serverFail"
    assert [item.key for item in report.failed] == ["card-2"]


def test_key_reported_as_both_counts_as_failure() -> None:
    result = SetResponse.model_validate(
        {
            "accountId": "acc-1",
            "destroyed": ["card-1"],
            "notDestroyed": {"card-1": {"type": "notFound"}},
        }
    )

    report = build_set_report("ContactCard/set", {"destroy": ["card-1"]}, result)

    assert report.destroyed["card-1"].error.type == "notFound"
    assert report.succeeded == []


def test_unrequested_keys_are_kept() -> None:
    response = _set_response({"destroyed": ["card-9"]}, {})

    report = response.set_report()

    assert report.destroyed["card-9"].ok
    assert report.all_succeeded
    assert not report.partial_failure


def test_result_dispatches_on_method_name() -> None:
    response = MethodResponse(
        name="Mailbox/get",
        arguments={"accountId": "acc-1", "list": [{"id": "m1"}], "notFound": ["m2"]},
        client_id="c0",
    )

    result = response.result

    assert isinstance(result, GetResponse)
    assert result.items == [{"id": "m1"}]
    assert result.not_found == ["m2"]


def test_unknown_method_result_is_raw() -> None:
    response = MethodResponse(name="Core/echo", arguments={"hello": True}, client_id="c0")

    assert response.result == {"hello": True}


def test_malformed_result_is_transport_error() -> None:
    response = MethodResponse(name="Email/get", arguments={"list": []}, client_id="c3")

    with pytest.raises(TransportError, match="c3"):
        response.as_get()
