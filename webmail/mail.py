from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from .constants import CORE_CAPABILITY, LOGGER, MAIL_CAPABILITY, SUBMISSION_CAPABILITY
from .types import SetError, SetReport

if TYPE_CHECKING:
    from .session import Session

MAIL_USING = (CORE_CAPABILITY, MAIL_CAPABILITY)
SUBMISSION_USING = (CORE_CAPABILITY, MAIL_CAPABILITY, SUBMISSION_CAPABILITY)

LIST_PROPERTIES = [
    "id",
    "subject",
    "from",
    "to",
    "cc",
    "bcc",
    "receivedAt",
    "preview",
    "hasAttachment",
    "mailboxIds",
    "keywords",
]
DETAIL_PROPERTIES = [
    "id",
    "subject",
    "from",
    "to",
    "cc",
    "bcc",
    "receivedAt",
    "bodyValues",
    "textBody",
    "htmlBody",
    "attachments",
    "hasAttachment",
    "mailboxIds",
    "keywords",
]


class MailError(RuntimeError):
    def __init__(self, message: str, error: SetError | None = None) -> None:
        super().__init__(message)
        self.error = error


@dataclass
class EmailAddress:
    email: str
    name: str | None = None

    def to_jmap(self) -> dict[str, str]:
        payload = {"email": self.email}
        if self.name:
            payload["name"] = self.name
        return payload


@dataclass
class OutgoingEmail:
    to: list[EmailAddress]
    subject: str
    body_text: str | None = None
    body_html: str | None = None
    cc: list[EmailAddress] = field(default_factory=list)
    bcc: list[EmailAddress] = field(default_factory=list)

    def recipients(self) -> list[EmailAddress]:
        return [*self.to, *self.cc, *self.bcc]


def find_mailbox_by_role(mailboxes: list[dict[str, Any]], role: str) -> dict[str, Any] | None:
    return next((mailbox for mailbox in mailboxes if mailbox.get("role") == role), None)


def build_body(message: OutgoingEmail) -> tuple[dict[str, Any], dict[str, Any]]:
    """Return ``(bodyValues, bodyStructure)`` for a text and/or HTML message."""
    if not message.body_text and not message.body_html:
        raise ValueError("Email must have at least body_text or body_html.")

    if message.body_text and message.body_html:
        return (
            {"text": {"value": message.body_text}, "html": {"value": message.body_html}},
            {
                "type": "multipart/alternative",
                "subParts": [
                    {"partId": "text", "type": "text/plain"},
                    {"partId": "html", "type": "text/html"},
                ],
            },
        )
    if message.body_text:
        return {"text": {"value": message.body_text}}, {"partId": "text", "type": "text/plain"}
    return {"html": {"value": message.body_html}}, {"partId": "html", "type": "text/html"}


async def list_mailboxes(session: "Session") -> list[dict[str, Any]]:
    async def run() -> list[dict[str, Any]]:
        account_id = await session.client.account_id(MAIL_CAPABILITY)
        response = await session.client.call(
            "Mailbox/get", {"accountId": account_id, "ids": None}, using=MAIL_USING
        )
        return response.as_get().items

    return await session.invoke(run)


async def list_emails(
    session: "Session",
    mailbox_id: str | None = None,
    *,
    limit: int = 50,
) -> list[dict[str, Any]]:
    """Newest-first messages, queried and fetched in a single request."""

    async def run() -> list[dict[str, Any]]:
        account_id = await session.client.account_id(MAIL_CAPABILITY)
        query_filter = {"inMailbox": mailbox_id} if mailbox_id else {}

        def build(request):
            query = request.Email.query(
                {
                    "accountId": account_id,
                    "filter": query_filter,
                    "sort": [{"property": "receivedAt", "isAscending": False}],
                    "limit": limit,
                }
            )
            get = request.Email.get(
                {
                    "accountId": account_id,
                    "ids": query.ref("/ids"),
                    "properties": LIST_PROPERTIES,
                }
            )
            return {"query": query, "get": get}

        responses = await session.client.call_batch(build, using=MAIL_USING)
        return responses["get"].as_get().items

    return await session.invoke(run)


async def get_email(session: "Session", email_id: str) -> dict[str, Any] | None:
    async def run() -> dict[str, Any] | None:
        account_id = await session.client.account_id(MAIL_CAPABILITY)
        response = await session.client.call(
            "Email/get",
            {
                "accountId": account_id,
                "ids": [email_id],
                "properties": DETAIL_PROPERTIES,
                "fetchTextBodyValues": True,
                "fetchHTMLBodyValues": True,
            },
            using=MAIL_USING,
        )
        items = response.as_get().items
        return items[0] if items else None

    return await session.invoke(run)


def _draft_object(
    message: OutgoingEmail,
    identity: dict[str, Any],
    drafts_id: str,
) -> dict[str, Any]:
    body_values, body_structure = build_body(message)
    email_object: dict[str, Any] = {
        "mailboxIds": {drafts_id: True},
        "keywords": {"$draft": True},
        "from": [EmailAddress(identity["email"], identity.get("name")).to_jmap()],
        "to": [address.to_jmap() for address in message.to],
        "subject": message.subject,
        "bodyValues": body_values,
        "bodyStructure": body_structure,
    }
    if message.cc:
        email_object["cc"] = [address.to_jmap() for address in message.cc]
    if message.bcc:
        email_object["bcc"] = [address.to_jmap() for address in message.bcc]
    return email_object


async def _compose_lookups(
    session: "Session", account_id: str, *roles: str
) -> tuple[dict[str, Any], list[dict[str, Any]]]:
    """Fetch identities and mailboxes together; resolve the mailboxes with ``roles``."""
    lookups = await session.client.call_batch(
        lambda request: {
            "identities": request.Identity.get({"accountId": account_id, "ids": None}),
            "mailboxes": request.Mailbox.get({"accountId": account_id, "ids": None}),
        },
        using=SUBMISSION_USING,
    )
    identities = lookups["identities"].as_get().items
    if not identities:
        raise MailError("No identities available for this account.")

    mailboxes = lookups["mailboxes"].as_get().items
    found = []
    for role in roles:
        mailbox = find_mailbox_by_role(mailboxes, role)
        if mailbox is None:
            raise MailError(f"{role.capitalize()} mailbox not found.")
        found.append(mailbox)
    return identities[0], found


async def send_email(session: "Session", message: OutgoingEmail) -> dict[str, Any]:
    """Store the message as a draft and submit it; returns the created submission.

    On success the server files the message in the sent mailbox and clears
    its ``$draft`` keyword.
    """
    build_body(message)

    async def run() -> dict[str, Any]:
        client = session.client
        account_id = await client.account_id(MAIL_CAPABILITY)
        identity, (drafts, sent) = await _compose_lookups(session, account_id, "drafts", "sent")
        email_object = _draft_object(message, identity, drafts["id"])

        # "#draft" is a creation id reference resolved by the server within this request.
        responses = await client.call_batch(
            lambda request: {
                "email": request.Email.set(
                    {"accountId": account_id, "create": {"draft": email_object}}
                ),
                "submission": request.EmailSubmission.set(
                    {
                        "accountId": account_id,
                        "create": {
                            "send": {
                                "emailId": "#draft",
                                "identityId": identity["id"],
                                "envelope": {
                                    "mailFrom": {"email": identity["email"]},
                                    "rcptTo": [
                                        {"email": address.email}
                                        for address in message.recipients()
                                    ],
                                },
                            }
                        },
                        "onSuccessUpdateEmail": {
                            "#send": {
                                "mailboxIds": {sent["id"]: True},
                                "keywords/$draft": None,
                            }
                        },
                    }
                ),
            },
            using=SUBMISSION_USING,
        )

        draft = responses["email"].set_report().created["draft"]
        if not draft.ok:
            raise MailError(f"Failed to create email: {draft.error.type}", draft.error)
        submission = responses["submission"].set_report().created["send"]
        if not submission.ok:
            raise MailError(f"Failed to submit email: {submission.error.type}", submission.error)
        return submission.value

    return await session.invoke(run)


async def create_draft(session: "Session", message: OutgoingEmail) -> dict[str, Any]:
    """Save ``message`` in the drafts mailbox and return the created email."""
    return await _save_draft(session, message)


async def update_draft(session: "Session", email_id: str, message: OutgoingEmail) -> dict[str, Any]:
    """Replace draft ``email_id`` with ``message``.

    Emails are immutable, so the new version is created and the old one
    destroyed in the same ``Email/set``. A draft that cannot be destroyed is
    logged and left in place.
    """
    return await _save_draft(session, message, replaces=email_id)


async def _save_draft(
    session: "Session",
    message: OutgoingEmail,
    replaces: str | None = None,
) -> dict[str, Any]:
    build_body(message)

    async def run() -> dict[str, Any]:
        account_id = await session.client.account_id(MAIL_CAPABILITY)
        identity, (drafts,) = await _compose_lookups(session, account_id, "drafts")
        arguments: dict[str, Any] = {
            "accountId": account_id,
            "create": {"draft": _draft_object(message, identity, drafts["id"])},
        }
        if replaces is not None:
            arguments["destroy"] = [replaces]
        response = await session.client.call("Email/set", arguments, using=MAIL_USING)

        report = response.set_report()
        draft = report.created["draft"]
        if not draft.ok:
            raise MailError(f"Failed to save draft: {draft.error.type}", draft.error)
        if replaces is not None and not report.destroyed[replaces].ok:
            LOGGER.warning(
                "Saved new draft %s but could not remove %s: %s",
                draft.value.get("id"),
                replaces,
                report.destroyed[replaces].error.type,
            )
        return draft.value

    return await session.invoke(run)


async def set_keywords(
    session: "Session",
    email_ids: list[str],
    keywords: dict[str, bool],
) -> SetReport:
    async def run() -> SetReport:
        account_id = await session.client.account_id(MAIL_CAPABILITY)
        update = {
            email_id: {f"keywords/{keyword}": value or None for keyword, value in keywords.items()}
            for email_id in email_ids
        }
        response = await session.client.call(
            "Email/set", {"accountId": account_id, "update": update}, using=MAIL_USING
        )
        return response.set_report()

    return await session.invoke(run)


def _as_ids(email_ids: str | list[str]) -> list[str]:
    return [email_ids] if isinstance(email_ids, str) else list(email_ids)


async def mark_as_read(session: "Session", email_ids: str | list[str]) -> SetReport:
    return await set_keywords(session, _as_ids(email_ids), {"$seen": True})


async def mark_as_unread(session: "Session", email_ids: str | list[str]) -> SetReport:
    return await set_keywords(session, _as_ids(email_ids), {"$seen": False})


async def mark_as_flagged(session: "Session", email_ids: str | list[str]) -> SetReport:
    return await set_keywords(session, _as_ids(email_ids), {"$flagged": True})


async def mark_as_unflagged(session: "Session", email_ids: str | list[str]) -> SetReport:
    return await set_keywords(session, _as_ids(email_ids), {"$flagged": False})


async def mark_as_answered(session: "Session", email_ids: str | list[str]) -> SetReport:
    return await set_keywords(session, _as_ids(email_ids), {"$answered": True})


async def move_emails(
    session: "Session",
    email_ids: str | list[str],
    mailbox_id: str,
) -> SetReport:
    """Put each message in ``mailbox_id`` only, leaving every other mailbox."""
    ids = _as_ids(email_ids)

    async def run() -> SetReport:
        account_id = await session.client.account_id(MAIL_CAPABILITY)
        update = {email_id: {"mailboxIds": {mailbox_id: True}} for email_id in ids}
        response = await session.client.call(
            "Email/set", {"accountId": account_id, "update": update}, using=MAIL_USING
        )
        return response.set_report()

    return await session.invoke(run)


async def _set_mailboxes(session: "Session", arguments: dict[str, Any]) -> SetReport:
    async def run() -> SetReport:
        account_id = await session.client.account_id(MAIL_CAPABILITY)
        response = await session.client.call(
            "Mailbox/set", {"accountId": account_id, **arguments}, using=MAIL_USING
        )
        return response.set_report()

    return await session.invoke(run)


async def create_mailbox(session: "Session", name: str, parent_id: str | None = None) -> SetReport:
    """Create a mailbox; the result is reported under creation id ``mailbox``."""
    return await _set_mailboxes(
        session, {"create": {"mailbox": {"name": name, "parentId": parent_id}}}
    )


async def rename_mailbox(session: "Session", mailbox_id: str, name: str) -> SetReport:
    return await _set_mailboxes(session, {"update": {mailbox_id: {"name": name}}})


async def delete_mailbox(
    session: "Session",
    mailbox_id: str,
    *,
    remove_emails: bool = False,
) -> SetReport:
    return await _set_mailboxes(
        session,
        {"destroy": [mailbox_id], "onDestroyRemoveEmails": remove_emails},
    )


async def delete_email(session: "Session", email_id: str) -> SetReport:
    """Move a message to the trash, or destroy it if it is already there."""

    async def run() -> SetReport:
        client = session.client
        account_id = await client.account_id(MAIL_CAPABILITY)
        lookups = await client.call_batch(
            lambda request: {
                "email": request.Email.get(
                    {"accountId": account_id, "ids": [email_id], "properties": ["mailboxIds"]}
                ),
                "mailboxes": request.Mailbox.get({"accountId": account_id, "ids": None}),
            },
            using=MAIL_USING,
        )
        emails = lookups["email"].as_get().items
        if not emails:
            raise MailError(f"Email {email_id} not found.")
        trash = find_mailbox_by_role(lookups["mailboxes"].as_get().items, "trash")
        if trash is None:
            raise MailError("Trash mailbox not found.")

        if trash["id"] in (emails[0].get("mailboxIds") or {}):
            arguments = {"accountId": account_id, "destroy": [email_id]}
        else:
            arguments = {
                "accountId": account_id,
                "update": {email_id: {"mailboxIds": {trash["id"]: True}}},
            }
        response = await client.call("Email/set", arguments, using=MAIL_USING)
        return response.set_report()

    return await session.invoke(run)
