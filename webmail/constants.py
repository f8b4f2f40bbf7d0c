from __future__ import annotations

import logging

LOGGER = logging.getLogger("webmail.session")
JMAP_LOGGER = logging.getLogger("webmail.jmap")
AUTH_LOGGER = logging.getLogger("webmail.auth")

APP_VERSION = "0.1.0"
AUTH_MODE = "oauth2-pkce"

CORE_CAPABILITY = "urn:ietf:params:jmap:core"
MAIL_CAPABILITY = "urn:ietf:params:jmap:mail"
SUBMISSION_CAPABILITY = "urn:ietf:params:jmap:submission"
CONTACTS_CAPABILITY = "urn:ietf:params:jmap:contacts"
CALENDARS_CAPABILITY = "urn:ietf:params:jmap:calendars"

DEFAULT_USING = (CORE_CAPABILITY, MAIL_CAPABILITY)

JMAP_ERROR_PREFIX = "urn:ietf:params:jmap:error:"
