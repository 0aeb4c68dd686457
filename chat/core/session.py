from __future__ import annotations

import base64
import re
import secrets
from typing import NamedTuple, Optional


SESSION_PREFIX = "sess-"
SESSION_ID_BYTES = 16

# unpadded urlsafe base64 of 16 bytes; "=" would make cookie values quoted
_TOKEN_PATTERN = re.compile(r"^sess-[A-Za-z0-9_-]{22}\Z")


class SessionIdentity(NamedTuple):
    session_id: str
    is_new: bool


def new_session_id() -> str:
    raw = secrets.token_bytes(SESSION_ID_BYTES)
    return SESSION_PREFIX + base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def is_well_formed(token: Optional[str]) -> bool:
    return bool(token) and _TOKEN_PATTERN.match(token) is not None


class SessionResolver:
    """Maps the incoming session cookie to a session id.

    A missing or malformed token yields a fresh id with ``is_new`` set, which
    tells the HTTP layer to attach a new cookie to the response.
    """

    def resolve(self, token: Optional[str]) -> SessionIdentity:
        if is_well_formed(token):
            return SessionIdentity(token, False)
        return SessionIdentity(new_session_id(), True)
