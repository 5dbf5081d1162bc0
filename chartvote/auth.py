"""
SMX Chart Votes - Sessions & Identity

Every visitor carries a signed session cookie.  The session holds a random
session id and, once the visitor logs in, their user id.  Which of the two
identifies a voter depends on IDENTITY_MODE:

- ``session``: the anonymous session id (no account needed to vote)
- ``user``:    the logged-in user id (voting requires login)

Usage:
    - Install `session_middleware` on the app; it parses the cookie, issues
      a fresh session when there is none, and writes the cookie back when a
      route changed the session.
    - Call `get_voter_id(request)` to get the id votes are recorded under.
    - Call `login_session` / `logout_session` from the auth routes.
"""

import base64
import binascii
import hashlib
import hmac
import json
import time
import uuid
from typing import Any

import bcrypt
from fastapi import Request, Response

from chartvote.config import (
    BCRYPT_ROUNDS,
    IDENTITY_MODE,
    SECRET_KEY,
    SESSION_COOKIE_NAME,
    SESSION_MAX_AGE,
)

# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def _sign(payload: str) -> str:
    """Create an HMAC-SHA256 signature for a payload string."""
    return hmac.new(
        SECRET_KEY.encode("utf-8"),
        payload.encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()


def _b64encode(data: str) -> str:
    return base64.urlsafe_b64encode(data.encode("utf-8")).decode("ascii").rstrip("=")


def _b64decode(data: str) -> str:
    padded = data + "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8")


def new_session(user_id: str | None = None) -> dict[str, Any]:
    """Create a fresh session dict with a random session id."""
    return {
        "sid": uuid.uuid4().hex,
        "uid": user_id,
        "ts": int(time.time()),
    }


def _create_session_cookie(session: dict[str, Any]) -> str:
    """Create a signed session cookie value (``<base64 json>.<hex sig>``)."""
    data = _b64encode(json.dumps(session, separators=(",", ":"), sort_keys=True))
    return f"{data}.{_sign(data)}"


def _parse_session_cookie(cookie_value: str) -> dict[str, Any] | None:
    """Parse and verify a session cookie.  Returns the session dict or None."""
    if not cookie_value or "." not in cookie_value:
        return None

    data_part, sig_part = cookie_value.rsplit(".", 1)
    if not hmac.compare_digest(sig_part, _sign(data_part)):
        return None

    try:
        session = json.loads(_b64decode(data_part))
    except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError):
        return None

    if not isinstance(session, dict) or not session.get("sid"):
        return None

    # Check expiry
    created = session.get("ts", 0)
    if not isinstance(created, int) or time.time() - created > SESSION_MAX_AGE:
        return None

    return session


def set_session_cookie(response: Response, session: dict[str, Any]) -> None:
    """Set the signed session cookie on a response."""
    response.set_cookie(
        key=SESSION_COOKIE_NAME,
        value=_create_session_cookie(session),
        max_age=SESSION_MAX_AGE,
        httponly=True,
        samesite="lax",
        path="/",
    )


# ---------------------------------------------------------------------------
# Request helpers
# ---------------------------------------------------------------------------


def get_session(request: Request) -> dict[str, Any] | None:
    """
    Return the current session.

    Prefers the session attached by `session_middleware` (which may be
    freshly issued and not yet in a cookie), then falls back to the cookie.
    """
    session = getattr(request.state, "session", None)
    if isinstance(session, dict):
        return session
    return _parse_session_cookie(request.cookies.get(SESSION_COOKIE_NAME, ""))


def get_current_user_id(request: Request) -> str | None:
    """Return the logged-in user id, or None for anonymous visitors."""
    session = get_session(request)
    if session:
        return session.get("uid")
    return None


def get_voter_id(request: Request) -> str | None:
    """Return the id this request's votes are recorded under, if any."""
    session = get_session(request)
    if not session:
        return None
    if IDENTITY_MODE == "user":
        return session.get("uid")
    return session.get("sid")


def login_session(request: Request, user_id: str) -> dict[str, Any]:
    """Attach *user_id* to the current session; the cookie is rewritten."""
    session = dict(get_session(request) or new_session())
    session["uid"] = user_id
    session["ts"] = int(time.time())
    request.state.session = session
    request.state.session_dirty = True
    return session


def logout_session(request: Request) -> dict[str, Any]:
    """Replace the current session with a new anonymous one."""
    session = new_session()
    request.state.session = session
    request.state.session_dirty = True
    return session


async def session_middleware(request: Request, call_next):
    """
    Attach a session to every request and persist it in the cookie.

    A cookie is written when the visitor had no valid session or when a
    route marked the session dirty (login / logout).
    """
    session = _parse_session_cookie(request.cookies.get(SESSION_COOKIE_NAME, ""))
    issued = session is None
    request.state.session = session if session is not None else new_session()
    request.state.session_dirty = False

    response = await call_next(request)

    if issued or request.state.session_dirty:
        set_session_cookie(response, request.state.session)
    return response


# ---------------------------------------------------------------------------
# Passwords
# ---------------------------------------------------------------------------


def hash_password(password: str, rounds: int | None = None) -> str:
    """Hash a password with bcrypt (salt and cost are stored in the hash)."""
    salt = bcrypt.gensalt(rounds or BCRYPT_ROUNDS)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("ascii")


def verify_password(password: str, stored: str) -> bool:
    """Check *password* against a hash produced by `hash_password`."""
    try:
        return bcrypt.checkpw(password.encode("utf-8"), stored.encode("ascii"))
    except ValueError:
        # Malformed stored hash, or a password bcrypt refuses (over 72 bytes)
        return False
