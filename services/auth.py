"""Session-cookie authentication shared by HTTP routes and sockets.

The web tier issues express-style signed cookies::

    connect.sid = urlencode("s:" + sid + "." + base64(HMAC-SHA256(secret, sid)).rstrip("="))

We verify the signature and resolve ``sid`` to a user through the store.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
from typing import Mapping
from urllib.parse import unquote

from fastapi import Depends, HTTPException, Request

from config.settings import get_settings
from models.syllabind import User
from services.syllabind_store import SyllabindStore, get_syllabind_store

logger = logging.getLogger(__name__)

_SIGNED_PREFIX = "s:"


def sign_session_id(session_id: str, secret: str) -> str:
    """Return the cookie value (not URL-encoded) for ``session_id``."""
    digest = hmac.new(secret.encode(), session_id.encode(), hashlib.sha256).digest()
    signature = base64.b64encode(digest).decode().rstrip("=")
    return f"{_SIGNED_PREFIX}{session_id}.{signature}"


def unsign_cookie(raw: str, secret: str) -> str | None:
    """Return the session id if ``raw`` carries a valid signature, else None."""
    if not secret:
        return None
    decoded = unquote(raw)
    if not decoded.startswith(_SIGNED_PREFIX):
        return None
    value = decoded[len(_SIGNED_PREFIX):]
    session_id, sep, _ = value.rpartition(".")
    if not sep or not session_id:
        return None
    expected = sign_session_id(session_id, secret)
    if not hmac.compare_digest(expected.encode(), decoded.encode()):
        return None
    return session_id


async def authenticate_cookies(
    cookies: Mapping[str, str],
    store: SyllabindStore | None = None,
) -> User | None:
    """Resolve the request's session cookie to a user, or None."""
    settings = get_settings()
    raw = cookies.get(settings.session_cookie_name)
    if not raw:
        return None
    session_id = unsign_cookie(raw, settings.session_secret)
    if session_id is None:
        logger.info("[Auth] Rejected cookie with bad signature")
        return None
    store = store or get_syllabind_store()
    return await store.get_user_by_session(session_id)


async def require_user(
    request: Request,
    store: SyllabindStore = Depends(get_syllabind_store),
) -> User:
    """FastAPI dependency: the authenticated user or 401."""
    user = await authenticate_cookies(request.cookies, store)
    if user is None:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return user
