# backend/tutorcart/api/dependencies/identity.py
"""
Caller identity resolution.

The upstream Identity Provider authenticates and forwards the result as
headers; this service never authenticates on its own. An authenticated user
id wins over an anonymous session id.
"""

from typing import Optional

from fastapi import Header

from ...core.exceptions import UnauthorizedException
from ...core.identity import Owner

_MAX_ID_LENGTH = 64


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    if not value or len(value) > _MAX_ID_LENGTH:
        return None
    return value


def get_owner(
    x_user_id: Optional[str] = Header(default=None),
    x_session_id: Optional[str] = Header(default=None),
) -> Owner:
    """Resolve the cart owner for this request."""
    user_id = _clean(x_user_id)
    if user_id:
        return Owner.user(user_id)
    session_id = _clean(x_session_id)
    if session_id:
        return Owner.session(session_id)
    raise UnauthorizedException(
        "A user or session identity is required",
        code="IDENTITY_REQUIRED",
    )


def get_merge_owners(
    x_user_id: Optional[str] = Header(default=None),
    x_session_id: Optional[str] = Header(default=None),
) -> tuple[Owner, Owner]:
    """Both identities, for re-homing a guest cart at login: (session, user)."""
    user_id = _clean(x_user_id)
    session_id = _clean(x_session_id)
    if not user_id or not session_id:
        raise UnauthorizedException(
            "Merging a cart needs both the user and the session identity",
            code="IDENTITY_REQUIRED",
        )
    return Owner.session(session_id), Owner.user(user_id)
