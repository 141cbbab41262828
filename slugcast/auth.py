"""
Slug normalization and access-gate helpers.

Security note: secrets travel as query parameters or as a cookie whose
value *is* the secret. They are visible in browser history and proxy
logs. Rotating the configured secret is the only way to revoke access.
"""
from __future__ import annotations

import re
import secrets
from typing import Optional

from slugcast.config import Settings
from slugcast.errors import AuthError

SESSION_COOKIE = "slugcast_session"
PLAYBACK_KINDS = ("play", "stream")

_WHITESPACE = re.compile(r"\s+")
_DISALLOWED = re.compile(r"[^a-z0-9_.\-]+")
_HYPHENS = re.compile(r"-{2,}")


def slugify(text: Optional[str]) -> str:
    """
    Turn human text into a URL path segment made of [a-z0-9_.-].

    Non-ASCII letters are dropped rather than transliterated, so a name
    written entirely in another script normalizes to "".
    """
    slug = str(text or "").lower()
    slug = _WHITESPACE.sub("-", slug)
    slug = _DISALLOWED.sub("", slug)
    slug = _HYPHENS.sub("-", slug)
    return slug.strip("-")


def _matches(candidate: Optional[str], secret: str) -> bool:
    if not candidate or not secret:
        return False
    return secrets.compare_digest(candidate.encode(), secret.encode())


class AuthGate:
    """Evaluates the admin, download and session policies. Holds no state."""

    def __init__(self, settings: Settings):
        self._admin = settings.admin_token
        self._download = settings.download_token
        self._session = settings.stream_token

    def require_admin(self, token: Optional[str]) -> None:
        if not _matches(token, self._admin):
            raise AuthError("Forbidden", status_code=403)

    def require_download(self, token: Optional[str]) -> None:
        if not _matches(token, self._download):
            raise AuthError("Access Denied: Invalid or missing token.", status_code=403)

    def check_session_token(self, token: Optional[str]) -> None:
        """Validate the one-shot token presented on the auth path."""
        if not _matches(token, self._session):
            raise AuthError("Unauthorized", status_code=401)

    def has_session(self, cookie: Optional[str]) -> bool:
        return _matches(cookie, self._session)

    @property
    def session_value(self) -> str:
        return self._session
