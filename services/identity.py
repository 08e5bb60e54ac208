"""
Identity: resolves who is signed in
Providers are injected into services; nothing here is process-global
"""
from typing import Optional

from flask import has_request_context, session

PREVIEW_UID = "preview-uid"


class SessionProvider:
    """What the services need from "who's signed in"."""

    def current_user_id(self) -> Optional[str]:
        raise NotImplementedError


class AuthSession(SessionProvider):
    """Production provider: the uid the auth blueprint stored in the Flask session"""

    def current_user_id(self) -> Optional[str]:
        if not has_request_context():
            return None
        return session.get('uid') or None


class FixedSession(SessionProvider):
    """Fixture provider for previews and tests"""

    def __init__(self, uid: Optional[str] = PREVIEW_UID):
        self.uid = uid

    def current_user_id(self) -> Optional[str]:
        return self.uid

    def __repr__(self):
        return f'<FixedSession {self.uid!r}>'


def session_provider_from_config(test_uid: Optional[str] = None) -> SessionProvider:
    """Pick the provider once at startup: a configured test uid bypasses sign-in."""
    if test_uid:
        return FixedSession(test_uid)
    return AuthSession()
