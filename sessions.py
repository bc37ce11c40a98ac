from typing import Optional, Protocol

from fastapi import Request
from itsdangerous import BadSignature, URLSafeTimedSerializer

from config import get_settings


class PrincipalResolver(Protocol):
    def resolve(self, request: Request) -> Optional[str]:
        """Return the authenticated email for ``request`` or ``None``."""


def _serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(settings.session_secret, salt="ledger-session")


def issue_session_token(email: str) -> str:
    return _serializer().dumps({"e": email.strip().lower()})


def read_session_token(token: str, max_age_secs: Optional[int] = None) -> Optional[str]:
    if not token:
        return None
    if max_age_secs is None:
        max_age_secs = get_settings().session_max_age_secs
    try:
        data = _serializer().loads(token, max_age=max_age_secs)
    except BadSignature:
        return None
    if not isinstance(data, dict):
        return None
    email = data.get("e")
    if not isinstance(email, str) or not email:
        return None
    return email


class SessionCookieResolver:
    """Reads the principal from the signed session cookie."""

    def __init__(self, cookie_name: Optional[str] = None) -> None:
        self.cookie_name = cookie_name or get_settings().session_cookie_name

    def resolve(self, request: Request) -> Optional[str]:
        return read_session_token(request.cookies.get(self.cookie_name, ""))
