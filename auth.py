import logging
from typing import Optional

from itsdangerous import BadSignature, URLSafeTimedSerializer
from passlib.hash import pbkdf2_sha256 as hasher

from config import get_settings

SESSION_COOKIE = "finance_session"

logger = logging.getLogger(__name__)


def _serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(settings.session_secret, salt="session-token")


def hash_password(raw: str) -> str:
    return hasher.hash(raw)


def verify_password(raw: str, password_hash: str) -> bool:
    try:
        return hasher.verify(raw, password_hash)
    except ValueError:
        # malformed hash in the database
        logger.warning("password_verify: malformed hash")
        return False


def generate_session_token(user_id: int) -> str:
    return _serializer().dumps({"u": user_id})


def read_session_token(token: Optional[str]) -> Optional[int]:
    """Return the user id carried by a session token, or None if it is unusable."""
    if not token:
        return None
    settings = get_settings()
    try:
        data = _serializer().loads(
            token, max_age=settings.session_max_age_hours * 3600
        )
    except BadSignature:
        return None
    user_id = data.get("u") if isinstance(data, dict) else None
    if not isinstance(user_id, int):
        return None
    return user_id


def session_max_age_seconds() -> int:
    return get_settings().session_max_age_hours * 3600
