import logging
import uuid
from typing import Optional

import bcrypt
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from config import get_settings


logger = logging.getLogger(__name__)


def _serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(settings.secret_key, salt="auth-token")


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def check_password(password: str, password_hash: str) -> bool:
    return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))


def create_token(user_id: uuid.UUID) -> str:
    return _serializer().dumps({"u": str(user_id)})


def verify_token(token: str) -> Optional[uuid.UUID]:
    """Return the user id a bearer token was issued for, or None if invalid."""
    max_age = get_settings().token_max_age_hours * 3600
    try:
        data = _serializer().loads(token, max_age=max_age)
    except SignatureExpired:
        logger.info("auth_token_expired")
        return None
    except BadSignature:
        return None

    try:
        return uuid.UUID(str(data.get("u")))
    except (AttributeError, ValueError):
        return None
