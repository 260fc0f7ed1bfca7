import time
from typing import Optional

from itsdangerous import BadSignature, URLSafeTimedSerializer

from config import get_settings


def _serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(settings.csrf_secret, salt="budget-csrf-token")


def generate_csrf_token(
    user_id: int = 1, cluster: Optional[str] = None, max_age_hours: int = 2
) -> str:
    timestamp = int(time.time())
    token_data = {
        "u": user_id,
        "c": cluster or "",
        "exp": timestamp + (max_age_hours * 3600),
    }
    return _serializer().dumps(token_data)


def validate_csrf_token(
    token: str, user_id: int = 1, cluster: Optional[str] = None, max_age_hours: int = 2
) -> bool:
    if not token:
        return False
    try:
        data = _serializer().loads(token, max_age=max_age_hours * 3600)
    except BadSignature:
        return False

    if data.get("u") != user_id or data.get("c", "") != (cluster or ""):
        return False
    return int(time.time()) <= data.get("exp", 0)
