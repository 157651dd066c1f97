import time

from itsdangerous import BadSignature, URLSafeTimedSerializer

from config import get_settings

CSRF_HEADER = "X-CSRF-Token"


def _serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(settings.csrf_secret, salt="budget-csrf")


def generate_csrf_token() -> str:
    return _serializer().dumps({"ts": int(time.time())})


def validate_csrf_token(token: str, max_age_hours: int = 12) -> bool:
    if not token:
        return False
    try:
        data = _serializer().loads(token, max_age=max_age_hours * 3600)
    except BadSignature:
        return False
    return isinstance(data, dict) and "ts" in data
