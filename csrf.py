import time

from itsdangerous import BadSignature, URLSafeSerializer

from config import get_settings

ANONYMOUS_USER_ID = 0


def _serializer() -> URLSafeSerializer:
    settings = get_settings()
    return URLSafeSerializer(settings.csrf_secret, salt="csrf-token")


def generate_csrf_token(
    user_id: int = ANONYMOUS_USER_ID, max_age_hours: int = 2
) -> str:
    serializer = _serializer()
    timestamp = int(time.time())
    expiry = timestamp + (max_age_hours * 3600)

    token_data = {"u": user_id, "ts": timestamp, "exp": expiry}

    return serializer.dumps(token_data)


def validate_csrf_token(token: str, user_id: int = ANONYMOUS_USER_ID) -> bool:
    """Tokens are bound to the session user; login and register use user 0."""
    if not token:
        return False
    try:
        data = _load_token(token)
    except BadSignature:
        return False

    if data.get("u") != user_id:
        return False

    return int(time.time()) <= int(data.get("exp", 0))


def _load_token(token: str) -> dict:
    data = _serializer().loads(token)
    if not isinstance(data, dict):
        raise BadSignature("Malformed CSRF token")
    return data
