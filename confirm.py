import secrets

from itsdangerous import BadSignature, URLSafeTimedSerializer

from config import get_settings

RESET_ACTION = "reset"


def _serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(settings.confirm_secret, salt="confirm-token")


def generate_confirm_token(action: str = RESET_ACTION) -> str:
    return _serializer().dumps({"a": action, "n": secrets.token_hex(8)})


def validate_confirm_token(
    token: str, action: str = RESET_ACTION, max_age_secs: int = 300
) -> bool:
    try:
        data = _serializer().loads(token, max_age=max_age_secs)
    except BadSignature:
        return False

    if not isinstance(data, dict) or data.get("a") != action:
        return False

    return True
