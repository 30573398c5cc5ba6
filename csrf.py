import time
from typing import Optional

from itsdangerous import BadSignature, URLSafeTimedSerializer

from config import get_settings

CSRF_HEADER = "X-CSRF-Token"


def _serializer() -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(get_settings().csrf_secret, salt="ledger-csrf")


def issue_token(member_id: Optional[int] = None) -> str:
    """Sign a token the client echoes back in the ``X-CSRF-Token`` header."""
    return _serializer().dumps({"m": member_id, "ts": int(time.time())})


def verify_token(
    token: Optional[str], member_id: Optional[int] = None, max_age_hours: int = 8
) -> bool:
    if not token:
        return False
    try:
        data = _serializer().loads(token, max_age=max_age_hours * 3600)
    except BadSignature:
        return False
    return data.get("m") == member_id
