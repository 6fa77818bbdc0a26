from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from plantalerts.core.config import settings

ACCESS_TOKEN_EXPIRE_DAYS = 30


def create_access_token(operator_id: str) -> str:
    expire = datetime.now(timezone.utc) + timedelta(days=ACCESS_TOKEN_EXPIRE_DAYS)
    payload = {"sub": operator_id, "exp": expire, "type": "access"}
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_token(token: str) -> dict | None:
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        return payload
    except JWTError:
        return None


def operator_from_token(token: str | None) -> str | None:
    """Returns the operator id carried by an access token, or None if the token is unusable."""
    if not token:
        return None
    payload = decode_token(token)
    if payload is None or payload.get("type") != "access":
        return None
    return payload.get("sub")
