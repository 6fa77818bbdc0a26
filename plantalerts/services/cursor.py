"""Opaque pagination cursors bound to a notification id and a scope."""
import base64
import binascii
import json

from plantalerts.core.exceptions import InvalidCursorError


def encode_cursor(scope: str, notification_id: int) -> str:
    raw = json.dumps({"s": scope, "id": notification_id}, separators=(",", ":")).encode()
    return base64.urlsafe_b64encode(raw).decode().rstrip("=")


def decode_cursor(cursor: str, scope: str) -> int:
    """Returns the id the cursor points at; paging continues strictly below it."""
    padded = cursor + "=" * (-len(cursor) % 4)
    try:
        data = json.loads(base64.urlsafe_b64decode(padded.encode()))
    except (binascii.Error, ValueError) as exc:
        raise InvalidCursorError("Malformed cursor") from exc

    if not isinstance(data, dict) or not isinstance(data.get("id"), int):
        raise InvalidCursorError("Malformed cursor")
    if data.get("s") != scope:
        raise InvalidCursorError(f"Cursor was issued for scope {data.get('s')!r}, not {scope!r}")
    return data["id"]
