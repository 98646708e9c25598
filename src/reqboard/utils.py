from __future__ import annotations

import re
import secrets
from collections.abc import Iterable
from datetime import datetime

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"
_SEQUENTIAL_ID_RE = re.compile(r"^#(\d+)$")


def format_timestamp(moment: datetime | None = None) -> str:
    """Second-precision local timestamp, e.g. ``2024-01-20 14:25:00``."""
    return (moment if moment is not None else datetime.now()).strftime(TIMESTAMP_FORMAT)


def generate_secure_id() -> str:
    """Opaque id of a base-36 millisecond clock plus a random suffix."""
    millis = int(datetime.now().timestamp() * 1000)
    return f"{_to_base36(millis)}-{secrets.token_hex(4)}"


def next_sequential_id(existing: Iterable[str]) -> str:
    """Next ``#<n>`` id above every numeric ``#<n>`` id in *existing*.

    Using the maximum rather than the count keeps ids unique after deletes.
    """
    highest = 0
    for value in existing:
        match = _SEQUENTIAL_ID_RE.match(value)
        if match:
            highest = max(highest, int(match.group(1)))
    return f"#{highest + 1}"


def _to_base36(value: int) -> str:
    digits = "0123456789abcdefghijklmnopqrstuvwxyz"
    if value == 0:
        return "0"
    out: list[str] = []
    while value:
        value, rem = divmod(value, 36)
        out.append(digits[rem])
    return "".join(reversed(out))
