# imagevault/utils/tuid.py
"""
Time-ordered unique identifiers (TUIDs).

A TUID is 16 base-62 characters: an 11 character, zero-padded nanosecond
timestamp followed by 5 random characters. Because the alphabet is in ASCII
order, sorting TUIDs as strings sorts them by creation time.
"""

import secrets
import threading
import time
from datetime import datetime, timezone

from imagevault.errors import InvalidDigit
from imagevault.utils.base62 import BASE, decode, encode_fixed

TIME_WIDTH = 11
RANDOM_WIDTH = 5
TUID_LENGTH = TIME_WIDTH + RANDOM_WIDTH


class TUIDGenerator:
    """Generates strictly increasing TUIDs within a process."""

    def __init__(self):
        self._lock = threading.Lock()
        self._last_ns = 0

    def new_id(self) -> str:
        with self._lock:
            ns = max(time.time_ns(), self._last_ns + 1)
            self._last_ns = ns
        return encode_fixed(ns, TIME_WIDTH) + encode_fixed(secrets.randbelow(BASE**RANDOM_WIDTH), RANDOM_WIDTH)


_generator = TUIDGenerator()


def new_id() -> str:
    return _generator.new_id()


def is_valid(tuid: str) -> bool:
    if not tuid or len(tuid) != TUID_LENGTH:
        return False
    try:
        decode(tuid[:TIME_WIDTH])
        decode(tuid[TIME_WIDTH:])
    except InvalidDigit:
        return False
    return True


def id_time(tuid: str) -> datetime:
    """Return the (UTC) creation time encoded in a TUID."""
    if not is_valid(tuid):
        raise ValueError(f"invalid TUID: {tuid!r}")
    ns = decode(tuid[:TIME_WIDTH])
    return datetime.fromtimestamp(ns / 1e9, tz=timezone.utc)
