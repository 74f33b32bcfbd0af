# imagevault/utils/base62.py
"""Base-62 text encoding of unsigned 64-bit integers"""

from imagevault.errors import InvalidDigit

DIGITS = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz"
BASE = len(DIGITS)
MAX_VALUE = 2**64 - 1

_INDEX = {d: i for i, d in enumerate(DIGITS)}


def encode(value: int) -> str:
    """Encode an unsigned 64-bit integer as the shortest base-62 string."""
    if value < 0 or value > MAX_VALUE:
        raise ValueError(f"base 62 encoding error: {value} is not an unsigned 64-bit integer")
    if value == 0:
        return DIGITS[0]
    out = []
    while value > 0:
        value, r = divmod(value, BASE)
        out.append(DIGITS[r])
    return "".join(reversed(out))


def decode(text: str) -> int:
    """Decode a base-62 string produced by encode()."""
    if not text:
        raise InvalidDigit("base 62 decoding error: no digits")
    result = 0
    for ch in text:
        d = _INDEX.get(ch)
        if d is None:
            raise InvalidDigit(f"base 62 decoding error: invalid digit `{ch}` in {text}")
        result = result * BASE + d
    if result > MAX_VALUE:
        raise InvalidDigit(f"base 62 decoding error: {text} overflows 64 bits")
    return result


def encode_fixed(value: int, width: int) -> str:
    """Encode with left zero-padding so that lexical order matches numeric order."""
    return encode(value).rjust(width, DIGITS[0])
