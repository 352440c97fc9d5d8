"""Short code generation utilities.

Codes are drawn uniformly from a 62 symbol alphabet (digits, uppercase,
lowercase) with nanoid. With the default length of 7 there are
62**7 (~3.5e12) possible codes, so blind collisions are rare but not
impossible; the allocator still verifies every candidate against the store.

Functions:
    generate_short_code():  One random code of the requested length.
    generate_batch():  A set of distinct codes for offline pre-generation.
    is_valid_short_code():  Format check for user supplied codes.
    sanitize_custom_code():  Strip user input down to a valid code, or None.
"""

import re

from nanoid import generate

__all__ = [
    "ALPHABET",
    "DEFAULT_CODE_LENGTH",
    "generate_short_code",
    "generate_batch",
    "is_valid_short_code",
    "sanitize_custom_code",
]

ALPHABET = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz"
DEFAULT_CODE_LENGTH = 7

_VALID_CODE = re.compile(r"^[0-9A-Za-z]+$")
_INVALID_CHARS = re.compile(r"[^0-9A-Za-z]")


def generate_short_code(length: int = DEFAULT_CODE_LENGTH) -> str:
    if not isinstance(length, int) or isinstance(length, bool) or length <= 0:
        raise ValueError(f"length must be a positive integer, got {length!r}")
    return generate(ALPHABET, length)


def generate_batch(count: int, length: int = DEFAULT_CODE_LENGTH) -> set[str]:
    """Generate ``count`` distinct codes.

    Loops until enough distinct values are collected, so ``count`` must not
    exceed the size of the code space for ``length``.
    """
    if count < 0:
        raise ValueError(f"count must be non-negative, got {count!r}")
    if count > len(ALPHABET) ** length:
        raise ValueError(f"cannot generate {count} distinct codes of length {length}")
    codes: set[str] = set()
    while len(codes) < count:
        codes.add(generate_short_code(length))
    return codes


def is_valid_short_code(code: object, min_length: int = 4, max_length: int = 10) -> bool:
    if not isinstance(code, str):
        return False
    if not min_length <= len(code) <= max_length:
        return False
    return bool(_VALID_CODE.match(code))


def sanitize_custom_code(raw: object, min_length: int = 4, max_length: int = 10) -> str | None:
    if not isinstance(raw, str) or not raw:
        return None
    sanitized = _INVALID_CHARS.sub("", raw.strip())
    if is_valid_short_code(sanitized, min_length, max_length):
        return sanitized
    return None
