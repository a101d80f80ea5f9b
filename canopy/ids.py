"""Unique, roughly time-ordered keys for push()."""

import itertools
import secrets
import string
import threading
import time

ALPHABET = string.digits + string.ascii_lowercase

_TIMESTAMP_WIDTH = 9
_COUNTER_WIDTH = 4
_RANDOM_WIDTH = 10

_counter = itertools.count()
_lock = threading.Lock()


def _base36(number: int, width: int) -> str:
    digits = []
    while number:
        number, rem = divmod(number, 36)
        digits.append(ALPHABET[rem])
    text = "".join(reversed(digits)) or "0"
    return text.rjust(width, "0")[-width:]


def generate() -> str:
    """Generate a new key.

    Keys are 24 lowercase characters: "c", a millisecond timestamp, a
    per-process counter and random characters. Keys generated later sort
    after earlier ones except within the same millisecond across processes.
    """
    timestamp = _base36(int(time.time() * 1000), _TIMESTAMP_WIDTH)
    with _lock:
        count = next(_counter) % 36 ** _COUNTER_WIDTH
    counter = _base36(count, _COUNTER_WIDTH)
    random_part = "".join(secrets.choice(ALPHABET) for _ in range(_RANDOM_WIDTH))
    return f"c{timestamp}{counter}{random_part}"
