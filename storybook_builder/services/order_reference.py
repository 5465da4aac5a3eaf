import re
import secrets
import string
import time

PREFIX = "ORDER-"
ALPHABET = string.ascii_uppercase + string.digits
ORDER_REFERENCE_RE = re.compile(r"^ORDER-[A-Z0-9]{8}$")


def _base36(n: int) -> str:
    digits = string.digits + string.ascii_uppercase
    out = ""
    while n:
        n, r = divmod(n, 36)
        out = digits[r] + out
    return out or "0"


def generate_order_reference() -> str:
    """ORDER- plus 8 chars: millisecond clock in base 36 followed by a random tail, last 8 kept."""
    stamp = _base36(int(time.time() * 1000))
    tail = "".join(secrets.choice(ALPHABET) for _ in range(8))
    return PREFIX + (stamp + tail)[-8:]


def is_valid_order_reference(ref: str) -> bool:
    return bool(ORDER_REFERENCE_RE.match(ref or ""))


def get_short_order_id(ref: str) -> str:
    return ref.replace(PREFIX, "", 1)
