"""Human-readable reference numbers. Format is stable, uniqueness is not guaranteed."""
import random
import string
import time

_ALPHABET = string.ascii_uppercase + string.digits


def _millis() -> str:
    return str(int(time.time() * 1000))


def _suffix(length: int) -> str:
    return "".join(random.choices(_ALPHABET, k=length))


def booking_number(prefix: str = "TRP", suffix_length: int = 3) -> str:
    """``<prefix><last 6 digits of epoch ms><suffix>``, e.g. ``TRP482913K2Z``."""
    return f"{prefix}{_millis()[-6:]}{_suffix(suffix_length)}"


def taxi_number() -> str:
    return booking_number("TAXI-", suffix_length=2)


def order_number() -> str:
    return f"ORD-{_millis()}-{_suffix(6)}"


def tracking_number() -> str:
    return f"TRK{_millis()}{_suffix(6)}"


def group_key() -> str:
    return f"shared_{_millis()}_{''.join(random.choices(string.ascii_lowercase + string.digits, k=9))}"
