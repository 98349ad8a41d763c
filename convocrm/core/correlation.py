"""External correlation id helpers."""

import random
import time

# Order lookups treat values above this as correlation ids, not row ids
CORRELATION_ID_THRESHOLD = 1_000_000_000


def generate_correlation_id() -> int:
    """Synthesize a new external correlation id.

    Epoch milliseconds concatenated with a 0-999 random suffix and parsed
    back as an integer, e.g. 1718000000000 + "417" -> 1718000000000417.
    """
    return int(f"{int(time.time() * 1000)}{random.randint(0, 999)}")


def parse_numeric_id(value: object) -> int | None:
    """Parse a loosely typed numeric identifier.

    Accepts ints, numeric strings and float-looking strings ("123.0").
    Returns None for empty values, the string "null" and non-numeric input.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    text = str(value).strip()
    if not text or text.lower() == "null":
        return None
    try:
        return int(text)
    except ValueError:
        pass
    try:
        parsed = float(text)
    except ValueError:
        return None
    if parsed != parsed or parsed in (float("inf"), float("-inf")):
        return None
    return int(parsed)


def is_correlation_id(value: int) -> bool:
    """Return True when an order reference looks like a correlation id."""
    return value > CORRELATION_ID_THRESHOLD
