"""Phone number utilities for consistent handling across the application."""

import logging
import re

logger = logging.getLogger(__name__)

MIN_PHONE_LENGTH = 6

# Values the partner platform sends when no phone was collected
_PLACEHOLDER_PHONES = {"123", "null", "none", "0"}


def normalize_phone(phone: str | None) -> str | None:
    """Normalize a phone number for storage and lookup.

    Keeps a leading "+" and the digits, drops formatting characters.

        +7 (912) 345-67-89 -> +79123456789
        8 912 345 67 89    -> 89123456789

    Returns:
        Normalized phone, or None when the value is empty, a known
        placeholder, or shorter than MIN_PHONE_LENGTH characters.
    """
    if phone is None:
        return None

    raw = str(phone).strip()
    if not raw or raw.lower() in _PLACEHOLDER_PHONES:
        return None

    digits = re.sub(r'\D', '', raw)
    normalized = f"+{digits}" if raw.startswith('+') else digits

    if len(normalized) < MIN_PHONE_LENGTH:
        logger.debug(f"Discarding phone shorter than {MIN_PHONE_LENGTH}: {raw}")
        return None
    return normalized
