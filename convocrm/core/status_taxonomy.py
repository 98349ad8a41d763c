"""Order status registry and partner status id translation.

The registry is the single source of truth; both lookup directions are
derived from it at import time and never change at runtime.
"""

from dataclasses import dataclass
from types import MappingProxyType


@dataclass(frozen=True)
class OrderStatus:
    """One entry of the status registry."""

    key: str
    label: str
    partner_id: str | None = None


STATUS_REGISTRY: tuple[OrderStatus, ...] = (
    OrderStatus("unsorted", "Unsorted"),
    OrderStatus("new", "New", "50201001"),
    OrderStatus("negotiation", "Negotiation", "50201002"),
    OrderStatus("waiting", "Waiting for client", "50201003"),
    OrderStatus("ready_to_close", "Ready to close", "50201004"),
    OrderStatus("partially_completed", "Partially completed", "50201005"),
    OrderStatus("postponed", "Postponed", "50201006"),
    OrderStatus("client_rejected", "Client rejected", "50201007"),
    OrderStatus("scammer", "Scammer", "50201008"),
    OrderStatus("completed", "Completed", "142"),
    OrderStatus("lost", "Lost", "143"),
    OrderStatus("duplicate", "Duplicate"),
)

DEFAULT_STATUS = "unsorted"

TERMINAL_STATUSES = frozenset({"completed", "scammer", "client_rejected", "lost"})

# Values older partner workflows still send
LEGACY_ALIASES = MappingProxyType({
    "Выполнен": "completed",
    "Исполнена": "completed",
})

STATUSES_BY_KEY = MappingProxyType({s.key: s for s in STATUS_REGISTRY})

STATUS_TO_PARTNER_ID = MappingProxyType(
    {s.key: s.partner_id for s in STATUS_REGISTRY if s.partner_id}
)
PARTNER_ID_TO_STATUS = MappingProxyType(
    {partner_id: key for key, partner_id in STATUS_TO_PARTNER_ID.items()}
)

_LOOSE_LOOKUP = MappingProxyType({
    **{s.label: s.key for s in STATUS_REGISTRY},
    **PARTNER_ID_TO_STATUS,
    **LEGACY_ALIASES,
})


def is_known_status(status: str | None) -> bool:
    return status in STATUSES_BY_KEY


def to_partner_id(internal_status: str | None) -> str | None:
    """Partner status id for an internal status, or None when unmapped."""
    if internal_status is None:
        return None
    return STATUS_TO_PARTNER_ID.get(internal_status)


def to_internal_status(partner_id: object) -> str | None:
    """Internal status for a partner status id, or None when unmapped."""
    if partner_id is None:
        return None
    return PARTNER_ID_TO_STATUS.get(str(partner_id).strip())


def map_loose_status(value: object) -> str:
    """Map whatever the partner sent (key, id, label or alias) to a status key.

    Falls back to ``unsorted`` for empty or unrecognized input.
    """
    if value is None:
        return DEFAULT_STATUS
    text = str(value).strip()
    if not text:
        return DEFAULT_STATUS
    if text in STATUSES_BY_KEY:
        return text
    return _LOOSE_LOOKUP.get(text, DEFAULT_STATUS)


def label_for(status: str | None) -> str:
    """Display label for a status key; unknown keys are shown as-is."""
    entry = STATUSES_BY_KEY.get(status or "")
    if entry is None:
        return status or STATUSES_BY_KEY[DEFAULT_STATUS].label
    return entry.label


def is_terminal(status: str | None) -> bool:
    return status in TERMINAL_STATUSES
