"""Repository implementations."""

from convocrm.persistence.repositories.automation_repository import AutomationRepository
from convocrm.persistence.repositories.base import BaseRepository
from convocrm.persistence.repositories.contact_repository import ContactRepository
from convocrm.persistence.repositories.internal_message_repository import (
    InternalMessageRepository,
)
from convocrm.persistence.repositories.message_repository import MessageRepository
from convocrm.persistence.repositories.order_repository import OrderRepository

__all__ = [
    "BaseRepository",
    "AutomationRepository",
    "ContactRepository",
    "InternalMessageRepository",
    "MessageRepository",
    "OrderRepository",
]
