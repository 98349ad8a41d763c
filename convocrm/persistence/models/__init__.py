"""Database models."""

from convocrm.persistence.models.automation import Automation
from convocrm.persistence.models.contact import Contact
from convocrm.persistence.models.internal_message import InternalMessage
from convocrm.persistence.models.message import Message, OrderMessage
from convocrm.persistence.models.order import Order

__all__ = [
    "Automation",
    "Contact",
    "InternalMessage",
    "Message",
    "Order",
    "OrderMessage",
]
