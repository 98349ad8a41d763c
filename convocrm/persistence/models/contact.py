"""Contact model."""

from sqlalchemy import Column, DateTime, Integer, String, Text
from sqlalchemy.orm import relationship

from convocrm.core.timeutils import utc_now
from convocrm.persistence.database import Base

PLACEHOLDER_NAME_PREFIXES = ("User ", "Пользователь ")


class Contact(Base):
    """A person reachable on one or more channels."""

    __tablename__ = "contacts"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    phone = Column(String(50), nullable=True, index=True)
    email = Column(String(255), nullable=True, index=True)
    # Chat-platform numeric id, stored as text to avoid precision loss
    channel_user_id = Column(String(64), nullable=True, unique=True, index=True)
    partner_external_id = Column(String(255), nullable=True, index=True)
    telegram_username = Column(String(255), nullable=True)
    status = Column(String(50), nullable=False, default="active")
    manager_id = Column(Integer, nullable=True)
    comment = Column(Text, nullable=True)
    last_activity_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)

    # Relationships
    orders = relationship("Order", back_populates="contact", order_by="Order.created_at")

    @property
    def has_placeholder_name(self) -> bool:
        """True when the name was synthesized rather than learned."""
        if not self.name:
            return True
        if self.channel_user_id and self.name == self.channel_user_id:
            return True
        return self.name.startswith(PLACEHOLDER_NAME_PREFIXES)

    def __repr__(self) -> str:
        return f"<Contact(id={self.id}, name={self.name}, channel_user_id={self.channel_user_id})>"
