"""Order (conversation/deal) model."""

from sqlalchemy import BigInteger, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from convocrm.core.timeutils import utc_now
from convocrm.persistence.database import Base


class Order(Base):
    """Unit of correlation between chat-channel and partner messages.

    ``correlation_id`` (not ``id``) is the join key used by the message tables.
    """

    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    correlation_id = Column(BigInteger, nullable=True, unique=True, index=True)
    partner_id = Column(String(255), nullable=True, index=True)
    contact_id = Column(Integer, ForeignKey("contacts.id"), nullable=True, index=True)
    status = Column(String(50), nullable=False, default="unsorted", index=True)
    partner_status_id = Column(String(100), nullable=True)
    title = Column(String(255), nullable=True)
    description = Column(Text, nullable=True)
    manager_id = Column(Integer, nullable=True)
    source = Column(String(50), nullable=True)  # 'telegram_bot', 'partner', 'manual'
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)

    # Relationships
    contact = relationship("Contact", back_populates="orders")

    def __repr__(self) -> str:
        return f"<Order(id={self.id}, correlation_id={self.correlation_id}, status={self.status})>"
