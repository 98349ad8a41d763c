"""Team-only internal message model."""

from sqlalchemy import BigInteger, Boolean, Column, DateTime, ForeignKey, Integer, String, Text

from convocrm.core.timeutils import utc_now
from convocrm.persistence.database import Base

SYSTEM_ATTACHMENT_TYPE = "system"


class InternalMessage(Base):
    """Annotation tied to an Order and never shown to the customer.

    Rows with ``attachment_type == "system"`` are audit entries written by
    the service itself (status changes, field edits, partner notes).
    """

    __tablename__ = "internal_messages"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=True, index=True)
    # Legacy rows are only linked through the correlation id
    correlation_id = Column(BigInteger, nullable=True, index=True)
    sender_id = Column(Integer, nullable=True)
    content = Column(Text, nullable=False)
    is_read = Column(Boolean, nullable=False, default=False)
    reply_to_id = Column(Integer, ForeignKey("internal_messages.id"), nullable=True)
    attachment_url = Column(Text, nullable=True)
    attachment_type = Column(String(20), nullable=True)  # image, file, voice, system
    attachment_name = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False, index=True)

    @property
    def is_system(self) -> bool:
        return self.attachment_type == SYSTEM_ATTACHMENT_TYPE

    def __repr__(self) -> str:
        return f"<InternalMessage(id={self.id}, order_id={self.order_id}, type={self.attachment_type})>"
