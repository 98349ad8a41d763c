"""Client-facing message models."""

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)

from convocrm.core.timeutils import utc_now
from convocrm.persistence.database import Base


class Message(Base):
    """Message exchanged with the end customer."""

    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, index=True)
    # Matches Order.correlation_id, or a not-yet-linked value
    correlation_id = Column(BigInteger, nullable=True, index=True)
    content = Column(Text, nullable=False, default="")
    author_kind = Column(String(20), nullable=False, default="client")  # client, manager, system
    message_kind = Column(String(20), nullable=False, default="text")  # text, image, file, voice, video, system
    chat_message_id = Column(BigInteger, nullable=True, index=True)
    partner_message_id = Column(String(255), nullable=True, index=True)
    reply_to_chat_message_id = Column(BigInteger, nullable=True)
    delivery_status = Column(String(20), nullable=False, default="delivered")  # delivered, error
    error_message = Column(Text, nullable=True)
    file_url = Column(Text, nullable=True)
    file_name = Column(String(255), nullable=True)
    caption = Column(Text, nullable=True)
    reactions = Column(JSON, nullable=True)
    author_name = Column(String(255), nullable=True)
    manager_id = Column(Integer, nullable=True)
    voice_duration = Column(Integer, nullable=True)
    is_read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False, index=True)

    def __repr__(self) -> str:
        return (
            f"<Message(id={self.id}, correlation_id={self.correlation_id}, "
            f"author={self.author_kind}, kind={self.message_kind})>"
        )


class OrderMessage(Base):
    """Association between an Order and the messages ingested for it."""

    __tablename__ = "order_messages"
    __table_args__ = (
        UniqueConstraint("order_id", "message_id", name="uq_order_messages_order_message"),
    )

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    message_id = Column(Integer, ForeignKey("messages.id"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
