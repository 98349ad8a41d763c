"""Automation rule model."""

from sqlalchemy import JSON, Boolean, Column, DateTime, Integer, String

from convocrm.core.timeutils import utc_now
from convocrm.persistence.database import Base


class Automation(Base):
    """Declarative rule evaluated at trigger points. Read-only to the core."""

    __tablename__ = "automations"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=True)
    trigger_type = Column(String(100), nullable=False, index=True)
    # Single {"field", "operator", "value"} object, a JSON string of one, or empty
    trigger_conditions = Column(JSON, nullable=True)
    action_type = Column(String(100), nullable=False)
    action_config = Column(JSON, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)

    def __repr__(self) -> str:
        return f"<Automation(id={self.id}, trigger={self.trigger_type}, action={self.action_type})>"
