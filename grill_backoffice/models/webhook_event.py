from sqlalchemy import Column, DateTime, Integer, String, Text, func

from grill_backoffice.core.database import Base

STATUS_RECEIVED = "RECEIVED"
STATUS_PROCESSED = "PROCESSED"
STATUS_SKIPPED = "SKIPPED"
STATUS_ERROR = "ERROR"
TERMINAL_STATUSES = {STATUS_PROCESSED, STATUS_SKIPPED}


class WebhookEvent(Base):
    __tablename__ = "webhook_event"

    id = Column(Integer, primary_key=True)
    event_id = Column(String(128), unique=True, nullable=False)
    type = Column(String(64), nullable=False)
    status = Column(String(16), nullable=False, default=STATUS_RECEIVED)
    received_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    error = Column(Text, nullable=True)
