from database import Base
from sqlalchemy import Column, Integer, String, DateTime, Text
from utils.time_utils import utcnow


class ClientRequest(Base):
    """Stored response for a write retried with the same X-Client-Request-Id."""
    __tablename__ = "client_requests"

    key = Column(String(64), primary_key=True)
    status_code = Column(Integer, nullable=False)
    body = Column(Text, nullable=False)
    media_type = Column(String(100), nullable=False, default="application/json")
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)
