from database import Base
from sqlalchemy import Column, String, DateTime, ForeignKey


class RevokedToken(Base):
    """Bearer tokens invalidated by logout, kept until they would expire anyway."""
    __tablename__ = "revoked_tokens"

    jti = Column(String(64), primary_key=True)
    user_id = Column(String(32), ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    expires_at = Column(DateTime, nullable=False, index=True)
