from database import Base
from sqlalchemy import Column, String, DateTime, Enum as SQLEnum, Index
from sqlalchemy.orm import relationship
from utils.time_utils import utcnow, isoformat
import enum
import uuid


class Role(enum.Enum):
    user = "user"
    admin = "admin"


class User(Base):
    __tablename__ = "users"

    id = Column(String(32), primary_key=True, default=lambda: uuid.uuid4().hex)
    full_name = Column(String(100), nullable=False)
    # stored lower-cased; uniqueness is therefore case-insensitive
    email = Column(String(255), unique=True, index=True, nullable=False)
    password_hash = Column(String(255), nullable=False)
    avatar_path = Column(String(255), nullable=True)
    role = Column(SQLEnum(Role, name="user_role"), default=Role.user, nullable=False, index=True)
    password_changed_at = Column(DateTime, nullable=True)
    last_login_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    trips = relationship("Trip", back_populates="owner", cascade="all, delete-orphan", passive_deletes=True)

    __table_args__ = (
        Index('ix_users_created', 'created_at'),  # For growth charts
    )

    def __repr__(self):
        return f"<User(id={self.id}, email={self.email}, role={self.role})>"

    @property
    def is_admin(self) -> bool:
        return self.role == Role.admin

    def to_dict(self):
        """Public view of the account. Never includes the password hash."""
        return {
            "id": self.id,
            "full_name": self.full_name,
            "email": self.email,
            "avatar_path": self.avatar_path,
            "role": self.role.value if self.role else Role.user.value,
            "created_at": isoformat(self.created_at),
        }
