"""
User model - the identity directory behind task assignment and notifications
"""
from sqlalchemy import Column, Integer, String, DateTime, Boolean, Enum as SQLEnum
from enum import Enum

from taskboard.database import Base
from taskboard.utils.helpers import utcnow


class UserRole(str, Enum):
    ADMIN = "admin"
    CREATOR = "creator"
    USER = "user"


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String, unique=True, nullable=False, index=True)
    full_name = Column(String, nullable=True)
    email = Column(String, nullable=True, index=True)
    role = Column(
        SQLEnum(UserRole, native_enum=False, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=UserRole.USER,
    )
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=utcnow)

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    @property
    def display_name(self) -> str:
        return self.full_name or self.username
