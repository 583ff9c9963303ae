"""User model with plan role and usage counters.

Users authenticate with email/password and receive JWT tokens. The song
allowance depends on the role; the usage counters are informational and
may drift slightly under concurrent completions.
"""

from datetime import datetime, timezone

from sqlalchemy import Column, String, DateTime, Boolean, Integer, Text
from ..database import Base


class UserRole:
    """Allowed values for User.role."""

    ADMIN = "admin"
    MAX = "max"
    PAID = "paid"
    FREE = "free"

    ALL = (ADMIN, MAX, PAID, FREE)
    UNLIMITED = (ADMIN, MAX)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(Base):
    """User account with plan role and generation usage."""

    __tablename__ = "users"

    user_id = Column(String(50), primary_key=True)
    display_name = Column(String(255), nullable=False, default="Default User")
    email = Column(String(255), unique=True, nullable=True)
    password_hash = Column(Text, nullable=True)
    role = Column(String(20), nullable=False, default=UserRole.FREE)
    is_active = Column(Boolean, nullable=False, default=True)

    # Usage
    songs_created = Column(Integer, nullable=False, default=0)
    songs_this_month = Column(Integer, nullable=False, default=0)
    credits_used = Column(Integer, nullable=False, default=0)
    credits_remaining = Column(Integer, nullable=False, default=0)
    usage_reset_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
