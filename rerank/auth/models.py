"""
Authentication Models

User model and related enums for ReRank authentication.
The users table shares Base with the rest of the schema.
"""

import enum
from datetime import datetime

from sqlalchemy import (
    Column, String, Boolean, DateTime, Enum, Index, ForeignKey
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from rerank.database.models import Base


class UserRole(enum.Enum):
    """User role for access control."""
    USER = "user"      # Regular user - sees only their own sites and articles
    ADMIN = "admin"    # Admin - sees all users, can change plans


class User(Base):
    """
    Local user record synced from Supabase Auth.

    The id matches the Supabase auth.users.id (UUID). Billing state (plan,
    trial, Stripe ids) and notification preferences (locale, timezone) are
    managed locally.
    """
    __tablename__ = "users"

    # ID matches Supabase auth.users.id
    id = Column(UUID(as_uuid=True), primary_key=True)

    # Basic info (synced from Supabase)
    email = Column(String(255), unique=True, nullable=False)
    full_name = Column(String(255))
    avatar_url = Column(String(2000))
    provider = Column(String(50))  # email, google, etc.

    # Role (managed locally, not in Supabase)
    role = Column(Enum(UserRole), default=UserRole.USER, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    # Preferences
    locale = Column(String(10), default="ja")
    timezone = Column(String(64))

    # Billing
    plan_id = Column(UUID(as_uuid=True), ForeignKey("plans.id"))
    plan_started_at = Column(DateTime)
    plan_ends_at = Column(DateTime)
    trial_ends_at = Column(DateTime)
    stripe_customer_id = Column(String(255))
    stripe_subscription_id = Column(String(255))

    # Last sync with Supabase
    last_sign_in_at = Column(DateTime)
    synced_at = Column(DateTime, default=datetime.utcnow)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    deleted_at = Column(DateTime)

    plan = relationship("Plan")

    __table_args__ = (
        Index("idx_user_email", "email"),
        Index("idx_user_stripe_customer", "stripe_customer_id"),
    )

    @property
    def is_admin(self) -> bool:
        """Check if user has admin role."""
        return self.role == UserRole.ADMIN

    def __repr__(self):
        return f"<User {self.email} ({self.role.value})>"
