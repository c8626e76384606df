"""Read-only mirror of the platform tables the user info endpoint draws from.

The social features own these tables; the authorization server never
writes to them outside of tests and seed scripts.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, Date, DateTime, Float, Index, String, Text

from xcrol.database import Base


def utcnow():
    return datetime.now(timezone.utc)


class Profile(Base):
    __tablename__ = "profiles"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    username = Column(String(50), unique=True, nullable=True)
    display_name = Column(String(200), nullable=True)
    avatar_url = Column(String(500), nullable=True)
    bio = Column(Text, nullable=True)
    link = Column(String(500), nullable=True)
    email = Column(String(255), nullable=True)
    contact_email = Column(String(255), nullable=True)
    hometown_city = Column(String(200), nullable=True)
    hometown_country = Column(String(200), nullable=True)
    hometown_description = Column(Text, nullable=True)
    hometown_latitude = Column(Float, nullable=True)
    hometown_longitude = Column(Float, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_profile_username", "username"),
    )


class Friendship(Base):
    """Directed friendship edge; ``level`` is the owner's label for the friend."""

    __tablename__ = "friendships"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), nullable=False)
    friend_id = Column(String(36), nullable=False)
    level = Column(String(50), nullable=False, default="buddy")
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_friendship_user", "user_id"),
        Index("idx_friendship_friend", "friend_id"),
    )


class XcrolEntry(Base):
    """Diary entry."""

    __tablename__ = "xcrol_entries"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), nullable=False)
    content = Column(Text, nullable=False)
    entry_date = Column(Date, nullable=False)
    privacy_level = Column(String(30), nullable=False, default="private")
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_xcrol_entry_user_date", "user_id", "entry_date"),
    )
