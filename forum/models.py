"""SQLAlchemy ORM models for database tables."""

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.sql import func
from .db import Base
from .config import settings

TARGET_KINDS = ("post", "comment")
STANCES = ("like", "dislike")


class User(Base):
    """User model mapped to 'users' table. Name and email are stored lowercased."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(settings.USER_NAME_MAX_LENGTH), nullable=False, unique=True)
    email = Column(String(settings.USER_EMAIL_MAX_LENGTH), nullable=False, unique=True, index=True)
    hashed_password = Column(String(255), nullable=False)
    created = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class Session(Base):
    """Active login for a user; keyed by user so a user holds at most one."""

    __tablename__ = "sessions"

    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    token = Column(String(64), nullable=False, unique=True, index=True)
    user_name = Column(String(settings.USER_NAME_MAX_LENGTH), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)


class Post(Base):
    __tablename__ = "posts"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(settings.POST_TITLE_MAX_LENGTH), nullable=False)
    content = Column(Text, nullable=False)
    categories = Column(String(255), nullable=False)  # comma-separated
    author_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    author = Column(String(settings.USER_NAME_MAX_LENGTH), nullable=False)
    created = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class Comment(Base):
    __tablename__ = "comments"

    id = Column(Integer, primary_key=True, index=True)
    post_id = Column(Integer, ForeignKey("posts.id", ondelete="CASCADE"), nullable=False, index=True)
    author_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    author = Column(String(settings.USER_NAME_MAX_LENGTH), nullable=False)
    content = Column(Text, nullable=False)
    created = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class Reaction(Base):
    """A user's stance on a post or comment. No row means no stance."""

    __tablename__ = "reactions"
    __table_args__ = (
        CheckConstraint("target_kind IN ('post', 'comment')", name="ck_reactions_target_kind"),
        CheckConstraint("stance IN ('like', 'dislike')", name="ck_reactions_stance"),
        Index("ix_reactions_target", "target_kind", "target_id"),
    )

    # Composite primary key: one stance per (user, target)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    target_kind = Column(String(7), primary_key=True)
    target_id = Column(Integer, primary_key=True)
    stance = Column(String(7), nullable=False)
