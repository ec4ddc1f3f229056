"""
beboard.database.models — SQLAlchemy 2.0 Data Models
======================================================

Tables:
- users                   — Accounts (credentials, role, lifecycle status)
- categories              — Board sections, ordered for display
- posts                   — Board posts (soft-deleted)
- bookmarks               — (user, post) saved-post pairs
- comments                — Flat comment arena; tree edges are ``parent_id``
- friends                 — Friend requests and friendships
- challenges              — Goal commitments with a bet and a date window
- challenge_participants  — One enrollment per (challenge, user)
- challenge_progress      — One daily claim per (participant, date)
- admin_rate_limit_events — Durable per-admin mutation counter
"""

from __future__ import annotations

import enum
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all BeBoard ORM models."""


# ---------------------------------------------------------------------------
# Enums (stored as plain strings)
# ---------------------------------------------------------------------------
class UserRole(enum.StrEnum):
    USER = "USER"
    ADMIN = "ADMIN"


class UserStatus(enum.StrEnum):
    """Account lifecycle.  Only ACTIVE accounts may sign in."""
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"
    DORMANT = "DORMANT"
    DELETED = "DELETED"
    BANNED = "BANNED"


class FriendStatus(enum.StrEnum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"


class ChallengeStatus(enum.StrEnum):
    """RECRUITING → IN_PROGRESS → COMPLETED, or RECRUITING → CANCELLED."""
    RECRUITING = "RECRUITING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class VerificationMethod(enum.StrEnum):
    PHOTO = "PHOTO"
    TEXT = "TEXT"
    MUTUAL = "MUTUAL"
    ADMIN = "ADMIN"


class ParticipantStatus(enum.StrEnum):
    ACTIVE = "ACTIVE"
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"


class VerificationStatus(enum.StrEnum):
    PENDING = "PENDING"
    VERIFIED = "VERIFIED"
    REJECTED = "REJECTED"


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------
class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    nickname: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    profile_image: Mapped[str | None] = mapped_column(String(500), default=None)
    role: Mapped[str] = mapped_column(String(20), default=UserRole.USER)
    status: Mapped[str] = mapped_column(String(20), default=UserStatus.ACTIVE)
    active: Mapped[bool] = mapped_column(Boolean, default=True)
    deleted: Mapped[bool] = mapped_column(Boolean, default=False)
    failed_login_attempts: Mapped[int] = mapped_column(Integer, default=0)
    locked_until: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    last_login_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    last_activity_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    deleted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self) -> str:
        return f"<User id={self.id} nickname={self.nickname!r} role={self.role}>"


# ---------------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------------
class Category(Base):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    description: Mapped[str | None] = mapped_column(String(255), default=None)
    active: Mapped[bool] = mapped_column(Boolean, default=True)
    display_order: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("ix_categories_active_order", "active", "display_order"),
    )

    def __repr__(self) -> str:
        return f"<Category id={self.id} name={self.name!r}>"


# ---------------------------------------------------------------------------
# Posts + bookmarks
# ---------------------------------------------------------------------------
class Post(Base):
    __tablename__ = "posts"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    view_count: Mapped[int] = mapped_column(Integer, default=0)
    category_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("categories.id"), nullable=False
    )
    author_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id"), nullable=False
    )
    deleted: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    author: Mapped[User] = relationship(lazy="joined")
    category: Mapped[Category] = relationship(lazy="joined")

    __table_args__ = (
        Index("ix_posts_category_created", "category_id", "created_at"),
        Index("ix_posts_author", "author_id"),
    )

    def __repr__(self) -> str:
        return f"<Post id={self.id} title={self.title!r}>"


class Bookmark(Base):
    __tablename__ = "bookmarks"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id"), nullable=False
    )
    post_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("posts.id"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("user_id", "post_id", name="uq_bookmarks_user_post"),
    )

    def __repr__(self) -> str:
        return f"<Bookmark user={self.user_id} post={self.post_id}>"


# ---------------------------------------------------------------------------
# Comments — flat arena; the tree is rebuilt at read time from parent_id
# ---------------------------------------------------------------------------
class Comment(Base):
    """A comment on a post.

    ``parent_id`` is the only tree edge.  A soft-deleted leaf is detached by
    clearing ``parent_id``; being deleted it never shows up as a root either.
    """
    __tablename__ = "comments"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    content: Mapped[str] = mapped_column(String(1000), nullable=False)
    post_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("posts.id"), nullable=False
    )
    author_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id"), nullable=False
    )
    parent_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("comments.id", ondelete="SET NULL"), default=None
    )
    deleted: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("ix_comments_post_parent_created", "post_id", "parent_id", "created_at"),
        Index("ix_comments_parent", "parent_id"),
        Index("ix_comments_author", "author_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<Comment id={self.id} post={self.post_id} "
            f"parent={self.parent_id} deleted={self.deleted}>"
        )


# ---------------------------------------------------------------------------
# Friends
# ---------------------------------------------------------------------------
class Friend(Base):
    __tablename__ = "friends"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    requester_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id"), nullable=False
    )
    addressee_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id"), nullable=False
    )
    status: Mapped[str] = mapped_column(String(20), default=FriendStatus.PENDING)
    message: Mapped[str | None] = mapped_column(String(255), default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    requester: Mapped[User] = relationship(foreign_keys=[requester_id], lazy="joined")
    addressee: Mapped[User] = relationship(foreign_keys=[addressee_id], lazy="joined")

    __table_args__ = (
        Index("ix_friends_requester_status", "requester_id", "status"),
        Index("ix_friends_addressee_status", "addressee_id", "status"),
    )

    def involves(self, user_id: int) -> bool:
        return user_id in (self.requester_id, self.addressee_id)

    def other(self, user_id: int) -> User:
        return self.addressee if self.requester_id == user_id else self.requester

    def __repr__(self) -> str:
        return (
            f"<Friend {self.requester_id}→{self.addressee_id} status={self.status}>"
        )


# ---------------------------------------------------------------------------
# Challenges
# ---------------------------------------------------------------------------
class Challenge(Base):
    __tablename__ = "challenges"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, default=None)
    category: Mapped[str] = mapped_column(String(50), nullable=False)
    goal_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    bet_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default=ChallengeStatus.RECRUITING)
    verification_method: Mapped[str] = mapped_column(String(20), nullable=False)
    max_participants: Mapped[int] = mapped_column(Integer, nullable=False)
    creator_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    creator: Mapped[User] = relationship(lazy="joined")
    participants: Mapped[list[ChallengeParticipant]] = relationship(
        back_populates="challenge",
        cascade="all, delete-orphan",
        order_by="ChallengeParticipant.joined_at",
    )

    __table_args__ = (
        CheckConstraint("end_date > start_date", name="ck_challenges_date_order"),
        CheckConstraint("max_participants >= 2", name="ck_challenges_min_participants"),
        Index("ix_challenges_status_start", "status", "start_date"),
        Index("ix_challenges_category", "category"),
    )

    @property
    def total_pot(self) -> Decimal:
        """Sum of every participant's bet."""
        return sum((p.bet_amount for p in self.participants), Decimal("0"))

    @property
    def success_rate(self) -> float:
        """Share of participants that finished with SUCCESS (0.0 when empty)."""
        if not self.participants:
            return 0.0
        winners = sum(
            1 for p in self.participants if p.status == ParticipantStatus.SUCCESS
        )
        return winners / len(self.participants)

    def __repr__(self) -> str:
        return f"<Challenge id={self.id} title={self.title!r} status={self.status}>"


class ChallengeParticipant(Base):
    __tablename__ = "challenge_participants"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    challenge_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("challenges.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id"), nullable=False
    )
    bet_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default=ParticipantStatus.ACTIVE)
    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    challenge: Mapped[Challenge] = relationship(back_populates="participants")
    user: Mapped[User] = relationship(lazy="joined")
    progress: Mapped[list[ChallengeProgress]] = relationship(
        back_populates="participant",
        cascade="all, delete-orphan",
        order_by="ChallengeProgress.progress_date",
    )

    __table_args__ = (
        UniqueConstraint("challenge_id", "user_id", name="uq_participants_challenge_user"),
        Index("ix_participants_user", "user_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<ChallengeParticipant challenge={self.challenge_id} "
            f"user={self.user_id} status={self.status}>"
        )


class ChallengeProgress(Base):
    __tablename__ = "challenge_progress"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    participant_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("challenge_participants.id", ondelete="CASCADE"),
        nullable=False,
    )
    progress_date: Mapped[date] = mapped_column("date", Date, nullable=False)
    completed: Mapped[bool] = mapped_column(Boolean, default=False)
    proof: Mapped[str | None] = mapped_column(Text, default=None)
    verification_status: Mapped[str] = mapped_column(
        String(20), default=VerificationStatus.PENDING
    )
    verification_comment: Mapped[str | None] = mapped_column(String(500), default=None)
    verified_by_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("users.id"), default=None
    )
    verified_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    participant: Mapped[ChallengeParticipant] = relationship(back_populates="progress")

    __table_args__ = (
        UniqueConstraint("participant_id", "date", name="uq_progress_participant_date"),
        Index("ix_progress_status", "verification_status"),
    )

    def __repr__(self) -> str:
        return (
            f"<ChallengeProgress id={self.id} participant={self.participant_id} "
            f"date={self.progress_date} status={self.verification_status}>"
        )


# ---------------------------------------------------------------------------
# AdminRateLimitEvent — durable mutation events for admin throttling
# ---------------------------------------------------------------------------
class AdminRateLimitEvent(Base):
    __tablename__ = "admin_rate_limit_events"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    admin_id: Mapped[str] = mapped_column(String(64), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        Index("ix_admin_rate_limit_admin_ts", "admin_id", timestamp.desc()),
        Index("ix_admin_rate_limit_ts", "timestamp"),
    )

    def __repr__(self) -> str:
        return f"<AdminRateLimitEvent admin={self.admin_id!r} ts={self.timestamp}>"
