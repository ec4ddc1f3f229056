"""
beboard.services.challenge_service — Challenge Lifecycle
==========================================================

State machine::

    RECRUITING ──(start date reached)──▶ IN_PROGRESS ──(complete)──▶ COMPLETED
        │
        └──(creator cancels)──▶ CANCELLED

No other edge exists; an operation that needs a different current state
fails with :class:`~beboard.errors.InvalidState`.

Joining is guarded twice.  The challenge row is locked
(``SELECT … FOR UPDATE``) before the capacity count so two joins for the
last slot serialize, and the ``(challenge_id, user_id)`` unique constraint
turns a duplicate insert into :class:`~beboard.errors.AlreadyExists`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, lazyload, selectinload

from beboard.database.engine import get_session
from beboard.database.models import (
    Challenge,
    ChallengeParticipant,
    ChallengeProgress,
    ChallengeStatus,
    Friend,
    FriendStatus,
    ParticipantStatus,
    VerificationMethod,
    VerificationStatus,
)
from beboard.engine.clock import Clock, SystemClock
from beboard.engine.notifications import (
    NotificationMessage,
    NotificationPublisher,
    NotificationType,
    publish_safely,
)
from beboard.errors import (
    AlreadyExists,
    CapacityExceeded,
    Forbidden,
    InvalidArgument,
    InvalidState,
    NotFound,
)
from beboard.identity import Identity, ensure_owner, is_owner_or_admin

logger = logging.getLogger(__name__)

MIN_PARTICIPANTS = 2
MAX_PARTICIPANTS = 50
DEFAULT_MIN_BET = Decimal("1000")


@dataclass(frozen=True, slots=True)
class ChallengeSpec:
    """Caller-supplied fields of a new challenge."""

    title: str
    category: str
    goal_amount: Decimal
    bet_amount: Decimal
    start_date: date
    end_date: date
    verification_method: str
    max_participants: int
    description: str | None = None
    invited_friends: tuple[int, ...] = field(default_factory=tuple)


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------
def participant_dict(p: ChallengeParticipant) -> dict[str, Any]:
    return {
        "id": p.id,
        "challenge_id": p.challenge_id,
        "user": {"id": p.user.id, "nickname": p.user.nickname},
        "bet_amount": str(p.bet_amount),
        "status": p.status,
        "joined_at": p.joined_at.isoformat() if p.joined_at else None,
    }


def challenge_dict(c: Challenge) -> dict[str, Any]:
    return {
        "id": c.id,
        "title": c.title,
        "description": c.description,
        "category": c.category,
        "goal_amount": str(c.goal_amount),
        "bet_amount": str(c.bet_amount),
        "start_date": c.start_date.isoformat(),
        "end_date": c.end_date.isoformat(),
        "status": c.status,
        "verification_method": c.verification_method,
        "max_participants": c.max_participants,
        "creator": {"id": c.creator.id, "nickname": c.creator.nickname},
        "participants": [participant_dict(p) for p in c.participants],
        "total_pot": str(c.total_pot),
        "success_rate": c.success_rate,
        "created_at": c.created_at.isoformat() if c.created_at else None,
        "updated_at": c.updated_at.isoformat() if c.updated_at else None,
    }


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _validate_spec(spec: ChallengeSpec, min_bet: Decimal) -> None:
    if not spec.title or not spec.title.strip():
        raise InvalidArgument("Title must not be blank")
    if len(spec.title) > 200:
        raise InvalidArgument("Title must be at most 200 characters")
    if not spec.category or len(spec.category) > 50:
        raise InvalidArgument("Category must be 1-50 characters")
    if spec.end_date <= spec.start_date:
        raise InvalidArgument("End date must be after start date")
    if not MIN_PARTICIPANTS <= spec.max_participants <= MAX_PARTICIPANTS:
        raise InvalidArgument(
            f"Max participants must be between {MIN_PARTICIPANTS} and {MAX_PARTICIPANTS}"
        )
    if spec.goal_amount <= 0:
        raise InvalidArgument("Goal amount must be positive")
    if spec.bet_amount < min_bet:
        raise InvalidArgument(f"Bet amount must be at least {min_bet}")
    if spec.verification_method not in VerificationMethod.__members__:
        raise InvalidArgument(f"Unknown verification method: {spec.verification_method}")


def _lock_challenge(session: Session, challenge_id: int) -> Challenge | None:
    # FOR UPDATE cannot lock the nullable side of the eager outer joins
    return session.scalars(
        select(Challenge)
        .where(Challenge.id == challenge_id)
        .options(lazyload("*"))
        .with_for_update()
    ).first()


def _load_challenge(session: Session, challenge_id: int) -> Challenge:
    challenge = session.scalars(
        select(Challenge)
        .where(Challenge.id == challenge_id)
        .options(selectinload(Challenge.participants))
    ).unique().first()
    if challenge is None:
        raise NotFound(f"Challenge {challenge_id} not found")
    return challenge


def _active_count(session: Session, challenge_id: int) -> int:
    return session.scalar(
        select(func.count()).select_from(ChallengeParticipant).where(
            ChallengeParticipant.challenge_id == challenge_id,
            ChallengeParticipant.status == ParticipantStatus.ACTIVE,
        )
    ) or 0


def required_days(challenge: Challenge) -> int:
    """Verified, completed days a participant needs to finish with SUCCESS."""
    return (challenge.end_date - challenge.start_date).days


def distribute_rewards(challenge: Challenge) -> None:
    """Settlement hook for the pot.  Payouts are not implemented."""
    logger.info(
        "Reward distribution for challenge %s skipped (pot=%s, winners=%d)",
        challenge.id,
        challenge.total_pot,
        sum(1 for p in challenge.participants if p.status == ParticipantStatus.SUCCESS),
    )


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------
def create_challenge(
    engine,
    *,
    spec: ChallengeSpec,
    creator_id: int,
    clock: Clock | None = None,
    min_bet_amount: Decimal = DEFAULT_MIN_BET,
    publisher: NotificationPublisher | None = None,
) -> dict:
    """Create a RECRUITING challenge with its creator as first participant.

    The start date must lie in the future.  Invited friends (accepted
    friendships only) get a CHALLENGE_INVITE notification.
    """
    clock = clock or SystemClock()
    _validate_spec(spec, min_bet_amount)
    if spec.start_date <= clock.today():
        raise InvalidArgument("Start date must be in the future")

    with get_session(engine) as session:
        challenge = Challenge(
            title=spec.title.strip(),
            description=spec.description,
            category=spec.category,
            goal_amount=spec.goal_amount,
            bet_amount=spec.bet_amount,
            start_date=spec.start_date,
            end_date=spec.end_date,
            status=ChallengeStatus.RECRUITING,
            verification_method=VerificationMethod(spec.verification_method),
            max_participants=spec.max_participants,
            creator_id=creator_id,
        )
        session.add(challenge)
        session.flush()
        session.add(ChallengeParticipant(
            challenge_id=challenge.id,
            user_id=creator_id,
            bet_amount=spec.bet_amount,
            status=ParticipantStatus.ACTIVE,
        ))
        session.flush()

        invitees: list[int] = []
        if spec.invited_friends:
            invitees = _accepted_friends(session, creator_id, set(spec.invited_friends))

        session.expire(challenge)
        challenge = _load_challenge(session, challenge.id)
        result = challenge_dict(challenge)

    logger.info(
        "Challenge %s created by user %s (%s → %s, max %d)",
        result["id"], creator_id, spec.start_date, spec.end_date, spec.max_participants,
    )
    for friend_id in invitees:
        publish_safely(publisher, NotificationMessage(
            recipient_id=friend_id,
            content=f"{result['creator']['nickname']} invited you to '{result['title']}'.",
            url=f"/challenges/{result['id']}",
            type=NotificationType.CHALLENGE_INVITE,
        ))
    return result


def _accepted_friends(session: Session, user_id: int, candidates: set[int]) -> list[int]:
    rows = session.scalars(
        select(Friend).options(lazyload("*")).where(
            Friend.status == FriendStatus.ACCEPTED,
            (Friend.requester_id == user_id) | (Friend.addressee_id == user_id),
        )
    ).all()
    friends = {
        f.addressee_id if f.requester_id == user_id else f.requester_id for f in rows
    }
    return sorted(friends & candidates)


def join_challenge(
    engine,
    *,
    challenge_id: int,
    bet_amount: Decimal,
    user_id: int,
    clock: Clock | None = None,
    min_bet_amount: Decimal = DEFAULT_MIN_BET,
    publisher: NotificationPublisher | None = None,
) -> dict:
    """Enroll *user_id*.  Joinable only while RECRUITING and before the start date."""
    clock = clock or SystemClock()
    if bet_amount < min_bet_amount:
        raise InvalidArgument(f"Bet amount must be at least {min_bet_amount}")

    try:
        with get_session(engine) as session:
            challenge = _lock_challenge(session, challenge_id)
            if challenge is None:
                raise NotFound(f"Challenge {challenge_id} not found")
            if challenge.status != ChallengeStatus.RECRUITING:
                raise InvalidState(f"Challenge {challenge_id} is {challenge.status}")
            if challenge.start_date <= clock.today():
                raise InvalidState(f"Challenge {challenge_id} has already started")

            existing = session.scalar(
                select(ChallengeParticipant.id).where(
                    ChallengeParticipant.challenge_id == challenge_id,
                    ChallengeParticipant.user_id == user_id,
                )
            )
            if existing is not None:
                raise AlreadyExists("Already participating in this challenge")
            if _active_count(session, challenge_id) >= challenge.max_participants:
                raise CapacityExceeded(f"Challenge {challenge_id} is full")

            participant = ChallengeParticipant(
                challenge_id=challenge_id,
                user_id=user_id,
                bet_amount=bet_amount,
                status=ParticipantStatus.ACTIVE,
            )
            session.add(participant)
            session.flush()
            session.refresh(participant)
            result = participant_dict(participant)
            creator_id = challenge.creator_id
            title = challenge.title
    except IntegrityError as exc:
        raise AlreadyExists("Already participating in this challenge") from exc

    logger.info(
        "User %s joined challenge %s with bet %s", user_id, challenge_id, bet_amount,
    )
    if creator_id != user_id:
        publish_safely(publisher, NotificationMessage(
            recipient_id=creator_id,
            content=f"{result['user']['nickname']} joined '{title}'.",
            url=f"/challenges/{challenge_id}",
            type=NotificationType.CHALLENGE_JOINED,
        ))
    return result


def leave_challenge(engine, *, challenge_id: int, user_id: int) -> None:
    """Withdraw from a RECRUITING challenge.  The creator cannot leave."""
    with get_session(engine) as session:
        challenge = _lock_challenge(session, challenge_id)
        participant = None
        if challenge is not None:
            participant = session.scalar(
                select(ChallengeParticipant).where(
                    ChallengeParticipant.challenge_id == challenge_id,
                    ChallengeParticipant.user_id == user_id,
                )
            )
        if participant is None:
            raise NotFound("Not participating in this challenge")
        if challenge.status != ChallengeStatus.RECRUITING:
            raise InvalidState(f"Challenge {challenge_id} is {challenge.status}")
        if challenge.creator_id == user_id:
            raise Forbidden("The creator cannot leave their own challenge")

        session.delete(participant)

    logger.info("User %s left challenge %s", user_id, challenge_id)


def start_challenge(
    engine,
    *,
    challenge_id: int,
    clock: Clock | None = None,
    requestor: Identity | None = None,
) -> dict:
    """Move one RECRUITING challenge to IN_PROGRESS once its start date has come."""
    clock = clock or SystemClock()
    with get_session(engine) as session:
        challenge = _lock_challenge(session, challenge_id)
        if challenge is None:
            raise NotFound(f"Challenge {challenge_id} not found")
        if requestor is not None:
            ensure_owner(requestor, challenge.creator_id, "start this challenge", allow_admin=True)
        if challenge.status != ChallengeStatus.RECRUITING:
            raise InvalidState(f"Challenge {challenge_id} is {challenge.status}")
        if challenge.start_date > clock.today():
            raise InvalidState(f"Challenge {challenge_id} starts on {challenge.start_date}")
        challenge.status = ChallengeStatus.IN_PROGRESS
        session.flush()
        result = challenge_dict(_load_challenge(session, challenge_id))

    logger.info("Challenge %s started", challenge_id)
    return result


def start_due_challenges(engine, *, clock: Clock | None = None) -> int:
    """Start every RECRUITING challenge whose start date is today or earlier.

    Returns the number of challenges started.
    """
    clock = clock or SystemClock()
    with get_session(engine) as session:
        due = session.scalars(
            select(Challenge)
            .where(
                Challenge.status == ChallengeStatus.RECRUITING,
                Challenge.start_date <= clock.today(),
            )
            .options(lazyload("*"))
            .with_for_update(skip_locked=True)
        ).all()
        for challenge in due:
            challenge.status = ChallengeStatus.IN_PROGRESS
        started = [c.id for c in due]

    if started:
        logger.info("Started %d due challenge(s): %s", len(started), started)
    return len(started)


def complete_challenge(
    engine, *, challenge_id: int, requestor: Identity | None = None,
) -> dict:
    """Close an IN_PROGRESS challenge and settle every participant.

    A participant ends with SUCCESS when its VERIFIED, completed entries
    cover :func:`required_days`; everyone else ends with FAILURE.  When a
    *requestor* is given it must be the creator or an admin.
    """
    with get_session(engine) as session:
        challenge = _lock_challenge(session, challenge_id)
        if challenge is None:
            raise NotFound(f"Challenge {challenge_id} not found")
        if requestor is not None and not is_owner_or_admin(requestor, challenge.creator_id):
            raise Forbidden("Only the creator or an admin may complete this challenge")
        if challenge.status != ChallengeStatus.IN_PROGRESS:
            raise InvalidState(f"Challenge {challenge_id} is {challenge.status}")

        challenge.status = ChallengeStatus.COMPLETED
        needed = required_days(challenge)
        verified = dict(
            session.execute(
                select(ChallengeProgress.participant_id, func.count())
                .join(ChallengeParticipant)
                .where(
                    ChallengeParticipant.challenge_id == challenge_id,
                    ChallengeProgress.completed.is_(True),
                    ChallengeProgress.verification_status == VerificationStatus.VERIFIED,
                )
                .group_by(ChallengeProgress.participant_id)
            ).all()
        )
        session.flush()
        challenge = _load_challenge(session, challenge_id)
        for p in challenge.participants:
            p.status = (
                ParticipantStatus.SUCCESS
                if verified.get(p.id, 0) >= needed
                else ParticipantStatus.FAILURE
            )
        session.flush()
        distribute_rewards(challenge)
        result = challenge_dict(challenge)

    logger.info(
        "Challenge %s completed (success rate %.2f)", challenge_id, result["success_rate"],
    )
    return result


def cancel_challenge(engine, *, challenge_id: int, user_id: int) -> dict:
    """Creator-only cancellation of a RECRUITING challenge."""
    with get_session(engine) as session:
        challenge = _lock_challenge(session, challenge_id)
        if challenge is None:
            raise NotFound(f"Challenge {challenge_id} not found")
        if challenge.creator_id != user_id:
            raise Forbidden("Only the creator may cancel this challenge")
        if challenge.status != ChallengeStatus.RECRUITING:
            raise InvalidState(f"Challenge {challenge_id} is {challenge.status}")

        challenge.status = ChallengeStatus.CANCELLED
        session.flush()
        result = challenge_dict(_load_challenge(session, challenge_id))

    logger.info("Challenge %s cancelled by user %s", challenge_id, user_id)
    return result


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
def get_challenge(engine, challenge_id: int) -> dict:
    with Session(engine) as session:
        return challenge_dict(_load_challenge(session, challenge_id))


def list_challenges(
    engine,
    *,
    category: str | None = None,
    status: str | None = None,
    page: int = 1,
    page_size: int = 10,
) -> tuple[int, list[dict]]:
    """Challenges newest first, optionally filtered by category and status."""
    criteria = []
    if category:
        criteria.append(Challenge.category == category)
    if status:
        status = status.upper()
        if status not in ChallengeStatus.__members__:
            raise InvalidArgument(f"Unknown challenge status: {status}")
        criteria.append(Challenge.status == status)

    with Session(engine) as session:
        total = session.scalar(
            select(func.count()).select_from(Challenge).where(*criteria)
        ) or 0
        rows = session.scalars(
            select(Challenge)
            .where(*criteria)
            .options(selectinload(Challenge.participants))
            .order_by(Challenge.created_at.desc(), Challenge.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        ).unique().all()
        return total, [challenge_dict(c) for c in rows]


def list_user_challenges(
    engine, *, user_id: int, page: int = 1, page_size: int = 10,
) -> tuple[int, list[dict]]:
    """Challenges the user participates in (created ones included)."""
    mine = select(ChallengeParticipant.challenge_id).where(
        ChallengeParticipant.user_id == user_id
    )
    with Session(engine) as session:
        total = session.scalar(
            select(func.count()).select_from(Challenge).where(Challenge.id.in_(mine))
        ) or 0
        rows = session.scalars(
            select(Challenge)
            .where(Challenge.id.in_(mine))
            .options(selectinload(Challenge.participants))
            .order_by(Challenge.created_at.desc(), Challenge.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        ).unique().all()
        return total, [challenge_dict(c) for c in rows]
