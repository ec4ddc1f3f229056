"""
beboard.services.progress_service — Daily Progress & Peer Verification
========================================================================

A participant records at most one progress entry per calendar day
(server-local date from the injected clock).  The rule is enforced by the
``(participant_id, date)`` unique constraint as well as a pre-check, so
two racing submissions cannot both land.

Every entry starts PENDING and is verified exactly once, by someone other
than the participant who submitted it:

    PENDING ──▶ VERIFIED
       └──────▶ REJECTED

Re-verifying a decided entry is refused with ``InvalidState``.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from beboard.database.engine import get_session
from beboard.database.models import (
    ChallengeParticipant,
    ChallengeProgress,
    User,
    VerificationStatus,
)
from beboard.engine.clock import Clock, SystemClock
from beboard.engine.notifications import (
    NotificationMessage,
    NotificationPublisher,
    NotificationType,
    publish_safely,
)
from beboard.errors import AlreadyExists, InvalidState, NotFound

logger = logging.getLogger(__name__)


def progress_dict(p: ChallengeProgress, verifier: User | None = None) -> dict[str, Any]:
    participant = p.participant
    return {
        "id": p.id,
        "challenge_id": participant.challenge_id,
        "participant_id": p.participant_id,
        "user": {"id": participant.user.id, "nickname": participant.user.nickname},
        "date": p.progress_date.isoformat(),
        "completed": p.completed,
        "proof": p.proof,
        "verification_status": p.verification_status,
        "verification_comment": p.verification_comment,
        "verified_by": (
            {"id": verifier.id, "nickname": verifier.nickname} if verifier else None
        ),
        "verified_at": p.verified_at.isoformat() if p.verified_at else None,
        "created_at": p.created_at.isoformat() if p.created_at else None,
    }


def _with_participant():
    return joinedload(ChallengeProgress.participant).joinedload(ChallengeParticipant.user)


def _serialize(session: Session, rows) -> list[dict]:
    verifier_ids = {p.verified_by_id for p in rows if p.verified_by_id is not None}
    verifiers = {}
    if verifier_ids:
        verifiers = {
            u.id: u for u in session.scalars(select(User).where(User.id.in_(verifier_ids)))
        }
    return [progress_dict(p, verifiers.get(p.verified_by_id)) for p in rows]


# ---------------------------------------------------------------------------
# Submit + verify
# ---------------------------------------------------------------------------
def submit_progress(
    engine,
    *,
    challenge_id: int,
    user_id: int,
    completed: bool,
    proof: str | None = None,
    clock: Clock | None = None,
) -> dict:
    """Record today's progress for the caller's participation."""
    clock = clock or SystemClock()
    today = clock.today()

    try:
        with get_session(engine) as session:
            participant = session.scalar(
                select(ChallengeParticipant).where(
                    ChallengeParticipant.challenge_id == challenge_id,
                    ChallengeParticipant.user_id == user_id,
                )
            )
            if participant is None:
                raise NotFound("Not participating in this challenge")

            duplicate = session.scalar(
                select(ChallengeProgress.id).where(
                    ChallengeProgress.participant_id == participant.id,
                    ChallengeProgress.progress_date == today,
                )
            )
            if duplicate is not None:
                raise AlreadyExists(f"Progress for {today} was already submitted")

            progress = ChallengeProgress(
                participant_id=participant.id,
                progress_date=today,
                completed=completed,
                proof=proof,
                verification_status=VerificationStatus.PENDING,
            )
            session.add(progress)
            session.flush()
            session.refresh(progress)
            result = progress_dict(progress)
    except IntegrityError as exc:
        raise AlreadyExists(f"Progress for {today} was already submitted") from exc

    logger.info(
        "User %s submitted progress %s for challenge %s (%s)",
        user_id, result["id"], challenge_id, today,
    )
    return result


def verify_progress(
    engine,
    *,
    progress_id: int,
    verifier_id: int,
    verified: bool,
    comment: str | None = None,
    clock: Clock | None = None,
    publisher: NotificationPublisher | None = None,
) -> dict:
    """Approve or reject a PENDING entry submitted by someone else."""
    clock = clock or SystemClock()

    with get_session(engine) as session:
        progress = session.scalars(
            select(ChallengeProgress)
            .where(ChallengeProgress.id == progress_id)
            .with_for_update()
        ).first()
        if progress is None:
            raise NotFound(f"Progress {progress_id} not found")

        owner_id = progress.participant.user_id
        if owner_id == verifier_id:
            raise InvalidState("You cannot verify your own progress")
        if progress.verification_status != VerificationStatus.PENDING:
            raise InvalidState(
                f"Progress {progress_id} was already {progress.verification_status}"
            )

        progress.verification_status = (
            VerificationStatus.VERIFIED if verified else VerificationStatus.REJECTED
        )
        progress.verification_comment = comment
        progress.verified_by_id = verifier_id
        progress.verified_at = clock.now()
        session.flush()
        verifier = session.get(User, verifier_id)
        result = progress_dict(progress, verifier)
        challenge_id = progress.participant.challenge_id

    logger.info(
        "Progress %s %s by user %s",
        progress_id, result["verification_status"], verifier_id,
    )
    verdict = "verified" if verified else "rejected"
    publish_safely(publisher, NotificationMessage(
        recipient_id=owner_id,
        content=f"Your progress for {result['date']} was {verdict}.",
        url=f"/challenges/{challenge_id}",
        type=NotificationType.PROGRESS_VERIFIED,
    ))
    return result


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
def list_pending_for_challenge(engine, *, challenge_id: int) -> list[dict]:
    with Session(engine) as session:
        rows = session.scalars(
            select(ChallengeProgress)
            .join(ChallengeParticipant)
            .where(
                ChallengeParticipant.challenge_id == challenge_id,
                ChallengeProgress.verification_status == VerificationStatus.PENDING,
            )
            .options(_with_participant())
            .order_by(ChallengeProgress.progress_date.desc(), ChallengeProgress.id.desc())
        ).unique().all()
        return _serialize(session, rows)


def list_pending_for_verifier(engine, *, user_id: int) -> list[dict]:
    """PENDING entries the user may verify.

    Only challenges the user participates in are considered, and the
    user's own entries are excluded.
    """
    my_challenges = select(ChallengeParticipant.challenge_id).where(
        ChallengeParticipant.user_id == user_id
    )
    with Session(engine) as session:
        rows = session.scalars(
            select(ChallengeProgress)
            .join(ChallengeParticipant)
            .where(
                ChallengeParticipant.challenge_id.in_(my_challenges),
                ChallengeParticipant.user_id != user_id,
                ChallengeProgress.verification_status == VerificationStatus.PENDING,
            )
            .options(_with_participant())
            .order_by(ChallengeProgress.progress_date.desc(), ChallengeProgress.id.desc())
        ).unique().all()
        return _serialize(session, rows)


def list_challenge_progress(engine, *, challenge_id: int) -> list[dict]:
    """Every entry of a challenge, newest date first."""
    with Session(engine) as session:
        rows = session.scalars(
            select(ChallengeProgress)
            .join(ChallengeParticipant)
            .where(ChallengeParticipant.challenge_id == challenge_id)
            .options(_with_participant())
            .order_by(ChallengeProgress.progress_date.desc(), ChallengeProgress.id.desc())
        ).unique().all()
        return _serialize(session, rows)
