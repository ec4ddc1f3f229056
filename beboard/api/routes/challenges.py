"""
beboard.api.routes.challenges — Challenge lifecycle + daily progress
======================================================================
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from beboard.api.deps import (
    Page,
    get_clock,
    get_config,
    get_current_user,
    get_engine,
    get_publisher,
)
from beboard.config import BoardConfig
from beboard.engine.clock import Clock
from beboard.engine.notifications import NotificationPublisher
from beboard.identity import Identity
from beboard.services import challenge_service, progress_service
from beboard.services.challenge_service import ChallengeSpec

router = APIRouter(prefix="/challenges", tags=["challenges"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class ChallengeCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: str | None = None
    category: str = Field(min_length=1, max_length=50)
    goal_amount: Decimal
    bet_amount: Decimal
    start_date: date
    end_date: date
    verification_method: str = "PHOTO"
    max_participants: int
    invited_friends: list[int] = Field(default_factory=list)


class JoinBody(BaseModel):
    bet_amount: Decimal


class ProgressBody(BaseModel):
    completed: bool
    proof: str | None = None


class VerifyBody(BaseModel):
    verified: bool
    comment: str | None = Field(default=None, max_length=500)


# ---------------------------------------------------------------------------
# Listings (fixed paths before /{challenge_id})
# ---------------------------------------------------------------------------
@router.get("")
def list_challenges(
    category: str | None = None,
    status: str | None = None,
    page: Page = Depends(),
    engine=Depends(get_engine),
):
    total, items = challenge_service.list_challenges(
        engine, category=category, status=status, page=page.page, page_size=page.page_size,
    )
    return page.wrap(total, items, "challenges")


@router.get("/my")
def my_challenges(
    page: Page = Depends(),
    identity: Identity = Depends(get_current_user),
    engine=Depends(get_engine),
):
    total, items = challenge_service.list_user_challenges(
        engine, user_id=identity.id, page=page.page, page_size=page.page_size,
    )
    return page.wrap(total, items, "challenges")


@router.get("/pending-verifications")
def pending_for_me(
    identity: Identity = Depends(get_current_user),
    engine=Depends(get_engine),
):
    """Entries by co-participants that the caller may verify."""
    return {"progress": progress_service.list_pending_for_verifier(engine, user_id=identity.id)}


@router.post("/progress/{progress_id}/verify")
def verify_progress(
    progress_id: int,
    body: VerifyBody,
    identity: Identity = Depends(get_current_user),
    engine=Depends(get_engine),
    clock: Clock = Depends(get_clock),
    publisher: NotificationPublisher = Depends(get_publisher),
):
    return progress_service.verify_progress(
        engine,
        progress_id=progress_id,
        verifier_id=identity.id,
        verified=body.verified,
        comment=body.comment,
        clock=clock,
        publisher=publisher,
    )


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------
@router.post("", status_code=201)
def create_challenge(
    body: ChallengeCreate,
    identity: Identity = Depends(get_current_user),
    engine=Depends(get_engine),
    cfg: BoardConfig = Depends(get_config),
    clock: Clock = Depends(get_clock),
    publisher: NotificationPublisher = Depends(get_publisher),
):
    spec = ChallengeSpec(
        title=body.title,
        description=body.description,
        category=body.category,
        goal_amount=body.goal_amount,
        bet_amount=body.bet_amount,
        start_date=body.start_date,
        end_date=body.end_date,
        verification_method=body.verification_method.upper(),
        max_participants=body.max_participants,
        invited_friends=tuple(body.invited_friends),
    )
    return challenge_service.create_challenge(
        engine,
        spec=spec,
        creator_id=identity.id,
        clock=clock,
        min_bet_amount=cfg.min_bet_amount,
        publisher=publisher,
    )


@router.get("/{challenge_id}")
def get_challenge(challenge_id: int, engine=Depends(get_engine)):
    return challenge_service.get_challenge(engine, challenge_id)


@router.post("/{challenge_id}/join", status_code=201)
def join_challenge(
    challenge_id: int,
    body: JoinBody,
    identity: Identity = Depends(get_current_user),
    engine=Depends(get_engine),
    cfg: BoardConfig = Depends(get_config),
    clock: Clock = Depends(get_clock),
    publisher: NotificationPublisher = Depends(get_publisher),
):
    return challenge_service.join_challenge(
        engine,
        challenge_id=challenge_id,
        bet_amount=body.bet_amount,
        user_id=identity.id,
        clock=clock,
        min_bet_amount=cfg.min_bet_amount,
        publisher=publisher,
    )


@router.post("/{challenge_id}/leave", status_code=204)
def leave_challenge(
    challenge_id: int,
    identity: Identity = Depends(get_current_user),
    engine=Depends(get_engine),
):
    challenge_service.leave_challenge(engine, challenge_id=challenge_id, user_id=identity.id)


@router.post("/{challenge_id}/start")
def start_challenge(
    challenge_id: int,
    identity: Identity = Depends(get_current_user),
    engine=Depends(get_engine),
    clock: Clock = Depends(get_clock),
):
    return challenge_service.start_challenge(
        engine, challenge_id=challenge_id, clock=clock, requestor=identity,
    )


@router.post("/{challenge_id}/complete")
def complete_challenge(
    challenge_id: int,
    identity: Identity = Depends(get_current_user),
    engine=Depends(get_engine),
):
    return challenge_service.complete_challenge(
        engine, challenge_id=challenge_id, requestor=identity,
    )


@router.post("/{challenge_id}/cancel")
def cancel_challenge(
    challenge_id: int,
    identity: Identity = Depends(get_current_user),
    engine=Depends(get_engine),
):
    return challenge_service.cancel_challenge(
        engine, challenge_id=challenge_id, user_id=identity.id,
    )


# ---------------------------------------------------------------------------
# Progress
# ---------------------------------------------------------------------------
@router.post("/{challenge_id}/progress", status_code=201)
def submit_progress(
    challenge_id: int,
    body: ProgressBody,
    identity: Identity = Depends(get_current_user),
    engine=Depends(get_engine),
    clock: Clock = Depends(get_clock),
):
    return progress_service.submit_progress(
        engine,
        challenge_id=challenge_id,
        user_id=identity.id,
        completed=body.completed,
        proof=body.proof,
        clock=clock,
    )


@router.get("/{challenge_id}/progress")
def list_progress(challenge_id: int, engine=Depends(get_engine)):
    return {"progress": progress_service.list_challenge_progress(engine, challenge_id=challenge_id)}


@router.get("/{challenge_id}/progress/pending")
def list_pending(challenge_id: int, engine=Depends(get_engine)):
    return {
        "progress": progress_service.list_pending_for_challenge(engine, challenge_id=challenge_id),
    }
