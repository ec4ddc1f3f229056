"""
beboard.api.routes.admin — Admin endpoints (JWT-protected, rate-limited)
==========================================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from beboard.api.auth import user_dict
from beboard.api.deps import Page, get_cache, get_clock, get_current_admin, get_engine
from beboard.api.rate_limit import rate_limited_admin
from beboard.engine.cache import TTLCache
from beboard.engine.clock import Clock
from beboard.identity import Identity
from beboard.services import category_service, challenge_service, stats_service, user_service

router = APIRouter(prefix="/admin", tags=["admin"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class CategoryCreate(BaseModel):
    name: str = Field(min_length=1, max_length=50)
    description: str | None = Field(default=None, max_length=255)
    display_order: int | None = None


class CategoryUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=50)
    description: str | None = Field(default=None, max_length=255)
    active: bool | None = None
    display_order: int | None = None


class ActiveUpdate(BaseModel):
    active: bool


class RoleUpdate(BaseModel):
    role: str


# ---------------------------------------------------------------------------
# Dashboard
# ---------------------------------------------------------------------------
@router.get("/stats")
def stats(
    admin: Identity = Depends(get_current_admin),
    engine=Depends(get_engine),
    clock: Clock = Depends(get_clock),
):
    return stats_service.dashboard_stats(engine, clock=clock)


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------
@router.get("/users")
def list_users(
    page: Page = Depends(),
    admin: Identity = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    total, users = user_service.list_users(engine, page=page.page, page_size=page.page_size)
    return page.wrap(total, [user_dict(u) for u in users], "users")


@router.put("/users/{user_id}/active")
def set_active(
    user_id: int,
    body: ActiveUpdate,
    admin: Identity = Depends(rate_limited_admin),
    engine=Depends(get_engine),
):
    return user_dict(user_service.set_user_active(engine, user_id=user_id, active=body.active))


@router.put("/users/{user_id}/role")
def set_role(
    user_id: int,
    body: RoleUpdate,
    admin: Identity = Depends(rate_limited_admin),
    engine=Depends(get_engine),
):
    return user_dict(
        user_service.change_user_role(engine, user_id=user_id, role=body.role.upper())
    )


# ---------------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------------
@router.get("/categories")
def list_categories(admin: Identity = Depends(get_current_admin), engine=Depends(get_engine)):
    return {"categories": category_service.list_all_categories(engine)}


@router.post("/categories", status_code=201)
def create_category(
    body: CategoryCreate,
    admin: Identity = Depends(rate_limited_admin),
    engine=Depends(get_engine),
    cache: TTLCache = Depends(get_cache),
):
    return category_service.create_category(
        engine,
        cache,
        name=body.name,
        description=body.description,
        display_order=body.display_order,
    )


@router.patch("/categories/{category_id}")
def update_category(
    category_id: int,
    body: CategoryUpdate,
    admin: Identity = Depends(rate_limited_admin),
    engine=Depends(get_engine),
    cache: TTLCache = Depends(get_cache),
):
    kwargs = body.model_dump(exclude_none=True)
    if not kwargs:
        raise HTTPException(400, "No fields to update")
    return category_service.update_category(engine, cache, category_id, **kwargs)


@router.delete("/categories/{category_id}", status_code=204)
def delete_category(
    category_id: int,
    admin: Identity = Depends(rate_limited_admin),
    engine=Depends(get_engine),
    cache: TTLCache = Depends(get_cache),
):
    category_service.delete_category(engine, cache, category_id)


# ---------------------------------------------------------------------------
# Challenges
# ---------------------------------------------------------------------------
@router.post("/challenges/start-due")
def start_due(
    admin: Identity = Depends(rate_limited_admin),
    engine=Depends(get_engine),
    clock: Clock = Depends(get_clock),
):
    """Run the auto-start sweep now instead of waiting for the background loop."""
    return {"started": challenge_service.start_due_challenges(engine, clock=clock)}
