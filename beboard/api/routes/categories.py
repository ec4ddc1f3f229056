"""
beboard.api.routes.categories — Public category reads (cached)
================================================================

Writes live under ``/admin/categories`` in :mod:`beboard.api.routes.admin`.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from beboard.api.deps import get_cache, get_config, get_engine
from beboard.config import BoardConfig
from beboard.engine.cache import TTLCache
from beboard.services import category_service

router = APIRouter(prefix="/categories", tags=["categories"])


@router.get("")
def list_categories(
    engine=Depends(get_engine),
    cache: TTLCache = Depends(get_cache),
    cfg: BoardConfig = Depends(get_config),
):
    return {
        "categories": category_service.list_active_categories(
            engine, cache, ttl=cfg.category_cache_ttl,
        ),
    }


@router.get("/{category_id}")
def get_category(
    category_id: int,
    engine=Depends(get_engine),
    cache: TTLCache = Depends(get_cache),
    cfg: BoardConfig = Depends(get_config),
):
    return category_service.get_category(
        engine, cache, category_id, ttl=cfg.category_detail_cache_ttl,
    )


@router.get("/{category_id}/post-count")
def get_post_count(
    category_id: int,
    engine=Depends(get_engine),
    cache: TTLCache = Depends(get_cache),
    cfg: BoardConfig = Depends(get_config),
):
    count = category_service.get_post_count(
        engine, cache, category_id, ttl=cfg.category_post_count_cache_ttl,
    )
    return {"category_id": category_id, "post_count": count}
