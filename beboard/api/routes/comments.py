"""
beboard.api.routes.comments — Edit / delete a single comment
==============================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from beboard.api.deps import get_current_user, get_engine
from beboard.identity import Identity
from beboard.services import comment_service

router = APIRouter(prefix="/comments", tags=["comments"])


class CommentUpdate(BaseModel):
    content: str = Field(min_length=1, max_length=1000)


@router.put("/{comment_id}")
def update_comment(
    comment_id: int,
    body: CommentUpdate,
    identity: Identity = Depends(get_current_user),
    engine=Depends(get_engine),
):
    node = comment_service.update_comment(
        engine, comment_id=comment_id, content=body.content, requestor_id=identity.id,
    )
    return node.as_dict()


@router.delete("/{comment_id}", status_code=204)
def delete_comment(
    comment_id: int,
    identity: Identity = Depends(get_current_user),
    engine=Depends(get_engine),
):
    comment_service.soft_delete_comment(
        engine, comment_id=comment_id, requestor_id=identity.id,
    )
