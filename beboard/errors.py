"""
beboard.errors — Domain Error Kinds
=====================================

Every service raises one of these instead of returning ``None`` or a
status tuple.  The API layer maps them to HTTP responses in a single
exception handler (see :mod:`beboard.api.main`), so services never import
FastAPI.

All errors are local and synchronous; nothing in the service layer retries.
"""

from __future__ import annotations


class BoardError(Exception):
    """Base class for all domain failures."""

    status_code: int = 400
    code: str = "board_error"


class NotFound(BoardError):
    """The target entity does not exist (or is soft-deleted)."""

    status_code = 404
    code = "not_found"


class Forbidden(BoardError):
    """Authenticated, but not allowed to touch the target entity."""

    status_code = 403
    code = "forbidden"


class Unauthorized(BoardError):
    """Credentials missing, wrong, or the account cannot sign in."""

    status_code = 401
    code = "unauthorized"


class InvalidState(BoardError):
    """The operation is not valid for the entity's current lifecycle state."""

    status_code = 409
    code = "invalid_state"


class InvalidArgument(BoardError):
    """A caller-supplied value violates a precondition."""

    status_code = 400
    code = "invalid_argument"


class InvalidRelation(BoardError):
    """Two referenced entities do not belong together."""

    status_code = 400
    code = "invalid_relation"


class AlreadyExists(BoardError):
    """Duplicate join, duplicate daily submission, duplicate name, ..."""

    status_code = 409
    code = "already_exists"


class CapacityExceeded(BoardError):
    """A challenge has no open participant slots left."""

    status_code = 409
    code = "capacity_exceeded"
