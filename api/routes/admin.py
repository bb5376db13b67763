"""
api/routes/admin.py -- Role-gated user administration.

Routes:
  POST   /api/admin/users/{id}/toggle_role -- flip user <-> admin
  DELETE /api/admin/users/{id}             -- delete the user and its sessions
  GET    /api/admin/users/{id}/sessions    -- list live sessions
  DELETE /api/admin/users/{id}/sessions    -- revoke every session

Every route depends on require_admin (403 for anonymous and non-admin alike).
AdminService re-checks the role and refuses self-targeted toggle/delete.
The three state-changing routes also run require_csrf_for_cookie_auth, so a
browser session must echo its CSRF token; bearer-token callers are exempt.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from api.models import RevokedResponse, SessionPublic, UserPublic
from auth.admin import AdminService, UserNotFound
from auth.dependencies import require_admin, require_csrf_for_cookie_auth
from auth.models import User

router = APIRouter()

_MUTATING = [Depends(require_csrf_for_cookie_auth)]


def _not_found() -> HTTPException:
    return HTTPException(
        status_code=404,
        detail={"code": "not_found", "message": "User not found."},
    )


def _admin_service(request: Request) -> AdminService:
    return request.app.state.admin_service


@router.post("/admin/users/{user_id}/toggle_role", response_model=UserPublic, dependencies=_MUTATING)
def toggle_role(
    user_id: int,
    actor: User = Depends(require_admin),
    admin: AdminService = Depends(_admin_service),
) -> UserPublic:
    try:
        target = admin.toggle_role(actor, user_id)
    except UserNotFound:
        raise _not_found() from None
    return UserPublic(**target.to_public())


@router.delete("/admin/users/{user_id}", status_code=204, dependencies=_MUTATING)
def delete_user(
    user_id: int,
    actor: User = Depends(require_admin),
    admin: AdminService = Depends(_admin_service),
) -> Response:
    try:
        admin.delete_user(actor, user_id)
    except UserNotFound:
        raise _not_found() from None
    return Response(status_code=204)


@router.get("/admin/users/{user_id}/sessions", response_model=list[SessionPublic])
def list_sessions(
    user_id: int,
    actor: User = Depends(require_admin),
    admin: AdminService = Depends(_admin_service),
) -> list[SessionPublic]:
    try:
        sessions = admin.list_sessions(actor, user_id)
    except UserNotFound:
        raise _not_found() from None
    return [SessionPublic(**s.to_public()) for s in sessions]


@router.delete("/admin/users/{user_id}/sessions", response_model=RevokedResponse, dependencies=_MUTATING)
def revoke_sessions(
    user_id: int,
    actor: User = Depends(require_admin),
    admin: AdminService = Depends(_admin_service),
) -> RevokedResponse:
    """Sign the user out everywhere. Their bearer tokens stay valid until expiry."""
    try:
        count = admin.revoke_sessions(actor, user_id)
    except UserNotFound:
        raise _not_found() from None
    return RevokedResponse(revoked=count)
