"""
auth/admin.py -- The single admin gate and the operations behind it.

Every privileged check goes through require_admin(). Anonymous callers and
authenticated non-admins get the same Forbidden, so the gate does not reveal
whether a credential was present.

Self-protection: an admin may not toggle their own role or delete their own
account (ensure_not_self). This is what keeps at least one admin reachable
without a separate last-admin count.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

import logging

from auth.errors import Forbidden
from auth.models import Role, Session, User
from auth.store import SessionStore, UserStore

logger = logging.getLogger("passport.auth")


class UserNotFound(LookupError):
    """Target user id does not exist. Routes render it as 404."""


def require_admin(user: User | None) -> User:
    if user is None or not user.is_admin:
        raise Forbidden()
    return user


def ensure_not_self(actor: User, target_id: int) -> None:
    if actor.id == target_id:
        raise Forbidden("Admins cannot perform this action on their own account.")


class AdminService:
    """Role toggling, account deletion and session revocation for admins."""

    def __init__(self, users: UserStore, sessions: SessionStore) -> None:
        self.users = users
        self.sessions = sessions

    def _target(self, user_id: int) -> User:
        user = self.users.get_by_id(user_id)
        if user is None:
            raise UserNotFound(user_id)
        return user

    def toggle_role(self, actor: User | None, user_id: int) -> User:
        actor = require_admin(actor)
        ensure_not_self(actor, user_id)
        target = self._target(user_id)
        target.role = Role.user if target.is_admin else Role.admin
        self.users.update_user(target.id, role=target.role)
        logger.info("Admin id=%s set role of user id=%s to %s", actor.id, target.id, target.role.value)
        return target

    def delete_user(self, actor: User | None, user_id: int) -> None:
        actor = require_admin(actor)
        ensure_not_self(actor, user_id)
        if not self.users.delete_user(user_id):
            raise UserNotFound(user_id)
        logger.info("Admin id=%s deleted user id=%s", actor.id, user_id)

    def revoke_sessions(self, actor: User | None, user_id: int) -> int:
        actor = require_admin(actor)
        self._target(user_id)
        count = self.sessions.delete_all_for_user(user_id)
        logger.info("Admin id=%s revoked %d session(s) of user id=%s", actor.id, count, user_id)
        return count

    def list_sessions(self, actor: User | None, user_id: int) -> list[Session]:
        require_admin(actor)
        self._target(user_id)
        return self.sessions.list_for_user(user_id)
