#!/usr/bin/env python3
"""
Administrative role and permission management.

Every change is made by an authenticated administrator and written to the
audit log. The only unauthenticated operation is bootstrapping the first
administrator of a fresh installation.

Usage:
    radc-admin bootstrap <uid>
    radc-admin set-role <uid> <role> --actor-token <id token> [--reason TEXT]
    radc-admin grant <uid> <permission>... --actor-token <id token>
    radc-admin show <uid>
    radc-admin audit [uid]
"""

import argparse
import sys
import uuid
from datetime import datetime
from typing import Callable, Iterable, List, Optional

from loguru import logger

from ..config import Settings, get_settings
from .database import IdentityNotFoundError, IdentityStore
from .models import AuditEntry, IdentityRecord
from .permissions import (
    Permission,
    PermissionDeniedError,
    Role,
    coerce_permission,
    coerce_role,
    effective_permissions,
    require_permission,
    require_role,
)
from .tokens import TokenVerifier


class BootstrapRefusedError(Exception):
    """Raised when the first-administrator bootstrap is not allowed."""


class RoleAdministrator:
    """
    Privileged role/permission mutations with an audit trail.
    """

    def __init__(
        self,
        store: IdentityStore,
        min_uid_length: int = 20,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """
        Initialize administrator.

        Args:
            store: Identity store to mutate
            min_uid_length: Shortest principal id accepted by bootstrap
            clock: Source of audit timestamps
        """
        self.store = store
        self.min_uid_length = min_uid_length
        self._clock = clock

    def _authorize(self, actor: Optional[IdentityRecord], action: str) -> None:
        require_role(actor, Role.ADMIN, action=action)
        require_permission(actor, Permission.USERS_MANAGE, action=action)

    def _audit(self, actor_uid: Optional[str], target_uid: str, action: str, detail: str) -> None:
        self.store.record_audit(AuditEntry(
            entry_id=str(uuid.uuid4()),
            actor_uid=actor_uid,
            target_uid=target_uid,
            action=action,
            detail=detail,
            created_at=self._clock(),
        ))

    def _get_target(self, target_uid: str) -> IdentityRecord:
        target = self.store.get_identity(target_uid)
        if target is None:
            raise IdentityNotFoundError(target_uid)
        return target

    def assign_role(
        self,
        actor: Optional[IdentityRecord],
        target_uid: str,
        role: Role,
        reason: Optional[str] = None,
    ) -> IdentityRecord:
        """
        Set the role of an identity.

        Args:
            actor: Administrator making the change
            target_uid: Identity to change
            role: New role
            reason: Free-text justification stored in the audit log

        Returns:
            Updated IdentityRecord

        Raises:
            PermissionDeniedError: If the actor is not an administrator
            IdentityNotFoundError: If the target does not exist
        """
        self._authorize(actor, f"assign role {role.value}")
        target = self._get_target(target_uid)

        updated = self.store.set_role(target_uid, role)

        detail = f"{target.role.value} -> {role.value}"
        if reason:
            detail += f" ({reason})"
        self._audit(actor.uid, target_uid, "assign_role", detail)

        logger.info(f"{actor.uid} assigned role {role.value} to {target_uid}")
        return updated

    def grant_permissions(
        self,
        actor: Optional[IdentityRecord],
        target_uid: str,
        permissions: Iterable[Permission],
        reason: Optional[str] = None,
    ) -> IdentityRecord:
        """
        Add permission overrides to an identity.

        Raises:
            PermissionDeniedError: If the actor is not an administrator
            IdentityNotFoundError: If the target does not exist
            ValueError: If no permission is given
        """
        granted = frozenset(permissions)
        if not granted:
            raise ValueError("No permissions to grant")

        self._authorize(actor, "grant permissions")
        self._get_target(target_uid)

        updated = self.store.grant_permissions(target_uid, granted)

        detail = ", ".join(sorted(p.value for p in granted))
        if reason:
            detail += f" ({reason})"
        self._audit(actor.uid, target_uid, "grant_permissions", detail)

        logger.info(f"{actor.uid} granted {detail} to {target_uid}")
        return updated

    def bootstrap_admin(self, target_uid: str) -> IdentityRecord:
        """
        Make the first administrator of a fresh installation.

        The target must already have signed in once.

        Raises:
            BootstrapRefusedError: If an administrator already exists or the id is malformed
            IdentityNotFoundError: If the target does not exist
        """
        if len(target_uid) < self.min_uid_length:
            raise BootstrapRefusedError(
                f"Invalid principal id (at least {self.min_uid_length} characters expected)"
            )

        target = self._get_target(target_uid)
        updated = self.store.claim_first_admin(target_uid)
        if updated is None:
            raise BootstrapRefusedError(
                "An administrator already exists; ask them to assign the role"
            )

        self._audit(None, target_uid, "bootstrap_admin", f"{target.role.value} -> {Role.ADMIN.value}")

        logger.success(f"Bootstrapped first administrator: {target.email} ({target_uid})")
        return updated


# ============================================================================
# Command line
# ============================================================================

def _resolve_actor(store: IdentityStore, verifier: TokenVerifier, token: str) -> Optional[IdentityRecord]:
    principal = verifier.verify(token)
    if principal is None:
        return None
    return store.get_identity(principal.uid)


def _print_identity(identity: IdentityRecord) -> None:
    print(f"uid:          {identity.uid}")
    print(f"name:         {identity.display_name}")
    print(f"email:        {identity.email}")
    print(f"role:         {identity.role.value}")
    print(f"overrides:    {', '.join(sorted(p.value for p in identity.permissions)) or '-'}")
    print(f"effective:    {', '.join(sorted(p.value for p in effective_permissions(identity))) or '-'}")
    print(f"registered:   {identity.registered_at.isoformat()}")
    print(f"last access:  {identity.last_access_at.isoformat()}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="RADC role administration")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("bootstrap", help="Make the first administrator")
    p.add_argument("uid", help="Principal id of an identity that has signed in once")

    p = sub.add_parser("set-role", help="Assign a role")
    p.add_argument("uid")
    p.add_argument("role", choices=[r.value for r in Role])
    p.add_argument("--actor-token", required=True, help="ID token of the acting administrator")
    p.add_argument("--reason", default=None)

    p = sub.add_parser("grant", help="Grant permission overrides")
    p.add_argument("uid")
    p.add_argument("permissions", nargs="+", metavar="permission")
    p.add_argument("--actor-token", required=True, help="ID token of the acting administrator")
    p.add_argument("--reason", default=None)

    p = sub.add_parser("show", help="Show an identity")
    p.add_argument("uid")

    p = sub.add_parser("audit", help="Show the audit log")
    p.add_argument("uid", nargs="?", default=None)

    return parser


def main(argv: Optional[List[str]] = None, settings: Optional[Settings] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = settings or get_settings()

    logger.remove()
    logger.add(sys.stderr, level=settings.log_level)

    store = IdentityStore(settings.database_path)
    admin = RoleAdministrator(store, min_uid_length=settings.bootstrap_min_uid_length)
    verifier = TokenVerifier.from_settings(settings)

    try:
        if args.command == "bootstrap":
            _print_identity(admin.bootstrap_admin(args.uid))

        elif args.command == "set-role":
            actor = _resolve_actor(store, verifier, args.actor_token)
            _print_identity(admin.assign_role(actor, args.uid, coerce_role(args.role), args.reason))

        elif args.command == "grant":
            permissions = []
            for value in args.permissions:
                permission = coerce_permission(value)
                if permission is None:
                    print(f"Unknown permission: {value}", file=sys.stderr)
                    return 1
                permissions.append(permission)
            actor = _resolve_actor(store, verifier, args.actor_token)
            _print_identity(admin.grant_permissions(actor, args.uid, permissions, args.reason))

        elif args.command == "show":
            identity = store.get_identity(args.uid)
            if identity is None:
                raise IdentityNotFoundError(args.uid)
            _print_identity(identity)

        elif args.command == "audit":
            for entry in store.list_audit(args.uid):
                actor = entry.actor_uid or "<bootstrap>"
                print(f"{entry.created_at.isoformat()}  {actor}  {entry.action}  {entry.target_uid}  {entry.detail}")

    except (PermissionDeniedError, IdentityNotFoundError, BootstrapRefusedError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
