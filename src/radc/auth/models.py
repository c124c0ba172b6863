"""
Identity data models.

Data classes for principals, identity records and audit entries.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import FrozenSet, Optional

from .permissions import Permission, Role


@dataclass(frozen=True)
class Principal:
    """
    Authenticated principal as handed over by the identity provider.

    Attributes:
        uid: External principal id (unique, stable)
        email: Email address reported by the provider
        display_name: Name reported by the provider
        photo_url: Avatar URL (optional)
        email_verified: Whether the provider verified the email
    """
    uid: str
    email: str
    display_name: str
    photo_url: Optional[str] = None
    email_verified: bool = False


@dataclass(frozen=True)
class IdentityRecord:
    """
    Persisted identity of one principal.

    Snapshots are immutable; changes produce a new record.

    Attributes:
        uid: External principal id
        display_name: Display name
        email: Email address
        role: Assigned role (VISITOR until changed by an administrator)
        permissions: Explicit permission overrides (additive only)
        registered_at: First authentication timestamp
        last_access_at: Most recent authentication timestamp
        verified: Whether the email is verified
        photo_url: Avatar URL (optional)
        phone: Phone number (optional)
        address: Postal address (optional)
    """
    uid: str
    display_name: str
    email: str
    registered_at: datetime
    last_access_at: datetime
    role: Role = Role.VISITOR
    permissions: FrozenSet[Permission] = field(default_factory=frozenset)
    verified: bool = False
    photo_url: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None

    @classmethod
    def new(cls, principal: Principal, now: datetime) -> "IdentityRecord":
        """Default record for a principal seen for the first time."""
        return cls(
            uid=principal.uid,
            display_name=principal.display_name,
            email=principal.email,
            registered_at=now,
            last_access_at=now,
            verified=principal.email_verified,
            photo_url=principal.photo_url,
        )

    def with_changes(self, **changes) -> "IdentityRecord":
        return replace(self, **changes)


@dataclass(frozen=True)
class AuditEntry:
    """
    Record of a privileged role or permission change.

    Attributes:
        entry_id: Unique entry identifier (UUID)
        actor_uid: Administrator who made the change (None for bootstrap)
        target_uid: Identity that was changed
        action: Action name (e.g., "assign_role", "grant_permissions")
        detail: Human-readable detail of the change
        created_at: When the change was made
    """
    entry_id: str
    actor_uid: Optional[str]
    target_uid: str
    action: str
    detail: str
    created_at: datetime
