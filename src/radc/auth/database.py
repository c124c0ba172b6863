"""
SQLite identity store.

Thread-safe find-or-create store for identity records and the audit log
of privileged role/permission changes.
"""

import json
import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import Callable, FrozenSet, Iterable, List, Optional

from loguru import logger

from .models import AuditEntry, IdentityRecord, Principal
from .permissions import Permission, Role, coerce_permission, coerce_role


class IdentityNotFoundError(LookupError):
    """Raised when an operation targets an identity that does not exist."""

    def __init__(self, uid: str):
        self.uid = uid
        super().__init__(f"Identity not found: {uid}")


class IdentityStore:
    """
    Thread-safe identity store.

    Records are keyed by the external principal id. All operations are
    protected by threading.RLock. Records are never deleted.
    """

    def __init__(self, db_path: Path, clock: Callable[[], datetime] = datetime.now):
        """
        Initialize store.

        Args:
            db_path: Path to SQLite database file
            clock: Source of the current time
        """
        self.db_path = Path(db_path)
        self._clock = clock
        self._lock = threading.RLock()
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self):
        """Create tables if they don't exist."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        with self._lock:
            conn = self._connect()
            cursor = conn.cursor()

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS identities (
                    uid TEXT PRIMARY KEY,
                    display_name TEXT NOT NULL,
                    email TEXT NOT NULL,
                    role TEXT DEFAULT 'visitor',
                    permissions TEXT DEFAULT '[]',
                    registered_at TEXT NOT NULL,
                    last_access_at TEXT NOT NULL,
                    verified INTEGER DEFAULT 0,
                    photo_url TEXT,
                    phone TEXT,
                    address TEXT
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS audit_log (
                    entry_id TEXT PRIMARY KEY,
                    actor_uid TEXT,
                    target_uid TEXT NOT NULL,
                    action TEXT NOT NULL,
                    detail TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
            """)

            cursor.execute("CREATE INDEX IF NOT EXISTS idx_identities_role ON identities(role)")
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_audit_target ON audit_log(target_uid)")

            conn.commit()
            conn.close()

            logger.info(f"Identity store initialized: {self.db_path}")

    # ========================================================================
    # Row decoding
    # ========================================================================

    @staticmethod
    def _decode_permissions(uid: str, raw: Optional[str]) -> FrozenSet[Permission]:
        try:
            values = json.loads(raw) if raw else []
        except (TypeError, ValueError):
            logger.warning(f"Malformed permission overrides for {uid}, ignoring them")
            return frozenset()

        if not isinstance(values, list):
            logger.warning(f"Malformed permission overrides for {uid}, ignoring them")
            return frozenset()

        permissions = set()
        for value in values:
            permission = coerce_permission(value)
            if permission is None:
                logger.warning(f"Dropping unknown permission override {value!r} for {uid}")
                continue
            permissions.add(permission)
        return frozenset(permissions)

    @staticmethod
    def _raw_permissions(raw: Optional[str]) -> List[str]:
        # Stored override strings as-is, unknown values included
        try:
            values = json.loads(raw) if raw else []
        except (TypeError, ValueError):
            return []
        if not isinstance(values, list):
            return []
        return [value for value in values if isinstance(value, str)]

    @staticmethod
    def _encode_permissions(permissions: Iterable[Permission]) -> str:
        return json.dumps(sorted(p.value for p in permissions))

    def _row_to_identity(self, row: sqlite3.Row) -> IdentityRecord:
        role = coerce_role(row["role"])
        if role is None:
            logger.warning(f"Identity {row['uid']} has invalid role {row['role']!r}, treating as visitor")
            role = Role.VISITOR

        return IdentityRecord(
            uid=row["uid"],
            display_name=row["display_name"],
            email=row["email"],
            role=role,
            permissions=self._decode_permissions(row["uid"], row["permissions"]),
            registered_at=datetime.fromisoformat(row["registered_at"]),
            last_access_at=datetime.fromisoformat(row["last_access_at"]),
            verified=bool(row["verified"]),
            photo_url=row["photo_url"],
            phone=row["phone"],
            address=row["address"],
        )

    # ========================================================================
    # Identity Operations
    # ========================================================================

    def find_or_create(self, principal: Principal) -> IdentityRecord:
        """
        Resolve the identity record for an authenticated principal.

        Existing records get their last-access time and provider-owned
        profile fields refreshed; role and overrides are left as stored.
        New principals get the default VISITOR record.

        Args:
            principal: Principal from the identity provider

        Returns:
            The authoritative IdentityRecord for this session
        """
        now = self._clock()

        with self._lock:
            conn = self._connect()
            cursor = conn.cursor()

            cursor.execute("SELECT * FROM identities WHERE uid = ?", (principal.uid,))
            row = cursor.fetchone()

            if row is None:
                identity = IdentityRecord.new(principal, now)
                cursor.execute("""
                    INSERT INTO identities (uid, display_name, email, role, permissions,
                                            registered_at, last_access_at, verified, photo_url)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    identity.uid,
                    identity.display_name,
                    identity.email,
                    identity.role.value,
                    self._encode_permissions(identity.permissions),
                    identity.registered_at.isoformat(),
                    identity.last_access_at.isoformat(),
                    1 if identity.verified else 0,
                    identity.photo_url,
                ))
                conn.commit()
                conn.close()

                logger.info(f"Identity created: {identity.email} ({identity.uid}) with role: {identity.role.value}")
                return identity

            cursor.execute("""
                UPDATE identities
                SET last_access_at = ?, email = ?, display_name = ?,
                    photo_url = COALESCE(?, photo_url),
                    verified = MAX(verified, ?)
                WHERE uid = ?
            """, (
                now.isoformat(),
                principal.email,
                principal.display_name,
                principal.photo_url,
                1 if principal.email_verified else 0,
                principal.uid,
            ))
            conn.commit()

            cursor.execute("SELECT * FROM identities WHERE uid = ?", (principal.uid,))
            row = cursor.fetchone()
            conn.close()

            identity = self._row_to_identity(row)
            logger.debug(f"Identity resolved: {identity.uid} ({identity.role.value})")
            return identity

    def get_identity(self, uid: str) -> Optional[IdentityRecord]:
        """
        Get identity by external id.

        Args:
            uid: Principal id to search for

        Returns:
            IdentityRecord if found, None otherwise
        """
        with self._lock:
            conn = self._connect()
            cursor = conn.cursor()

            cursor.execute("SELECT * FROM identities WHERE uid = ?", (uid,))
            row = cursor.fetchone()
            conn.close()

            if not row:
                return None

            return self._row_to_identity(row)

    def list_identities(self) -> List[IdentityRecord]:
        """
        Get all identities, ordered by email.

        Returns:
            List of all IdentityRecord objects
        """
        with self._lock:
            conn = self._connect()
            cursor = conn.cursor()

            cursor.execute("SELECT * FROM identities ORDER BY email")
            rows = cursor.fetchall()
            conn.close()

            return [self._row_to_identity(row) for row in rows]

    def count_by_role(self, role: Role) -> int:
        with self._lock:
            conn = self._connect()
            cursor = conn.cursor()

            cursor.execute("SELECT COUNT(*) FROM identities WHERE role = ?", (role.value,))
            count = cursor.fetchone()[0]
            conn.close()

            return count

    def update_profile(
        self,
        uid: str,
        display_name: Optional[str] = None,
        phone: Optional[str] = None,
        address: Optional[str] = None,
        photo_url: Optional[str] = None,
    ) -> IdentityRecord:
        """
        Update self-service profile fields.

        Role and permission overrides cannot be changed here. Fields left
        as None keep their stored value.

        Args:
            uid: Identity to update
            display_name: New display name
            phone: New phone number
            address: New postal address
            photo_url: New avatar URL

        Returns:
            The updated IdentityRecord

        Raises:
            IdentityNotFoundError: If the identity does not exist
        """
        now = self._clock()

        with self._lock:
            conn = self._connect()
            cursor = conn.cursor()

            cursor.execute("""
                UPDATE identities
                SET display_name = COALESCE(?, display_name),
                    phone = COALESCE(?, phone),
                    address = COALESCE(?, address),
                    photo_url = COALESCE(?, photo_url),
                    last_access_at = ?
                WHERE uid = ?
            """, (display_name, phone, address, photo_url, now.isoformat(), uid))
            conn.commit()
            success = cursor.rowcount > 0
            conn.close()

        if not success:
            raise IdentityNotFoundError(uid)

        logger.info(f"Profile updated: {uid}")
        return self.get_identity(uid)

    # ========================================================================
    # Privileged Operations (called by radc.auth.admin only)
    # ========================================================================

    def set_role(self, uid: str, role: Role) -> IdentityRecord:
        """
        Set the role of an identity.

        Raises:
            IdentityNotFoundError: If the identity does not exist
        """
        with self._lock:
            conn = self._connect()
            cursor = conn.cursor()

            cursor.execute("UPDATE identities SET role = ? WHERE uid = ?", (role.value, uid))
            conn.commit()
            success = cursor.rowcount > 0
            conn.close()

            if not success:
                raise IdentityNotFoundError(uid)

            logger.info(f"Role set for {uid}: {role.value}")
            return self.get_identity(uid)

    def claim_first_admin(self, uid: str) -> Optional[IdentityRecord]:
        """
        Make an identity admin only if no admin exists yet.

        The check and the update are one statement, so concurrent claims
        (from threads or other processes) promote at most one identity.

        Returns:
            Updated IdentityRecord, or None if an admin already exists

        Raises:
            IdentityNotFoundError: If the identity does not exist
        """
        with self._lock:
            conn = self._connect()
            cursor = conn.cursor()

            cursor.execute("""
                UPDATE identities SET role = ?
                WHERE uid = ?
                  AND NOT EXISTS (SELECT 1 FROM identities WHERE role = ?)
            """, (Role.ADMIN.value, uid, Role.ADMIN.value))
            conn.commit()
            claimed = cursor.rowcount > 0
            conn.close()

            identity = self.get_identity(uid)
            if identity is None:
                raise IdentityNotFoundError(uid)
            if not claimed:
                return None

            logger.info(f"Role set for {uid}: {Role.ADMIN.value}")
            return identity

    def grant_permissions(self, uid: str, permissions: Iterable[Permission]) -> IdentityRecord:
        """
        Append permission overrides to an identity.

        Overrides are only ever added; existing ones are kept, including
        stored values this version does not recognise.

        Raises:
            IdentityNotFoundError: If the identity does not exist
        """
        granted = frozenset(permissions)

        with self._lock:
            conn = self._connect()
            cursor = conn.cursor()

            cursor.execute("SELECT * FROM identities WHERE uid = ?", (uid,))
            row = cursor.fetchone()
            if row is None:
                conn.close()
                raise IdentityNotFoundError(uid)

            identity = self._row_to_identity(row)
            stored = self._raw_permissions(row["permissions"])
            merged_raw = sorted(set(stored) | {p.value for p in granted})

            cursor.execute(
                "UPDATE identities SET permissions = ? WHERE uid = ?",
                (json.dumps(merged_raw), uid),
            )
            conn.commit()
            conn.close()

            merged = identity.permissions | granted
            logger.info(f"Permissions granted to {uid}: {', '.join(sorted(p.value for p in merged))}")
            return identity.with_changes(permissions=merged)

    # ========================================================================
    # Audit Log
    # ========================================================================

    def record_audit(self, entry: AuditEntry) -> None:
        with self._lock:
            conn = self._connect()
            cursor = conn.cursor()

            cursor.execute("""
                INSERT INTO audit_log (entry_id, actor_uid, target_uid, action, detail, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
            """, (
                entry.entry_id,
                entry.actor_uid,
                entry.target_uid,
                entry.action,
                entry.detail,
                entry.created_at.isoformat(),
            ))

            conn.commit()
            conn.close()

    def list_audit(self, target_uid: Optional[str] = None) -> List[AuditEntry]:
        """
        Get audit entries, oldest first.

        Args:
            target_uid: Only return entries about this identity

        Returns:
            List of AuditEntry objects
        """
        with self._lock:
            conn = self._connect()
            cursor = conn.cursor()

            if target_uid is None:
                cursor.execute("SELECT * FROM audit_log ORDER BY created_at, rowid")
            else:
                cursor.execute(
                    "SELECT * FROM audit_log WHERE target_uid = ? ORDER BY created_at, rowid",
                    (target_uid,),
                )
            rows = cursor.fetchall()
            conn.close()

            return [
                AuditEntry(
                    entry_id=row["entry_id"],
                    actor_uid=row["actor_uid"],
                    target_uid=row["target_uid"],
                    action=row["action"],
                    detail=row["detail"],
                    created_at=datetime.fromisoformat(row["created_at"]),
                )
                for row in rows
            ]
