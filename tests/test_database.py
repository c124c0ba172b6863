"""
Unit tests for the SQLite identity store.
"""

import json
import sqlite3
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor

import pytest

from radc.auth.database import IdentityNotFoundError, IdentityStore
from radc.auth.models import AuditEntry, Principal
from radc.auth.permissions import Permission, Role


def _raw_update(store: IdentityStore, sql: str, params: tuple) -> None:
    conn = sqlite3.connect(str(store.db_path))
    conn.execute(sql, params)
    conn.commit()
    conn.close()


class TestFindOrCreate:
    """Test first-authentication defaults and idempotency."""

    def test_new_principal_defaults(self, store, make_principal, clock):
        identity = store.find_or_create(make_principal())

        assert identity.role is Role.VISITOR
        assert identity.permissions == frozenset()
        assert identity.registered_at == clock.now
        assert identity.last_access_at == clock.now
        assert identity.verified is True

    def test_idempotent(self, store, make_principal):
        principal = make_principal()
        first = store.find_or_create(principal)
        second = store.find_or_create(principal)

        assert first.uid == second.uid
        assert len(store.list_identities()) == 1

    def test_last_access_refreshed(self, store, make_principal, clock):
        principal = make_principal()
        created = store.find_or_create(principal)

        clock.advance(days=2)
        again = store.find_or_create(principal)

        assert again.registered_at == created.registered_at
        assert again.last_access_at == clock.now

    def test_stored_role_kept(self, store, make_principal):
        principal = make_principal()
        store.find_or_create(principal)
        store.set_role(principal.uid, Role.MANAGER)

        assert store.find_or_create(principal).role is Role.MANAGER

    def test_provider_profile_refreshed(self, store, make_principal):
        principal = make_principal(name="Old Name")
        store.find_or_create(principal)

        renamed = Principal(uid=principal.uid, email="new@example.org", display_name="New Name")
        identity = store.find_or_create(renamed)

        assert identity.display_name == "New Name"
        assert identity.email == "new@example.org"
        assert identity.verified is True

    def test_persists_across_instances(self, tmp_path, make_principal):
        principal = make_principal()
        IdentityStore(tmp_path / "shared.db").find_or_create(principal)

        assert IdentityStore(tmp_path / "shared.db").get_identity(principal.uid) is not None


class TestMalformedRows:
    """Test fail-closed decoding of stored records."""

    def test_missing_role_is_visitor(self, store, make_principal):
        principal = make_principal()
        store.find_or_create(principal)
        _raw_update(store, "UPDATE identities SET role = NULL WHERE uid = ?", (principal.uid,))

        assert store.get_identity(principal.uid).role is Role.VISITOR

    def test_unknown_role_is_visitor(self, store, make_principal):
        principal = make_principal()
        store.find_or_create(principal)
        _raw_update(store, "UPDATE identities SET role = 'superuser' WHERE uid = ?", (principal.uid,))

        assert store.get_identity(principal.uid).role is Role.VISITOR

    def test_unknown_overrides_dropped(self, store, make_principal):
        principal = make_principal()
        store.find_or_create(principal)
        _raw_update(
            store,
            "UPDATE identities SET permissions = ? WHERE uid = ?",
            ('["analytics_view", "everything"]', principal.uid),
        )

        assert store.get_identity(principal.uid).permissions == {Permission.ANALYTICS_VIEW}

    @pytest.mark.parametrize("raw", ["not json", '{"a": 1}', None])
    def test_malformed_overrides_ignored(self, store, make_principal, raw):
        principal = make_principal()
        store.find_or_create(principal)
        _raw_update(store, "UPDATE identities SET permissions = ? WHERE uid = ?", (raw, principal.uid))

        assert store.get_identity(principal.uid).permissions == frozenset()


class TestProfileAndPrivilegedUpdates:
    def test_update_profile(self, store, make_principal, clock):
        principal = make_principal()
        store.find_or_create(principal)
        clock.advance(hours=1)

        identity = store.update_profile(principal.uid, phone="+243 000 000", address="Kinshasa")

        assert identity.phone == "+243 000 000"
        assert identity.address == "Kinshasa"
        assert identity.display_name == principal.display_name
        assert identity.last_access_at == clock.now

    def test_update_profile_unknown(self, store):
        with pytest.raises(IdentityNotFoundError):
            store.update_profile("missing", phone="1")

    def test_grant_is_append_only(self, store, make_principal):
        principal = make_principal()
        store.find_or_create(principal)

        store.grant_permissions(principal.uid, [Permission.ANALYTICS_VIEW])
        identity = store.grant_permissions(principal.uid, [Permission.FORUM_MODERATE])

        assert identity.permissions == {Permission.ANALYTICS_VIEW, Permission.FORUM_MODERATE}
        assert store.get_identity(principal.uid).permissions == identity.permissions

    def test_grant_keeps_unrecognised_stored_overrides(self, store, make_principal):
        principal = make_principal()
        store.find_or_create(principal)
        _raw_update(
            store,
            "UPDATE identities SET permissions = ? WHERE uid = ?",
            ('["analytics_view", "reports_export"]', principal.uid),
        )

        identity = store.grant_permissions(principal.uid, [Permission.FORUM_MODERATE])

        assert identity.permissions == {Permission.ANALYTICS_VIEW, Permission.FORUM_MODERATE}
        conn = sqlite3.connect(str(store.db_path))
        raw = conn.execute("SELECT permissions FROM identities WHERE uid = ?", (principal.uid,)).fetchone()[0]
        conn.close()
        assert json.loads(raw) == ["analytics_view", "forum_moderate", "reports_export"]

    def test_grant_unknown_identity(self, store):
        with pytest.raises(IdentityNotFoundError):
            store.grant_permissions("missing", [Permission.FORUM_MODERATE])

    def test_claim_first_admin(self, store, make_principal):
        first = make_principal(uid=f"uid-{1:022d}")
        second = make_principal(uid=f"uid-{2:022d}")
        store.find_or_create(first)
        store.find_or_create(second)

        assert store.claim_first_admin(first.uid).role is Role.ADMIN
        assert store.claim_first_admin(second.uid) is None
        assert store.get_identity(second.uid).role is Role.VISITOR

    def test_claim_first_admin_unknown(self, store):
        with pytest.raises(IdentityNotFoundError):
            store.claim_first_admin("missing")

    def test_concurrent_claims_promote_one(self, store, make_principal):
        uids = [f"uid-{i:022d}" for i in range(8)]
        for uid in uids:
            store.find_or_create(make_principal(uid=uid))

        barrier = threading.Barrier(len(uids))

        def claim(uid):
            barrier.wait()
            return store.claim_first_admin(uid)

        with ThreadPoolExecutor(max_workers=len(uids)) as pool:
            results = list(pool.map(claim, uids))

        assert sum(result is not None for result in results) == 1
        assert store.count_by_role(Role.ADMIN) == 1

    def test_set_role_unknown(self, store):
        with pytest.raises(IdentityNotFoundError):
            store.set_role("missing", Role.ADMIN)

    def test_count_by_role(self, store, make_principal):
        for i in range(3):
            store.find_or_create(make_principal(uid=f"uid-{i:022d}"))
        store.set_role(f"uid-{0:022d}", Role.ADMIN)

        assert store.count_by_role(Role.ADMIN) == 1
        assert store.count_by_role(Role.VISITOR) == 2


class TestAuditLog:
    def test_record_and_filter(self, store, clock):
        for target in ("a", "b", "a"):
            store.record_audit(AuditEntry(
                entry_id=str(uuid.uuid4()),
                actor_uid="admin",
                target_uid=target,
                action="assign_role",
                detail="visitor -> donor",
                created_at=clock.now,
            ))
            clock.advance(minutes=1)

        assert len(store.list_audit()) == 3
        entries = store.list_audit("a")
        assert [e.target_uid for e in entries] == ["a", "a"]
        assert entries[0].created_at < entries[1].created_at
