"""
Unit tests for the authentication session and identity providers.
"""

from radc.auth.guard import GuardState, ProtectedResource, evaluate
from radc.auth.permissions import Permission, Role
from radc.auth.session import AuthSession, AuthState, IdentityProvider, TokenIdentityProvider


class ManualProvider(IdentityProvider):
    """Provider driven directly by the test."""

    def emit(self, principal, is_loading):
        self._emit(principal, is_loading)

    def sign_in_with_provider(self, credential):
        self.emit(None, True)

    def sign_out(self):
        self.emit(None, False)


class BrokenStore:
    def find_or_create(self, principal):
        raise RuntimeError("database unavailable")

    def update_profile(self, uid, **fields):
        raise RuntimeError("database unavailable")


class TestAuthState:
    def test_initial_state_is_loading(self):
        state = AuthState()
        assert state.is_loading
        assert not state.is_authenticated

    def test_authenticated_requires_resolution(self, make_identity):
        assert not AuthState(identity=make_identity(), is_loading=True).is_authenticated
        assert AuthState(identity=make_identity(), is_loading=False).is_authenticated


class TestAuthSession:
    """Test state transitions driven by provider emissions."""

    def test_sign_in_resolves_identity(self, store, make_principal):
        provider = ManualProvider()
        session = AuthSession(provider, store)

        provider.emit(make_principal(), False)

        assert session.state.is_authenticated
        assert session.state.identity.role is Role.VISITOR
        assert store.get_identity(make_principal().uid) is not None

    def test_snapshots_delivered_in_order(self, store, make_principal):
        provider = ManualProvider()
        session = AuthSession(provider, store)
        seen = []
        session.on_change(seen.append)

        provider.emit(None, True)
        provider.emit(make_principal(), False)
        provider.emit(None, False)

        assert [s.is_loading for s in seen] == [True, False, False]
        assert seen[1].identity is not None
        assert seen[2].identity is None

    def test_loading_keeps_previous_identity(self, store, make_principal):
        provider = ManualProvider()
        session = AuthSession(provider, store)
        provider.emit(make_principal(), False)

        provider.emit(None, True)

        assert session.state.is_loading
        assert session.state.identity is not None

    def test_store_failure_falls_back_to_unauthenticated(self, make_principal):
        provider = ManualProvider()
        session = AuthSession(provider, BrokenStore())

        provider.emit(make_principal(), False)

        assert not session.state.is_loading
        assert session.state.identity is None
        assert session.state.error
        assert evaluate(session.state).state is GuardState.UNAUTHENTICATED

    def test_close_drops_updates(self, store, make_principal):
        provider = ManualProvider()
        session = AuthSession(provider, store)
        seen = []
        session.on_change(seen.append)

        session.close()
        provider.emit(make_principal(), False)

        assert seen == []
        assert session.state.is_loading

    def test_checks_follow_latest_snapshot(self, store, make_principal):
        provider = ManualProvider()
        session = AuthSession(provider, store)
        principal = make_principal()
        provider.emit(principal, False)
        assert not session.has_permission(Permission.DASHBOARD_VIEW)

        store.set_role(principal.uid, Role.DONOR)
        provider.emit(principal, False)

        assert session.has_role(Role.DONOR)
        assert session.has_permission(Permission.DASHBOARD_VIEW)

    def test_update_profile(self, store, make_principal):
        provider = ManualProvider()
        session = AuthSession(provider, store)
        provider.emit(make_principal(), False)

        session.update_profile(phone="+243 81 000 0000")

        assert session.state.identity.phone == "+243 81 000 0000"
        assert session.state.identity.role is Role.VISITOR

    def test_update_profile_failure_reported(self, make_identity):
        provider = ManualProvider()
        session = AuthSession(provider, BrokenStore())
        session.state = AuthState(identity=make_identity(), is_loading=False)

        session.update_profile(phone="1")

        assert session.state.error
        assert session.state.identity is not None

        session.clear_error()
        assert session.state.error is None

    def test_update_profile_signed_out_is_noop(self, store):
        session = AuthSession(ManualProvider(), store)
        session.update_profile(phone="1")
        assert session.state == AuthState()


class TestTokenIdentityProvider:
    def test_sign_in_and_out(self, store, verifier, make_principal):
        provider = TokenIdentityProvider(verifier)
        session = AuthSession(provider, store)
        seen = []
        session.on_change(seen.append)

        session.sign_in(verifier.issue(make_principal()))
        assert [s.is_loading for s in seen] == [True, False]
        assert session.state.is_authenticated

        session.sign_out()
        assert session.state == AuthState(identity=None, is_loading=False)

    def test_invalid_token(self, store, verifier, make_principal):
        provider = TokenIdentityProvider(verifier)
        session = AuthSession(provider, store)

        session.sign_in(verifier.issue(make_principal(), expires_minutes=-1))

        assert not session.state.is_loading
        assert session.state.identity is None

    def test_restore_without_token(self, store, verifier):
        provider = TokenIdentityProvider(verifier)
        session = AuthSession(provider, store)
        assert session.state.is_loading

        provider.restore(None)

        assert not session.state.is_loading
        assert evaluate(session.state, ProtectedResource(required_role=Role.ADMIN)).redirect_to == "/login"

    def test_restore_with_token(self, store, verifier, make_principal):
        provider = TokenIdentityProvider(verifier)
        session = AuthSession(provider, store)

        provider.restore(verifier.issue(make_principal()))

        assert session.state.is_authenticated
        assert provider.current == make_principal()
