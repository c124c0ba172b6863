"""
Authentication session.

Bridges the external identity provider and the identity store: every
session-state change emitted by the provider becomes a new, immutable
AuthState snapshot that the route guard evaluates.
"""

from dataclasses import dataclass
from typing import Callable, List, Optional

from loguru import logger

from .database import IdentityStore
from .models import IdentityRecord, Principal
from .permissions import PermissionLike, RoleLike, has_permission, has_role
from .tokens import TokenVerifier


AuthListener = Callable[[Optional[Principal], bool], None]
StateListener = Callable[["AuthState"], None]


@dataclass(frozen=True)
class AuthState:
    """
    Snapshot of the authentication state.

    Attributes:
        identity: Resolved identity record, None when signed out
        is_loading: Whether the session is still being resolved
        error: Last error message from the provider or the store
    """
    identity: Optional[IdentityRecord] = None
    is_loading: bool = True
    error: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return self.identity is not None and not self.is_loading


class IdentityProvider:
    """
    Base class for identity providers.

    Providers notify subscribers with (principal | None, is_loading) on
    every session-state change, in the order the changes happen.
    """

    def __init__(self):
        self._subscribers: List[AuthListener] = []

    def subscribe(self, callback: AuthListener) -> Callable[[], None]:
        """
        Register for session-state changes.

        Returns:
            Function that removes the subscription
        """
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _emit(self, principal: Optional[Principal], is_loading: bool) -> None:
        for callback in list(self._subscribers):
            callback(principal, is_loading)

    def sign_in_with_provider(self, credential: str) -> None:
        raise NotImplementedError

    def sign_out(self) -> None:
        raise NotImplementedError


class TokenIdentityProvider(IdentityProvider):
    """
    Identity provider whose credential is a signed ID token.
    """

    def __init__(self, verifier: TokenVerifier):
        super().__init__()
        self.verifier = verifier
        self.current: Optional[Principal] = None

    def restore(self, token: Optional[str]) -> None:
        """
        Resolve the initial session from a stored token, if any.
        """
        if token is None:
            self.current = None
            self._emit(None, False)
            return
        self.sign_in_with_provider(token)

    def sign_in_with_provider(self, credential: str) -> None:
        self._emit(self.current, True)

        principal = self.verifier.verify(credential)
        if principal is None:
            logger.warning("Sign-in rejected: invalid ID token")
        self.current = principal
        self._emit(principal, False)

    def sign_out(self) -> None:
        self.current = None
        self._emit(None, False)
        logger.info("Signed out")


class AuthSession:
    """
    Current authentication state of one client.

    Subscribes to the identity provider on construction and resolves each
    authenticated principal through the identity store.
    """

    def __init__(self, provider: IdentityProvider, store: IdentityStore):
        """
        Initialize session.

        Args:
            provider: Identity provider to follow
            store: Identity store used for find-or-create
        """
        self.provider = provider
        self.store = store
        self.state = AuthState()
        self._listeners: List[StateListener] = []
        self._unsubscribe: Optional[Callable[[], None]] = provider.subscribe(self._on_auth_changed)

    def on_change(self, callback: StateListener) -> Callable[[], None]:
        """
        Register for state snapshots.

        Returns:
            Function that removes the listener
        """
        self._listeners.append(callback)

        def remove():
            if callback in self._listeners:
                self._listeners.remove(callback)

        return remove

    def close(self) -> None:
        """Stop following the provider. Later changes are ignored."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self._listeners.clear()

    def _publish(self, state: AuthState) -> None:
        self.state = state
        for callback in list(self._listeners):
            callback(state)

    def _on_auth_changed(self, principal: Optional[Principal], is_loading: bool) -> None:
        if is_loading:
            self._publish(AuthState(identity=self.state.identity, is_loading=True))
            return

        if principal is None:
            self._publish(AuthState(identity=None, is_loading=False))
            return

        try:
            identity = self.store.find_or_create(principal)
        except Exception as e:
            logger.error(f"Failed to resolve identity for {principal.uid}: {e}")
            self._publish(AuthState(identity=None, is_loading=False, error="Could not load your account"))
            return

        logger.success(f"User authenticated: {identity.email} ({identity.uid})")
        self._publish(AuthState(identity=identity, is_loading=False))

    def sign_in(self, credential: str) -> None:
        self.provider.sign_in_with_provider(credential)

    def sign_out(self) -> None:
        self.provider.sign_out()

    def clear_error(self) -> None:
        if self.state.error is not None:
            self._publish(AuthState(identity=self.state.identity, is_loading=self.state.is_loading))

    def update_profile(self, **fields) -> None:
        """
        Update the signed-in identity's profile.

        Failures are reported through the state's error, not raised.
        """
        identity = self.state.identity
        if identity is None:
            return

        try:
            updated = self.store.update_profile(identity.uid, **fields)
        except Exception as e:
            logger.error(f"Failed to update profile for {identity.uid}: {e}")
            self._publish(AuthState(identity=identity, is_loading=False, error="Could not update your profile"))
            return

        self._publish(AuthState(identity=updated, is_loading=False))

    def has_role(self, required_role: RoleLike) -> bool:
        return has_role(self.state.identity, required_role)

    def has_permission(self, required_permission: PermissionLike) -> bool:
        return has_permission(self.state.identity, required_permission)
