"""
Identity-provider ID token verification.

The identity provider hands the platform a signed ID token after a
successful sign-in. This module verifies such tokens and turns them into
Principal objects. It can also issue tokens for development and tests.
"""

import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from loguru import logger

from ..config import Settings
from .models import Principal


class TokenVerifier:
    """
    ID token verifier.

    Verifies signature, expiry and, when configured, issuer and audience.
    """

    def __init__(
        self,
        secret_key: str,
        algorithm: str = "HS256",
        issuer: Optional[str] = None,
        audience: Optional[str] = None,
        expire_minutes: int = 60,
    ):
        """
        Initialize verifier.

        Args:
            secret_key: Shared secret used to sign tokens
            algorithm: JWT algorithm (default: HS256)
            issuer: Expected "iss" claim, if any
            audience: Expected "aud" claim, if any
            expire_minutes: Lifetime of tokens created by issue()
        """
        self.secret_key = secret_key
        self.algorithm = algorithm
        self.issuer = issuer
        self.audience = audience
        self.expire_minutes = expire_minutes

    @classmethod
    def from_settings(cls, settings: Settings) -> "TokenVerifier":
        return cls(
            secret_key=settings.token_secret,
            algorithm=settings.token_algorithm,
            issuer=settings.token_issuer,
            audience=settings.token_audience,
            expire_minutes=settings.token_expire_minutes,
        )

    def issue(self, principal: Principal, expires_minutes: Optional[int] = None) -> str:
        """
        Create a signed ID token for a principal.

        Args:
            principal: Principal to encode
            expires_minutes: Lifetime override (negative values give an expired token)

        Returns:
            JWT token string
        """
        now = datetime.now(timezone.utc)
        lifetime = self.expire_minutes if expires_minutes is None else expires_minutes
        expire = now + timedelta(minutes=lifetime)

        payload = {
            "iat": int(now.timestamp()),
            "exp": int(expire.timestamp()),
            "sub": principal.uid,
            "email": principal.email,
            "name": principal.display_name,
            "email_verified": principal.email_verified,
            "jti": secrets.token_urlsafe(16),
        }
        if principal.photo_url:
            payload["picture"] = principal.photo_url
        if self.issuer:
            payload["iss"] = self.issuer
        if self.audience:
            payload["aud"] = self.audience

        token = jwt.encode(payload, self.secret_key, algorithm=self.algorithm)
        logger.debug(f"ID token issued for {principal.uid}")
        return token

    def verify(self, token: str) -> Optional[Principal]:
        """
        Verify and decode an ID token.

        Args:
            token: JWT token string

        Returns:
            Principal if valid, None if invalid
        """
        options = {"require": ["exp", "sub"]}
        if not self.audience:
            options["verify_aud"] = False

        try:
            payload = jwt.decode(
                token,
                self.secret_key,
                algorithms=[self.algorithm],
                audience=self.audience,
                issuer=self.issuer,
                options=options,
            )
        except jwt.ExpiredSignatureError:
            logger.warning("ID token has expired")
            return None
        except jwt.InvalidTokenError as e:
            logger.warning(f"Invalid ID token: {e}")
            return None

        uid = str(payload["sub"])
        email = payload.get("email") or ""
        return Principal(
            uid=uid,
            email=email,
            display_name=payload.get("name") or email or uid,
            photo_url=payload.get("picture"),
            email_verified=bool(payload.get("email_verified", False)),
        )
