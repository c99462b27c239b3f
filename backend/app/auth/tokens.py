"""Access token issuing and verification.

``TokenVerifier.authenticate`` turns a credential into an ``Identity`` or
raises ``Unauthenticated``. A missing credential, a malformed or expired
token, a bad signature and an unknown user all raise the same error kind
with the same public message, so remote callers cannot tell which user
ids exist. The specific reason is kept in ``Unauthenticated.detail`` for
logs.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Mapping, Optional

import jwt

from app.config import AppConfig
from app.users.schemas import User
from app.users.store import UserStore

logger = logging.getLogger(__name__)

# The only message a remote caller ever sees for a failed authentication.
PUBLIC_UNAUTHENTICATED_MESSAGE = "Un-authorized handshake. Token is missing or invalid"


class Unauthenticated(Exception):
    """Credential missing or invalid.

    Attributes:
        detail: Internal reason, for logs only.
    """

    def __init__(self, detail: str = "") -> None:
        super().__init__(PUBLIC_UNAUTHENTICATED_MESSAGE)
        self.detail = detail


@dataclass(frozen=True)
class Identity:
    """A resolved, authenticated user.

    Equality and hashing use ``user_id`` only.
    """
    user_id: str
    user: User = field(compare=False, repr=False)


class TokenVerifier:
    """Verifies access tokens against the user store."""

    def __init__(
        self,
        secret_key: str,
        user_store: UserStore,
        *,
        algorithm: str = "HS256",
        cookie_name: str = "accessToken",
        expire_minutes: int = 60 * 24,
    ) -> None:
        self._secret_key = secret_key
        self._algorithm = algorithm
        self._users = user_store
        self.cookie_name = cookie_name
        self.expire_minutes = expire_minutes

    @classmethod
    def from_config(cls, config: AppConfig, user_store: UserStore) -> "TokenVerifier":
        return cls(
            config.secrets.jwt.secret_key,
            user_store,
            algorithm=config.secrets.jwt.algorithm,
            cookie_name=config.auth.cookie_name,
            expire_minutes=config.auth.access_token_expire_minutes,
        )

    # -----------------------------------------------------------------------
    # Credentials
    # -----------------------------------------------------------------------

    def extract_credential(
        self,
        cookies: Optional[Mapping[str, str]] = None,
        headers: Optional[Mapping[str, str]] = None,
        handshake_token: Optional[str] = None,
    ) -> Optional[str]:
        """Pick the credential out of a request or handshake.

        Precedence: cookie, then ``Authorization: Bearer``, then the
        handshake field. Returns None if none is present.
        """
        if cookies:
            token = (cookies.get(self.cookie_name) or "").strip()
            if token:
                return token

        if headers:
            authorization = headers.get("authorization") or headers.get("Authorization") or ""
            scheme, _, value = authorization.strip().partition(" ")
            if scheme.lower() == "bearer" and value.strip():
                return value.strip()

        if handshake_token and handshake_token.strip():
            return handshake_token.strip()
        return None

    def issue_access_token(self, user_id: str, expires_in: Optional[timedelta] = None) -> str:
        """Mint a signed access token for ``user_id``."""
        now = datetime.now(timezone.utc)
        lifetime = expires_in if expires_in is not None else timedelta(minutes=self.expire_minutes)
        payload = {
            "_id": user_id,
            "sub": user_id,
            "iat": now,
            "exp": now + lifetime,
        }
        return jwt.encode(payload, self._secret_key, algorithm=self._algorithm)

    # -----------------------------------------------------------------------
    # Verification
    # -----------------------------------------------------------------------

    def authenticate(self, credential: Optional[str]) -> Identity:
        """Resolve a credential to an identity.

        Raises:
            Unauthenticated: For every failure, whatever the cause.
        """
        if not credential:
            raise Unauthenticated("token is missing")

        try:
            claims = jwt.decode(
                credential,
                self._secret_key,
                algorithms=[self._algorithm],
                options={"require": ["exp"]},
            )
        except jwt.ExpiredSignatureError:
            raise Unauthenticated("token expired") from None
        except jwt.InvalidTokenError as exc:
            raise Unauthenticated(f"token rejected: {exc}") from None

        user_id = claims.get("_id") or claims.get("sub")
        if not isinstance(user_id, str) or not user_id:
            raise Unauthenticated("token has no user id")

        user = self._users.get(user_id)
        if user is None:
            raise Unauthenticated(f"unknown user {user_id}")
        return Identity(user_id=user.id, user=user)

    def resolve_optional(self, credential: Optional[str]) -> Optional[Identity]:
        """Like ``authenticate`` but returns None instead of raising.

        For routes that serve anonymous callers too.
        """
        try:
            return self.authenticate(credential)
        except Unauthenticated as exc:
            if credential:
                logger.debug("[Auth] Ignoring invalid credential: %s", exc.detail)
            return None
