"""
Token validation for the Commerce service.

A bearer token is admitted only when it is not on the revocation blacklist,
its HS256 signature and expiry verify, and its subject still resolves to an
active user.
"""

import time
import uuid
from enum import Enum
from typing import Any, Dict, Optional

from jose import JWTError, jwt
from pydantic import BaseModel

from shared.logging import get_logger
from shared.metrics import MetricsCollector
from ..cache.redis_cache import RedisCache, USER_TTL, blacklist_key, user_key


class TokenState(str, Enum):
    """Terminal validation states."""
    ADMITTED = "admitted"
    REJECTED = "rejected"


class RejectionReason(str, Enum):
    """Why a token was rejected. Logged, never returned to the client."""
    NO_CREDENTIAL = "no_credential"
    REVOKED = "revoked"
    INVALID = "invalid"
    UNKNOWN_SUBJECT = "unknown_subject"


class TokenValidationResult(BaseModel):
    """Outcome of validating one token."""
    state: TokenState
    reason: Optional[RejectionReason] = None
    user: Optional[Dict[str, Any]] = None
    token: Optional[str] = None

    @property
    def admitted(self) -> bool:
        return self.state == TokenState.ADMITTED


class TokenValidator:
    """Issues, validates and revokes bearer tokens."""

    def __init__(
        self,
        cache: RedisCache,
        store: Any,
        secret: str,
        algorithm: str = "HS256",
        expires_in_seconds: int = 7 * 24 * 3600,
        revocation_ttl_seconds: int = 7 * 24 * 3600,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.cache = cache
        self.store = store
        self.secret = secret
        self.algorithm = algorithm
        self.expires_in_seconds = expires_in_seconds
        self.revocation_ttl_seconds = revocation_ttl_seconds
        self.metrics = metrics
        self.logger = get_logger("commerce.auth.token_validator")

    @property
    def blacklist_ttl(self) -> int:
        """Revocation entries outlive the longest token the service issues."""
        return max(self.revocation_ttl_seconds, self.expires_in_seconds)

    def issue_token(self, user_id: Any) -> str:
        """Sign a token for ``user_id``."""
        now = int(time.time())
        claims = {
            "sub": str(user_id),
            "iat": now,
            "exp": now + self.expires_in_seconds,
            "jti": uuid.uuid4().hex,
        }
        return jwt.encode(claims, self.secret, algorithm=self.algorithm)

    async def validate(self, token: Optional[str]) -> TokenValidationResult:
        """Run the validation state machine for one token."""
        if not token:
            return self._reject(RejectionReason.NO_CREDENTIAL)

        try:
            if await self.cache.exists(blacklist_key(token)):
                return self._reject(RejectionReason.REVOKED)

            try:
                claims = jwt.decode(
                    token,
                    self.secret,
                    algorithms=[self.algorithm],
                    options={"require_exp": True, "require_sub": True},
                )
            except JWTError as e:
                self.logger.info("Token verification failed", error=str(e))
                return self._reject(RejectionReason.INVALID)

            user_id = int(claims["sub"])
            user = await self.resolve_user(user_id)
            if user is None:
                return self._reject(RejectionReason.UNKNOWN_SUBJECT, user_id=user_id)

        except Exception as e:
            self.logger.error("Token validation error", error=str(e))
            return self._reject(RejectionReason.INVALID)

        self._record("admitted")
        return TokenValidationResult(state=TokenState.ADMITTED, user=user, token=token)

    async def resolve_user(self, user_id: int) -> Optional[Dict[str, Any]]:
        """Identity projection for ``user_id``, read through the cache."""
        key = user_key(user_id)
        user = await self.cache.get(key)
        if user is not None:
            return user

        user = await self.store.get_user_identity(user_id)
        if user is None:
            return None

        await self.cache.set(key, user, USER_TTL)
        return user

    async def revoke(self, token: str) -> bool:
        """Add ``token`` to the blacklist."""
        revoked = await self.cache.set(blacklist_key(token), True, self.blacklist_ttl)
        if not revoked:
            self.logger.warning("Token revocation not recorded, cache unavailable")
        return revoked

    def _reject(self, reason: RejectionReason, **fields) -> TokenValidationResult:
        self.logger.info("Token rejected", reason=reason.value, **fields)
        self._record(reason.value)
        return TokenValidationResult(state=TokenState.REJECTED, reason=reason)

    def _record(self, outcome: str):
        if self.metrics:
            self.metrics.increment_counter("token_validations_total", outcome=outcome)
