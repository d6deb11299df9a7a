"""
Account operations for the Commerce service.

Reads go through the cache; writes hit the store first and then delete the
affected cache keys.
"""

from typing import Any, Dict, Optional, Tuple

from shared.errors import AuthenticationError, NotFoundError
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from ..auth.passwords import hash_password, verify_password
from ..auth.token_validator import TokenValidator
from ..cache.redis_cache import (
    DASHBOARD_TTL,
    PROFILE_TTL,
    USER_TTL,
    RedisCache,
    dashboard_key,
    profile_key,
    user_key,
)
from ..models import LoginRequest, PasswordChangeRequest, ProfileUpdateRequest, SignupRequest

CREDENTIAL_FIELDS = ("password_hash", "is_active")


class AccountService:
    """Signup, login, logout, profile and dashboard."""

    def __init__(
        self,
        store: Any,
        cache: RedisCache,
        validator: TokenValidator,
        metrics: Optional[MetricsCollector] = None,
        bcrypt_rounds: int = 12,
    ):
        self.store = store
        self.cache = cache
        self.validator = validator
        self.metrics = metrics
        self.bcrypt_rounds = bcrypt_rounds
        self.logger = get_logger("commerce.accounts")

    def _event(self, event_type: str):
        if self.metrics:
            self.metrics.record_business_event(event_type)

    async def signup(self, request: SignupRequest) -> Tuple[Dict[str, Any], str]:
        """Create a user and issue its first token."""
        password_hash = await hash_password(request.password, self.bcrypt_rounds)
        user = await self.store.create_user(request.username, request.email, password_hash)

        await self.cache.set(user_key(user["id"]), user, USER_TTL)
        token = self.validator.issue_token(user["id"])

        self.logger.info("User signed up", user_id=user["id"])
        self._event("user_signed_up")
        return user, token

    async def login(self, request: LoginRequest) -> Tuple[Dict[str, Any], str]:
        """Check credentials against the store and issue a token."""
        record = await self.store.get_user_credentials(request.email)
        if record is None or not record.get("is_active", True):
            self.logger.info("Login rejected", reason="unknown_user")
            raise AuthenticationError("Invalid credentials")

        if not await verify_password(request.password, record["password_hash"]):
            self.logger.info("Login rejected", reason="bad_password", user_id=record["id"])
            raise AuthenticationError("Invalid credentials")

        await self.store.record_login(record["id"])
        await self.cache.delete_many([user_key(record["id"]), profile_key(record["id"])])

        user = {k: v for k, v in record.items() if k not in CREDENTIAL_FIELDS}
        token = self.validator.issue_token(user["id"])

        self.logger.info("User logged in", user_id=user["id"])
        self._event("user_logged_in")
        return user, token

    async def logout(self, token: str, user_id: Any) -> bool:
        revoked = await self.validator.revoke(token)
        self.logger.info("User logged out", user_id=user_id, revoked=revoked)
        self._event("user_logged_out")
        return revoked

    async def change_password(self, user_id: int, request: PasswordChangeRequest) -> None:
        current_hash = await self.store.get_password_hash(user_id)
        if current_hash is None:
            raise NotFoundError("User not found")

        if not await verify_password(request.current_password, current_hash):
            raise AuthenticationError("Current password is incorrect")

        new_hash = await hash_password(request.new_password, self.bcrypt_rounds)
        await self.store.update_password(user_id, new_hash)
        await self.cache.delete(user_key(user_id))

        self.logger.info("Password changed", user_id=user_id)
        self._event("password_changed")

    async def get_profile(self, user_id: int) -> Dict[str, Any]:
        key = profile_key(user_id)
        profile = await self.cache.get(key)
        if profile is not None:
            return profile

        profile = await self.store.get_profile(user_id)
        if profile is None:
            raise NotFoundError("User not found")

        await self.cache.set(key, profile, PROFILE_TTL)
        return profile

    async def update_profile(self, user_id: int, request: ProfileUpdateRequest) -> None:
        await self.store.upsert_profile(user_id, request.model_dump())
        await self.cache.delete(profile_key(user_id))
        self.logger.info("Profile updated", user_id=user_id)

    async def get_dashboard(self, user_id: int) -> Dict[str, Any]:
        key = dashboard_key(user_id)
        dashboard = await self.cache.get(key)
        if dashboard is not None:
            return dashboard

        dashboard = await self.store.get_dashboard(user_id)
        await self.cache.set(key, dashboard, DASHBOARD_TTL)
        return dashboard
