"""
Authentication middleware for the Commerce service.
"""

from typing import Any, Dict, Optional

from fastapi import Request

from shared.errors import AuthenticationError
from shared.logging import get_logger, set_user_context
from .token_validator import TokenValidator

SESSION_TOKEN_KEY = "token"
SESSION_USER_KEY = "user_id"


class AuthMiddleware:
    """Resolves the caller of a request from its bearer or session token."""

    def __init__(self, validator: TokenValidator):
        self.validator = validator
        self.logger = get_logger("commerce.auth.middleware")

    def extract_token(self, request: Request) -> Optional[str]:
        """Bearer header first, then the session-stored token."""
        auth_header = request.headers.get("Authorization")
        if auth_header and auth_header.startswith("Bearer "):
            token = auth_header[7:].strip()
            if token:
                return token

        if "session" in request.scope:
            return request.session.get(SESSION_TOKEN_KEY)
        return None

    async def authenticate_request(self, request: Request) -> Dict[str, Any]:
        """Validate the request credential and attach identity to request state."""
        token = self.extract_token(request)
        result = await self.validator.validate(token)

        if not result.admitted:
            self.logger.warning(
                "Request authentication failed",
                reason=result.reason.value if result.reason else None,
                path=request.url.path
            )
            raise AuthenticationError()

        request.state.user = result.user
        request.state.token = result.token
        set_user_context(result.user.get("id"))
        return result.user


def start_session(request: Request, token: str, user_id: Any):
    """Store the issued token in the signed session cookie."""
    if "session" in request.scope:
        request.session[SESSION_TOKEN_KEY] = token
        request.session[SESSION_USER_KEY] = user_id


def end_session(request: Request):
    """Drop all session state."""
    if "session" in request.scope:
        request.session.clear()
