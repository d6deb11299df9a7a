"""
Commerce service for the Commerce Access Service.
"""

from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Query, Request
from starlette.middleware.sessions import SessionMiddleware

from shared.base_service import BaseService
from shared.config import ServiceConfig, get_config
from shared.errors import InfrastructureError, ValidationError
from shared.responses import success_response
from shared.retry import STARTUP_RETRY, RetryError, retry_on_exception
from shared.secrets_manager import build_default_manager

from .accounts.service import AccountService
from .auth.middleware import AuthMiddleware, end_session, start_session
from .auth.token_validator import TokenValidator
from .cache.redis_cache import RedisCache
from .catalog.service import CatalogService
from .models import (
    MAX_ID,
    LoginRequest,
    OrderRequest,
    PasswordChangeRequest,
    ProfileUpdateRequest,
    SignupRequest,
)
from .orders.engine import OrderPlacementEngine
from .persistence.postgres import PostgreSQLPersistence
from .ratelimit.fixed_window import FixedWindowRateLimiter, RateLimitMiddleware

SERVICE_NAME = "commerce"
SERVICE_PORT = 3000


def load_config() -> ServiceConfig:
    """Resolve configuration through the secrets provider chain."""
    bootstrap = get_config(SERVICE_NAME, SERVICE_PORT)
    manager = build_default_manager(
        bootstrap.secrets_mount_path,
        bootstrap.secrets_file,
        bootstrap.master_key,
        env=bootstrap.env,
    )
    return get_config(SERVICE_NAME, SERVICE_PORT, overrides=manager.resolve())


class CommerceService(BaseService):
    """Commerce service implementation."""

    critical_dependencies = ["database"]

    def __init__(self, config: Optional[ServiceConfig] = None, cache_client: Optional[Any] = None,
                 store: Optional[Any] = None):
        super().__init__(SERVICE_NAME, SERVICE_PORT, config)

        self.cache = RedisCache(self.config.redis_url, metrics=self.metrics, client=cache_client)
        self.store = store or PostgreSQLPersistence(
            self.config.postgres_dsn,
            min_size=self.config.postgres_pool_min,
            max_size=self.config.postgres_pool_max,
            command_timeout=self.config.postgres_command_timeout,
        )
        self.validator = TokenValidator(
            self.cache,
            self.store,
            secret=self.config.jwt_secret,
            algorithm=self.config.jwt_algorithm,
            expires_in_seconds=self.config.jwt_expires_in_seconds,
            revocation_ttl_seconds=self.config.token_revocation_ttl_seconds,
            metrics=self.metrics,
        )
        self.auth_middleware = AuthMiddleware(self.validator)
        self.engine = OrderPlacementEngine(self.store, self.cache, metrics=self.metrics)
        self.catalog = CatalogService(self.store, self.cache)
        self.accounts = AccountService(
            self.store,
            self.cache,
            self.validator,
            metrics=self.metrics,
            bcrypt_rounds=self.config.bcrypt_rounds,
        )
        self.rate_limiter = FixedWindowRateLimiter(
            self.cache,
            max_requests=self.config.rate_limit_max_requests,
            window_seconds=self.config.rate_limit_window_seconds,
        )
        self.rate_limit_middleware = RateLimitMiddleware(self.rate_limiter, metrics=self.metrics)

        self._setup_auth_routes()
        self._setup_product_routes()
        self._setup_user_routes()

        # Expose service instance via app state for introspection/testing
        self.app.state.commerce_service = self

    async def startup(self):
        """Connect the store (fatal on failure) and the cache (optional)."""
        await self._start_store()
        try:
            await self._start_cache()
        except RetryError as e:
            self.logger.warning("Continuing without Redis cache", error=str(e.last_exception))

    async def shutdown(self):
        await self.cache.stop()
        await self.store.stop()

    @retry_on_exception(exceptions=(InfrastructureError,), config=STARTUP_RETRY)
    async def _start_store(self):
        await self.store.start()

    @retry_on_exception(exceptions=(InfrastructureError,), config=STARTUP_RETRY)
    async def _start_cache(self):
        await self.cache.start()

    async def _check_dependencies(self) -> Dict[str, Any]:
        """Check database and cache connectivity."""
        return {
            "database": "ok" if await self.store.health_check() else "error",
            "cache": "ok" if await self.cache.health_check() else "error",
        }

    def _setup_service_middleware(self):
        """Sessions and rate limiting, wrapped by CORS and request context."""
        self.app.add_middleware(
            SessionMiddleware,
            secret_key=self.config.session_secret,
            session_cookie="commerce_session",
            max_age=self.config.session_max_age_seconds,
            https_only=self.config.env == "production",
        )

        if self.config.rate_limit_enabled:
            @self.app.middleware("http")
            async def rate_limit(request: Request, call_next):
                return await self.rate_limit_middleware.dispatch(request, call_next)

    async def current_user(self, request: Request) -> Dict[str, Any]:
        """FastAPI dependency resolving the authenticated user."""
        return await self.auth_middleware.authenticate_request(request)

    def _setup_auth_routes(self):
        """Signup, login, logout and current user."""

        @self.app.post("/api/auth/signup", status_code=201)
        async def signup(payload: SignupRequest, request: Request):
            user, token = await self.accounts.signup(payload)
            start_session(request, token, user["id"])
            return success_response(
                {"user": user, "token": token},
                message="User created successfully",
                status_code=201
            )

        @self.app.post("/api/auth/login")
        async def login(payload: LoginRequest, request: Request):
            user, token = await self.accounts.login(payload)
            start_session(request, token, user["id"])
            return success_response({"user": user, "token": token}, message="Login successful")

        @self.app.post("/api/auth/logout")
        async def logout(request: Request, user: Dict[str, Any] = Depends(self.current_user)):
            await self.accounts.logout(request.state.token, user["id"])
            end_session(request)
            return success_response(message="Logout successful")

        @self.app.get("/api/auth/me")
        async def me(user: Dict[str, Any] = Depends(self.current_user)):
            return success_response({"user": user})

    def _setup_product_routes(self):
        """Catalog browsing and order placement."""

        @self.app.get("/api/products")
        async def list_products(
            page: int = Query(1, ge=1),
            limit: int = Query(10, ge=1, le=100),
            category: Optional[str] = Query(None, max_length=50),
        ):
            data = await self.catalog.list_products(page, limit, category or None)
            return success_response(data)

        @self.app.post("/api/products/order", status_code=201)
        async def place_order(payload: OrderRequest, user: Dict[str, Any] = Depends(self.current_user)):
            placed = await self.engine.place_order(user["id"], payload.items)
            return success_response(
                {"order_id": placed.order_id, "total_amount": float(placed.total_amount)},
                message="Order created successfully",
                status_code=201
            )

        @self.app.get("/api/products/orders/my")
        async def my_orders(
            page: int = Query(1, ge=1),
            limit: int = Query(10, ge=1, le=100),
            user: Dict[str, Any] = Depends(self.current_user),
        ):
            data = await self.catalog.list_user_orders(user["id"], page, limit)
            return success_response(data)

        @self.app.get("/api/products/{product_id}")
        async def get_product(product_id: str):
            try:
                parsed_id = int(product_id)
            except ValueError:
                raise ValidationError("Invalid product ID")
            if not 0 < parsed_id <= MAX_ID:
                raise ValidationError("Invalid product ID")
            product = await self.catalog.get_product(parsed_id)
            return success_response({"product": product})

    def _setup_user_routes(self):
        """Profile, password and dashboard."""

        @self.app.get("/api/user/profile")
        async def get_profile(user: Dict[str, Any] = Depends(self.current_user)):
            profile = await self.accounts.get_profile(user["id"])
            return success_response({"profile": profile})

        @self.app.put("/api/user/profile")
        async def update_profile(payload: ProfileUpdateRequest,
                                 user: Dict[str, Any] = Depends(self.current_user)):
            await self.accounts.update_profile(user["id"], payload)
            return success_response(message="Profile updated successfully")

        @self.app.put("/api/user/password")
        async def change_password(payload: PasswordChangeRequest,
                                  user: Dict[str, Any] = Depends(self.current_user)):
            await self.accounts.change_password(user["id"], payload)
            return success_response(message="Password updated successfully")

        @self.app.get("/api/user/dashboard")
        async def dashboard(user: Dict[str, Any] = Depends(self.current_user)):
            data = await self.accounts.get_dashboard(user["id"])
            return success_response(data)


def create_app(config: Optional[ServiceConfig] = None, cache_client: Optional[Any] = None,
               store: Optional[Any] = None) -> FastAPI:
    """Create FastAPI application."""
    service = CommerceService(config=config or load_config(), cache_client=cache_client, store=store)
    return service.app


if __name__ == "__main__":
    CommerceService(config=load_config()).run()
