"""
Base service class for commerce services.
"""

from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional, Tuple
import time
import os

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST
from starlette.exceptions import HTTPException as StarletteHTTPException

from shared.config import ServiceConfig, get_config
from shared.errors import CommerceError, ErrorResponse, InfrastructureError
from shared.logging import clear_context, configure_logging, get_logger, get_request_id, set_request_id
from shared.metrics import get_metrics_collector


class BaseService:
    """Base service class with common functionality."""

    # Dependencies whose failure makes the service unhealthy (503).
    critical_dependencies: List[str] = []

    def __init__(self, service_name: str, port: int, config: Optional[ServiceConfig] = None):
        self.service_name = service_name
        self.port = port
        self.config = config or get_config(service_name, port)

        configure_logging(service_name, self.config.log_level)
        self.logger = get_logger(service_name)
        self.metrics = get_metrics_collector(service_name)
        self._start_time = time.time()

        self.app = self._create_app()
        self._setup_middleware()
        self._setup_routes()
        self._setup_error_handlers()

    def _create_app(self) -> FastAPI:
        """Create FastAPI application."""

        @asynccontextmanager
        async def lifespan(app: FastAPI):
            await self.startup()
            try:
                yield
            finally:
                await self.shutdown()

        return FastAPI(
            title=f"{self.service_name.title()} Service",
            description=f"Commerce Access Service - {self.service_name.title()}",
            version="1.0.0",
            docs_url="/docs" if self.config.env == "local" else None,
            redoc_url="/redoc" if self.config.env == "local" else None,
            lifespan=lifespan,
        )

    async def startup(self):
        """Acquire external resources. Override in subclasses."""

    async def shutdown(self):
        """Release external resources. Override in subclasses."""

    def _setup_service_middleware(self):
        """Register service middleware inside CORS and request context. Override in subclasses."""

    def _setup_middleware(self):
        """Service middleware innermost, then CORS, then request tracking outermost."""

        self._setup_service_middleware()

        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"] if self.config.env == "local" else [],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

        @self.app.middleware("http")
        async def request_context(request: Request, call_next):
            return await self._track_request(request, call_next)

    async def _track_request(self, request: Request, call_next) -> Response:
        """Bind a request id, time the request and record it."""
        request_id = set_request_id(request.headers.get("X-Request-ID"))
        started = time.perf_counter()
        try:
            response = await call_next(request)
            duration = time.perf_counter() - started

            # Route templates keep /api/products/{product_id} to one series.
            route = request.scope.get("route")
            endpoint = getattr(route, "path", request.url.path)
            self.metrics.record_http_request(request.method, endpoint, response.status_code, duration)
            self.logger.info(
                "HTTP request",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=round(duration * 1000, 2)
            )

            response.headers["X-Request-ID"] = request_id
            return response
        finally:
            clear_context()

    async def health_report(self) -> Tuple[int, Dict[str, Any]]:
        """HTTP status and body for /health."""
        dependencies = await self._check_dependencies()
        failed = [name for name in self.critical_dependencies if dependencies.get(name) != "ok"]
        status = "error" if failed else "ok"
        self.metrics.record_health_check(status)

        return 503 if failed else 200, {
            "service": self.service_name,
            "status": status,
            "uptime_seconds": self._get_uptime(),
            "dependencies": dependencies,
            "version": "1.0.0",
            "commit": os.getenv("GIT_COMMIT", "unknown"),
        }

    def _setup_routes(self):
        """Health and metrics."""

        @self.app.get("/health")
        async def health_check():
            status_code, body = await self.health_report()
            return JSONResponse(status_code=status_code, content=body)

        @self.app.get("/metrics")
        async def metrics_endpoint():
            return Response(content=self.metrics.export(), media_type=CONTENT_TYPE_LATEST)

    def _setup_error_handlers(self):
        """Render every failure in the error envelope."""

        @self.app.exception_handler(CommerceError)
        async def commerce_exception_handler(request: Request, exc: CommerceError):
            if isinstance(exc, InfrastructureError):
                self.logger.error(
                    "Infrastructure error",
                    code=exc.code,
                    message=exc.message,
                    details=exc.details,
                    path=request.url.path
                )
            else:
                self.logger.warning(
                    "Request rejected",
                    code=exc.code,
                    message=exc.message,
                    path=request.url.path
                )
            self.metrics.record_error(exc.code)
            return self._error_response(exc.status_code, exc.to_response(get_request_id()))

        @self.app.exception_handler(RequestValidationError)
        async def validation_exception_handler(request: Request, exc: RequestValidationError):
            errors = [
                {
                    "field": ".".join(str(part) for part in error.get("loc", ()) if part != "body"),
                    "message": error.get("msg"),
                    "type": error.get("type"),
                }
                for error in exc.errors()
            ]
            self.metrics.record_error("VALIDATION_ERROR")
            return self._error_response(
                400,
                ErrorResponse(code="VALIDATION_ERROR", message="Validation errors", errors=errors,
                              request_id=get_request_id())
            )

        @self.app.exception_handler(StarletteHTTPException)
        async def http_exception_handler(request: Request, exc: StarletteHTTPException):
            message = "Route not found" if exc.status_code == 404 else str(exc.detail)
            return self._error_response(
                exc.status_code,
                ErrorResponse(code="HTTP_ERROR", message=message, request_id=get_request_id())
            )

        @self.app.exception_handler(Exception)
        async def general_exception_handler(request: Request, exc: Exception):
            self.logger.error("Unhandled exception", error=str(exc), path=request.url.path, exc_info=True)
            self.metrics.record_error("INTERNAL_ERROR")
            return self._error_response(
                500,
                ErrorResponse(code="INTERNAL_ERROR", message="Internal server error", request_id=get_request_id())
            )

    @staticmethod
    def _error_response(status_code: int, body: ErrorResponse) -> JSONResponse:
        return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))

    async def _check_dependencies(self) -> Dict[str, Any]:
        """Check service dependencies. Override in subclasses."""
        return {}

    def _get_uptime(self) -> float:
        """Get service uptime in seconds."""
        return time.time() - self._start_time

    def run(self):
        """Run the service."""
        import uvicorn
        uvicorn.run(
            self.app,
            host=self.config.host,
            port=self.config.port,
            log_level=self.config.log_level.lower()
        )
