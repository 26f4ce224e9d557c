"""
Base service class for Content Gateway services.
"""

from fastapi import FastAPI, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from typing import Dict, Any, Optional
import time

from shared.config import ServiceConfig, get_config
from shared.errors import AccessLayerException, ValidationError, utc_timestamp
from shared.logging import clear_context, configure_logging, get_logger, set_request_id
from shared.metrics import MetricsCollector, get_metrics_collector


CONTENT_SECURITY_POLICY = "; ".join([
    "default-src 'self'",
    "style-src 'self' 'unsafe-inline'",
    "script-src 'self'",
    "img-src 'self' data: https:",
    "connect-src 'self'",
    "font-src 'self'",
    "object-src 'none'",
    "media-src 'self'",
    "frame-src 'none'",
])

SECURITY_HEADERS = {
    "Content-Security-Policy": CONTENT_SECURITY_POLICY,
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "SAMEORIGIN",
    "Referrer-Policy": "no-referrer",
}


class BaseService:
    """Base service class with common functionality.

    Middleware runs outermost-first as: CORS, security headers, request
    timing, then whatever ``_setup_pipeline_middleware`` installs.
    """

    def __init__(
        self,
        service_name: str,
        config: Optional[ServiceConfig] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.service_name = service_name
        self.config = config or get_config(service_name)
        self.port = self.config.port
        self.logger = get_logger(f"{service_name}.service")
        self.metrics = metrics or get_metrics_collector(service_name)

        configure_logging(service_name, self.config.log_level)

        self._start_time = time.monotonic()
        self._request_count = 0
        self._request_duration_total = 0.0

        self.app = self._create_app()
        self._setup_middleware()
        self._setup_routes()

    def _create_app(self) -> FastAPI:
        """Create FastAPI application."""
        return FastAPI(
            title=f"Content {self.service_name.title()}",
            description="Cache-accelerated, authenticated API over the content engine",
            version=self.config.version,
            docs_url="/docs" if self.config.env == "local" else None,
            redoc_url="/redoc" if self.config.env == "local" else None,
        )

    def _setup_pipeline_middleware(self):
        """Install request pipeline middleware. Override in subclasses."""

    def _setup_middleware(self):
        """Set up middleware."""

        self._setup_pipeline_middleware()

        @self.app.middleware("http")
        async def add_request_timing(request: Request, call_next):
            request_id = set_request_id(request.headers.get("X-Request-ID"))
            start_time = time.perf_counter()

            try:
                response = await call_next(request)
            except Exception:
                clear_context()
                raise

            duration = time.perf_counter() - start_time
            route = request.scope.get("route")
            endpoint = getattr(route, "path", request.url.path)

            self._request_count += 1
            self._request_duration_total += duration
            self.metrics.record_http_request(
                method=request.method,
                endpoint=endpoint,
                status_code=response.status_code,
                duration=duration
            )

            self.logger.info(
                "HTTP request",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=round(duration * 1000, 2),
                request_id=request_id,
            )
            clear_context()

            response.headers["X-Request-ID"] = request_id
            return response

        @self.app.middleware("http")
        async def add_security_headers(request: Request, call_next):
            response = await call_next(request)
            for header, value in SECURITY_HEADERS.items():
                response.headers.setdefault(header, value)
            return response

        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=self.config.allowed_origins,
            allow_credentials=True,
            allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
            allow_headers=[
                "Content-Type",
                "Authorization",
                "X-Requested-With",
                "Accept",
                "Origin",
                "X-API-Key",
                "X-CSRF-Token",
            ],
            expose_headers=[
                "X-Cache",
                "X-Request-ID",
                "X-RateLimit-Limit",
                "X-RateLimit-Remaining",
                "X-RateLimit-Reset",
                "Retry-After",
            ],
        )

    def _setup_routes(self):
        """Set up common routes."""

        @self.app.get("/health")
        async def health_check():
            """Health check endpoint."""
            try:
                dependencies = await self._check_dependencies()
                status = "ok" if all(value == "ok" for value in dependencies.values()) else "degraded"
                self.metrics.record_health_check(status)

                return {
                    "service": self.service_name,
                    "status": status,
                    "timestamp": utc_timestamp(),
                    "version": self.config.version,
                    "uptime_seconds": round(self._get_uptime(), 3),
                    "dependencies": dependencies,
                }
            except Exception as e:
                self.logger.error("Health check failed", error=str(e))
                self.metrics.record_health_check("error")
                return JSONResponse(
                    status_code=503,
                    content={
                        "service": self.service_name,
                        "status": "error",
                        "error": str(e)
                    }
                )

        @self.app.get("/metrics")
        async def metrics_endpoint():
            """Process and request counters as JSON."""
            return self._metrics_snapshot()

        @self.app.get("/metrics/prometheus")
        async def prometheus_metrics_endpoint():
            """Prometheus metrics endpoint."""
            from prometheus_client import CONTENT_TYPE_LATEST
            return Response(
                content=self.metrics.render_latest(),
                media_type=CONTENT_TYPE_LATEST
            )

        @self.app.exception_handler(AccessLayerException)
        async def access_layer_exception_handler(request: Request, exc: AccessLayerException):
            """Handle AccessLayerException."""
            log = self.logger.error if exc.status_code >= 500 else self.logger.warning
            log(
                "Request failed",
                code=exc.code,
                message=exc.message,
                details=exc.details,
                method=request.method,
                path=request.url.path,
            )
            self.metrics.record_error(exc.code)
            return JSONResponse(
                status_code=exc.status_code,
                content=exc.to_response().model_dump()
            )

        @self.app.exception_handler(RequestValidationError)
        async def request_validation_exception_handler(request: Request, exc: RequestValidationError):
            """Render FastAPI parameter validation failures in the gateway envelope."""
            error = ValidationError("Invalid request parameters", details={"errors": jsonable_encoder(exc.errors())})
            return JSONResponse(
                status_code=error.status_code,
                content=error.to_response().model_dump()
            )

        @self.app.exception_handler(Exception)
        async def general_exception_handler(request: Request, exc: Exception):
            """Handle general exceptions."""
            self.logger.error("Unhandled exception", error=str(exc), exc_info=True)
            self.metrics.record_error("INTERNAL_ERROR")
            return JSONResponse(
                status_code=500,
                content={
                    "error": "Internal Server Error",
                    "code": "INTERNAL_ERROR",
                    "message": "Internal server error",
                    "details": {},
                    "timestamp": utc_timestamp(),
                }
            )

    async def _check_dependencies(self) -> Dict[str, str]:
        """Check service dependencies. Override in subclasses."""
        return {}

    def _metrics_snapshot(self) -> Dict[str, Any]:
        """JSON view of process and request counters."""
        rss = self.metrics.get_sample_value("process_resident_memory_bytes")
        virtual = self.metrics.get_sample_value("process_virtual_memory_bytes")
        return {
            "memory": {
                "rss": _megabytes(rss),
                "virtual": _megabytes(virtual),
            },
            "uptime": f"{round(self._get_uptime())} seconds",
            "requests": {
                "total": self._request_count,
                "average_response_time_ms": self._average_response_time_ms(),
            },
        }

    def _average_response_time_ms(self) -> float:
        if not self._request_count:
            return 0.0
        return round(self._request_duration_total / self._request_count * 1000, 2)

    def _get_uptime(self) -> float:
        """Get service uptime in seconds."""
        return time.monotonic() - self._start_time

    def run(self):
        """Run the service."""
        import uvicorn
        uvicorn.run(
            self.app,
            host=self.config.host,
            port=self.config.port,
            log_level=self.config.log_level.lower()
        )


def _megabytes(value: Optional[float]) -> Optional[str]:
    if value is None:
        return None
    return f"{round(value / 1024 / 1024)} MB"
