"""
Content Gateway service.

Request pipeline: rate limiter -> auth gate -> handler. Cacheable handlers
consult the response cache before calling the content engine.
"""

import json
from typing import Any, Dict, Optional

from fastapi import FastAPI, Query, Request, Response
from fastapi.responses import JSONResponse

from shared.base_service import BaseService
from shared.circuit_breaker import CircuitBreaker
from shared.config import ServiceConfig, get_config
from shared.errors import AccessLayerException, AuthenticationError, RateLimitError, ValidationError, utc_timestamp
from shared.metrics import MetricsCollector, get_metrics_collector

from content_gateway.app.adapters import BackendExecutor, EngineBridge, HttpEngineBridge
from content_gateway.app.caching import CacheManager
from content_gateway.app.content import ContentService, GatewayResult
from content_gateway.app.domain import AuthGate, require_authenticated
from content_gateway.app.ratelimit import FixedWindowRateLimiter, RateLimitMiddleware


PROXY_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]

_BODYLESS_STATUSES = frozenset({204, 304})


class GatewayService(BaseService):
    """Content Gateway service implementation."""

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        bridge: Optional[EngineBridge] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        config = config or get_config("gateway")
        metrics = metrics or get_metrics_collector("gateway")

        self.cache_manager = CacheManager.from_config(config, metrics=metrics)
        self.rate_limiter = FixedWindowRateLimiter(
            config.rate_limit_max,
            config.rate_limit_window_seconds,
        )
        self.rate_limit_middleware = RateLimitMiddleware(
            self.rate_limiter,
            trust_forwarded_headers=config.trust_forwarded_headers,
        )
        self.auth_gate = AuthGate.from_config(config, metrics=metrics)

        self._owns_bridge = bridge is None
        self.bridge = bridge if bridge is not None else HttpEngineBridge.from_config(config)
        self.executor = BackendExecutor(
            self.bridge,
            timeout=config.engine_timeout,
            max_concurrency=config.engine_max_concurrency,
            circuit_breaker=CircuitBreaker(
                failure_threshold=config.engine_failure_threshold,
                recovery_timeout=config.engine_recovery_timeout,
                name="content_engine",
            ),
            metrics=metrics,
        )
        self.content_service = ContentService(self.executor, self.cache_manager, config)

        super().__init__("gateway", config=config, metrics=metrics)

        @self.app.on_event("shutdown")
        async def _shutdown():
            if self._owns_bridge and hasattr(self.bridge, "close"):
                self.bridge.close()

        self._setup_gateway_routes()

        # Expose service instance via app state for introspection/testing
        self.app.state.gateway_service = self

    def _setup_pipeline_middleware(self):
        """Rate limiting, then authentication, ahead of every handler."""

        @self.app.middleware("http")
        async def enforce_request_pipeline(request: Request, call_next):
            rate_result = self.rate_limit_middleware.check_request(request)
            rate_headers = RateLimitMiddleware.headers_for(rate_result)

            if not rate_result.get("allowed", True):
                self.metrics.increment_counter(
                    "rate_limit_hits_total",
                    endpoint=self._endpoint_label(request.url.path),
                )
                error = RateLimitError(
                    "Too many requests, please try again later",
                    details={
                        "limit": rate_result.get("limit"),
                        "retry_after": rate_result.get("retry_after"),
                    },
                )
                return self._error_response(request, error, headers=rate_headers)

            try:
                self.auth_gate.authenticate_request(request)
            except AuthenticationError as e:
                return self._error_response(request, e, headers=rate_headers)

            response = await call_next(request)
            for header, value in rate_headers.items():
                response.headers[header] = value
            return response

    def _setup_gateway_routes(self):
        """Set up gateway-specific routes."""

        @self.app.api_route("/engine-proxy/{path:path}", methods=PROXY_METHODS)
        async def engine_proxy(request: Request, path: str):
            """Forward any request to the content engine."""
            result = await self.content_service.proxy(
                self.content_service.engine_route,
                request.method,
                request.url.path,
                query=request.url.query,
                headers=request.headers,
                body=await request.body(),
            )
            return self._to_response(result)

        @self.app.api_route("/content-proxy/{path:path}", methods=PROXY_METHODS)
        async def content_proxy(request: Request, path: str):
            """Forward a structured-content request to the engine's document API."""
            result = await self.content_service.proxy(
                self.content_service.content_route,
                request.method,
                request.url.path,
                query=request.url.query,
                headers=request.headers,
                body=await request.body(),
            )
            return self._to_response(result)

        @self.app.get("/content/featured")
        async def featured_content():
            """Promoted articles and pages."""
            return self._to_response(await self.content_service.featured())

        @self.app.get("/search")
        async def search(
            q: Optional[str] = Query(None),
            content_type: Optional[str] = Query(None, alias="type"),
            limit: Optional[str] = Query(None),
        ):
            """Title search over one content type."""
            return self._to_response(await self.content_service.search(q, content_type, limit))

        @self.app.post("/content/batch")
        async def batch_content(request: Request):
            """Fetch several documents by id in one call."""
            body = await self._json_body(request)
            return await self.content_service.batch(body)

        @self.app.get("/preview/{content_type}/{content_id}")
        async def preview_content(
            request: Request,
            content_type: str,
            content_id: str,
            revision_id: Optional[str] = Query(None),
        ):
            """Uncached preview of a document revision; requires credentials."""
            require_authenticated(request)
            return await self.content_service.preview(content_type, content_id, revision_id)

        @self.app.post("/cache/invalidate")
        async def invalidate_cache(request: Request):
            """Webhook: evict cached responses related to an entity."""
            body = await self._json_body(request)
            return self.content_service.invalidate(body)

        @self.app.delete("/cache")
        async def clear_cache():
            """Flush the whole response cache."""
            return self.content_service.flush()

        @self.app.get("/cache/stats")
        async def cache_stats():
            """Response cache statistics."""
            return self.content_service.cache_stats()

        @self.app.get("/config")
        async def site_config():
            """Site information, endpoint map and feature flags."""
            return self.content_service.site_config()

        @self.app.get("/stats")
        async def content_stats():
            """Content counts from the engine plus gateway request counters."""
            result = await self.content_service.content_stats()
            payload = {
                "content": result.payload,
                "api": {
                    "requests_total": self._request_count,
                    "cache_hit_rate": self.cache_manager.cache.stats()["hit_rate"],
                    "average_response_time_ms": self._average_response_time_ms(),
                },
                "updated_at": utc_timestamp(),
            }
            return self._to_response(GatewayResult(payload, cache_status=result.cache_status))

    async def _check_dependencies(self) -> Dict[str, str]:
        """Check gateway dependencies."""
        return {
            "engine": self.executor.check_health(),
            "cache": "ok",
        }

    def _metrics_snapshot(self) -> Dict[str, Any]:
        snapshot = super()._metrics_snapshot()
        snapshot["cache"] = self.cache_manager.cache.stats()
        snapshot["rate_limiting"] = self.rate_limiter.get_global_stats()
        snapshot["engine"] = self.executor.circuit_breaker.get_state()
        return snapshot

    def _to_response(self, result: GatewayResult) -> Response:
        headers = {"X-Cache": result.cache_status} if result.cache_status else None
        if result.status_code in _BODYLESS_STATUSES:
            return Response(status_code=result.status_code, headers=headers)
        return JSONResponse(
            content=result.payload,
            status_code=result.status_code,
            headers=headers,
            media_type=result.media_type or "application/json",
        )

    def _error_response(
        self,
        request: Request,
        exc: AccessLayerException,
        headers: Optional[Dict[str, str]] = None,
    ) -> JSONResponse:
        self.logger.warning(
            "Request refused",
            code=exc.code,
            method=request.method,
            path=request.url.path,
        )
        self.metrics.record_error(exc.code)
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_response().model_dump(),
            headers=headers,
        )

    @staticmethod
    async def _json_body(request: Request) -> Any:
        raw = await request.body()
        if not raw:
            raise ValidationError("Request body is required")
        try:
            return json.loads(raw)
        except ValueError:
            raise ValidationError("Request body must be valid JSON")

    @staticmethod
    def _endpoint_label(path: str) -> str:
        segments = [segment for segment in path.split("/") if segment]
        return f"/{segments[0]}" if segments else "/"


def create_app(
    config: Optional[ServiceConfig] = None,
    bridge: Optional[EngineBridge] = None,
) -> FastAPI:
    """Build the gateway application."""
    return GatewayService(config=config, bridge=bridge).app


def main():
    GatewayService().run()


if __name__ == "__main__":
    main()
