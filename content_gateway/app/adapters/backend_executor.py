"""
Backend executor: async front for the synchronous content engine bridge.
"""

from __future__ import annotations

import asyncio
import json
import time
from typing import Any, Dict, Mapping, Optional, Tuple

from shared.circuit_breaker import CircuitBreaker, CircuitBreakerOpenException
from shared.logging import get_logger

from .engine_bridge import EngineBridge, EngineRequest, EngineResponse, TransportError


STRUCTURED_CONTENT_TYPE = "application/vnd.api+json"

# Never forwarded to the engine.
_DROPPED_HEADERS = frozenset({
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailers",
    "transfer-encoding",
    "upgrade",
    "host",
    "content-length",
    "x-api-key",
})


def build_engine_path(inbound_path: str, prefix: str, base: str = "", query: str = "") -> str:
    """Strip the gateway ``prefix`` and root the remainder at the engine ``base``.

    >>> build_engine_path("/content-proxy/node/article", "/content-proxy", "/jsonapi", "page[limit]=5")
    '/jsonapi/node/article?page[limit]=5'
    """
    remainder = inbound_path
    if prefix and inbound_path.startswith(prefix):
        remainder = inbound_path[len(prefix):]
    if not remainder.startswith("/"):
        remainder = "/" + remainder

    path = f"{base.rstrip('/')}{remainder}"
    if query:
        path = f"{path}?{query}"
    return path


def forwardable_headers(headers: Mapping[str, str]) -> Dict[str, str]:
    """Inbound headers that may be passed on to the engine."""
    return {name: value for name, value in headers.items() if name.lower() not in _DROPPED_HEADERS}


def structured_content_headers(headers: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
    """Copy of ``headers`` with content negotiation forced to the structured-content type."""
    forced = {
        name: value
        for name, value in (headers or {}).items()
        if name.lower() not in ("accept", "content-type")
    }
    forced["Accept"] = STRUCTURED_CONTENT_TYPE
    forced["Content-Type"] = STRUCTURED_CONTENT_TYPE
    return forced


def parse_engine_body(response: EngineResponse) -> Tuple[Any, bool]:
    """Decode an engine body as JSON, else wrap the raw text as ``{"data": raw}``."""
    text = response.text
    try:
        return json.loads(text), True
    except ValueError:
        return {"data": text}, False


class BackendExecutor:
    """Runs engine calls in worker threads with a concurrency bound and a timeout.

    Calls are independent: each builds its own immutable ``EngineRequest`` and
    the result depends only on its own arguments. Failures of any kind surface
    as ``TransportError``; nothing is retried here.
    """

    def __init__(
        self,
        bridge: EngineBridge,
        *,
        timeout: float = 10.0,
        max_concurrency: int = 4,
        circuit_breaker: Optional[CircuitBreaker] = None,
        metrics=None,
    ) -> None:
        self.bridge = bridge
        self.timeout = timeout
        self.metrics = metrics
        self.circuit_breaker = circuit_breaker or CircuitBreaker(name="content_engine")
        self.logger = get_logger("gateway.backend_executor")
        self._semaphore = asyncio.Semaphore(max(1, max_concurrency))

    async def execute(
        self,
        method: str,
        path: str,
        headers: Optional[Mapping[str, str]] = None,
        body: Any = None,
    ) -> EngineResponse:
        """Execute one engine call, raising ``TransportError`` on failure."""
        request = EngineRequest(
            method=method.upper(),
            path=path,
            headers=dict(headers or {}),
            body=self._serialize_body(body),
        )

        start = time.perf_counter()
        try:
            response = await self.circuit_breaker.call(self._dispatch, request)
        except (TransportError, CircuitBreakerOpenException) as exc:
            elapsed_ms = round((time.perf_counter() - start) * 1000, 2)
            self.logger.error(
                "Engine call failed",
                method=request.method,
                path=request.path,
                elapsed_ms=elapsed_ms,
                error=str(exc),
            )
            self._record(request.method, "error", time.perf_counter() - start)
            if isinstance(exc, TransportError):
                raise
            raise TransportError(str(exc), method=request.method, path=request.path) from exc

        self._record(request.method, "ok", time.perf_counter() - start)
        self.logger.debug(
            "Engine call completed",
            method=request.method,
            path=request.path,
            status_code=response.status_code,
        )
        return response

    async def _dispatch(self, request: EngineRequest) -> EngineResponse:
        # The slot is held until the worker thread returns, even after a timeout.
        await self._semaphore.acquire()
        worker = asyncio.ensure_future(asyncio.to_thread(self.bridge.handle_request, request))
        worker.add_done_callback(self._release_slot)
        try:
            return await asyncio.wait_for(asyncio.shield(worker), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            raise TransportError(
                f"Engine call timed out after {self.timeout}s",
                method=request.method,
                path=request.path,
            ) from exc
        except TransportError:
            raise
        except Exception as exc:
            raise TransportError(
                str(exc) or exc.__class__.__name__,
                method=request.method,
                path=request.path,
            ) from exc

    def _release_slot(self, worker: "asyncio.Future[EngineResponse]") -> None:
        if not worker.cancelled() and worker.exception() is not None:
            self.logger.debug("Engine worker finished with error", error=str(worker.exception()))
        self._semaphore.release()

    def check_health(self) -> str:
        """'ok' unless the engine circuit is open."""
        return "error" if self.circuit_breaker.is_open() else "ok"

    def _record(self, method: str, outcome: str, duration: float) -> None:
        if not self.metrics:
            return
        self.metrics.increment_counter("engine_requests_total", method=method, outcome=outcome)
        self.metrics.observe_histogram("engine_request_duration_seconds", duration, method=method)

    @staticmethod
    def _serialize_body(body: Any) -> Optional[bytes]:
        if body is None:
            return None
        if isinstance(body, (bytes, bytearray, memoryview)):
            return bytes(body) or None
        if isinstance(body, str):
            return body.encode("utf-8") or None
        return json.dumps(body).encode("utf-8")
