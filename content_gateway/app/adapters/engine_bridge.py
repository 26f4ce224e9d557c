"""
Synchronous bridges into the content engine.

A bridge executes exactly one engine request per call and blocks until the
engine answers. Bridges know nothing about caching, auth or retries.
"""

from __future__ import annotations

import importlib
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional, Protocol

import httpx

from shared.logging import get_logger


class TransportError(Exception):
    """Engine unreachable, crashed, timed out, or refused the call."""

    def __init__(self, message: str, *, method: Optional[str] = None, path: Optional[str] = None):
        super().__init__(message)
        self.method = method
        self.path = path


@dataclass(frozen=True)
class EngineRequest:
    """One stateless call into the engine."""

    method: str
    path: str
    headers: Mapping[str, str] = field(default_factory=dict)
    body: Optional[bytes] = None


@dataclass(frozen=True)
class EngineResponse:
    """Raw engine answer."""

    status_code: int
    headers: Dict[str, str]
    body: bytes

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")


class EngineBridge(Protocol):
    """Anything that can execute an engine request synchronously."""

    def handle_request(self, request: EngineRequest) -> EngineResponse:
        ...


class HttpEngineBridge:
    """Bridge that talks to the engine's local origin with a blocking httpx client.

    With ``wsgi_app`` set, requests are executed in-process against the
    engine's WSGI application instead of over the network.
    """

    def __init__(
        self,
        origin: str,
        *,
        timeout: float = 10.0,
        wsgi_app: Optional[Callable[..., Any]] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.origin = origin.rstrip("/")
        self.logger = get_logger("gateway.engine_bridge")
        if transport is None and wsgi_app is not None:
            transport = httpx.WSGITransport(app=wsgi_app)
        self._client = httpx.Client(base_url=self.origin, timeout=timeout, transport=transport)

    @classmethod
    def from_config(cls, config) -> "HttpEngineBridge":
        wsgi_app = load_wsgi_app(config.engine_wsgi_app) if config.engine_wsgi_app else None
        return cls(config.engine_origin, timeout=config.engine_timeout, wsgi_app=wsgi_app)

    def handle_request(self, request: EngineRequest) -> EngineResponse:
        try:
            response = self._client.request(
                request.method,
                request.path,
                headers=dict(request.headers),
                content=request.body,
            )
        except httpx.HTTPError as exc:
            raise TransportError(str(exc) or exc.__class__.__name__, method=request.method, path=request.path) from exc

        return EngineResponse(
            status_code=response.status_code,
            headers=dict(response.headers),
            body=response.content,
        )

    def close(self) -> None:
        self._client.close()


def load_wsgi_app(target: str) -> Callable[..., Any]:
    """Resolve a ``module:attribute`` reference to a WSGI callable."""
    module_name, _, attribute = target.partition(":")
    if not module_name or not attribute:
        raise ValueError(f"WSGI app reference must look like 'module:attribute', got {target!r}")
    module = importlib.import_module(module_name)
    app = getattr(module, attribute)
    if not callable(app):
        raise ValueError(f"{target!r} is not callable")
    return app
