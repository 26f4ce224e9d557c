"""
Adapters package for the Content Gateway.

Wraps the synchronous content engine bridge behind an async executor that
owns path construction, header forwarding, timeouts and failure mapping.
Keep adapters thin and side-effect free outside of explicit calls.
"""

from .backend_executor import (
    STRUCTURED_CONTENT_TYPE,
    BackendExecutor,
    build_engine_path,
    forwardable_headers,
    parse_engine_body,
    structured_content_headers,
)
from .engine_bridge import EngineBridge, EngineRequest, EngineResponse, HttpEngineBridge, TransportError

__all__ = [
    "STRUCTURED_CONTENT_TYPE",
    "BackendExecutor",
    "EngineBridge",
    "EngineRequest",
    "EngineResponse",
    "HttpEngineBridge",
    "TransportError",
    "build_engine_path",
    "forwardable_headers",
    "parse_engine_body",
    "structured_content_headers",
]
