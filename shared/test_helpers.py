"""
Test helper functions and factory methods for the Content Gateway.
"""

import json
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple, Union
from urllib.parse import unquote

from jose import jwt

from shared.config import ServiceConfig, get_config
from content_gateway.app.adapters.engine_bridge import EngineResponse


JSON_API_TYPE = "application/vnd.api+json"

Route = Union[EngineResponse, Exception, Callable[..., EngineResponse]]


def json_response(payload: Any, status_code: int = 200, content_type: str = JSON_API_TYPE):
    """Engine response carrying a JSON document."""
    return EngineResponse(
        status_code=status_code,
        headers={"content-type": content_type},
        body=json.dumps(payload).encode("utf-8"),
    )


def text_response(text: str, status_code: int = 200, content_type: str = "text/html"):
    """Engine response carrying a non-JSON body."""
    return EngineResponse(
        status_code=status_code,
        headers={"content-type": content_type},
        body=text.encode("utf-8"),
    )


class ContentFactory:
    """Factory for structured-content documents."""

    @staticmethod
    def node(content_type: str, node_id: str, title: str = "Untitled") -> Dict[str, Any]:
        return {
            "type": f"node--{content_type}",
            "id": node_id,
            "attributes": {
                "title": title,
                "status": True,
                "created": "2024-01-01T00:00:00+00:00",
            },
        }

    @classmethod
    def collection(cls, content_type: str, count: int, *, with_count: bool = False) -> Dict[str, Any]:
        document: Dict[str, Any] = {
            "jsonapi": {"version": "1.0"},
            "data": [
                cls.node(content_type, f"{content_type}-{index}", f"{content_type.title()} {index}")
                for index in range(1, count + 1)
            ],
            "links": {},
        }
        if with_count:
            document["meta"] = {"count": count}
        return document

    @classmethod
    def document(cls, content_type: str, node_id: str, title: str = "Untitled") -> Dict[str, Any]:
        return {
            "jsonapi": {"version": "1.0"},
            "data": cls.node(content_type, node_id, title),
            "links": {"self": {"href": f"/jsonapi/node/{content_type}/{node_id}"}},
        }


class FakeEngineBridge:
    """In-memory engine bridge that answers from a route table and records calls.

    Routes are matched on the exact ``(method, path)`` first (path including
    its query string, compared after percent-decoding), then on the path
    without its query string. Unmatched calls get a 404 JSON error document.
    A route value may be an ``EngineResponse``, an exception to raise, or a
    callable taking the ``EngineRequest``.
    """

    def __init__(self, routes: Optional[Dict[Tuple[str, str], Route]] = None):
        self.routes: Dict[Tuple[str, str], Route] = {}
        self.calls: List[Any] = []
        self.closed = False
        self._lock = threading.Lock()
        for (method, path), route in (routes or {}).items():
            self.add(method, path, route)

    def add(self, method: str, path: str, route: Route) -> "FakeEngineBridge":
        self.routes[(method.upper(), unquote(path))] = route
        return self

    def handle_request(self, request):
        with self._lock:
            self.calls.append(request)

        method = request.method.upper()
        path = unquote(request.path)
        route = self.routes.get((method, path))
        if route is None:
            route = self.routes.get((method, path.split("?", 1)[0]))

        if route is None:
            return json_response({"errors": [{"status": "404", "title": "Not Found"}]}, status_code=404)
        if isinstance(route, Exception):
            raise route
        if callable(route):
            return route(request)
        return route

    def calls_to(self, path_prefix: str) -> List[Any]:
        return [call for call in self.calls if unquote(call.path).startswith(path_prefix)]

    def close(self) -> None:
        self.closed = True


class MockTokenGenerator:
    """Generate signed JWT bearer tokens for testing."""

    def __init__(self, secret: str = "test-secret", algorithm: str = "HS256"):
        self.secret = secret
        self.algorithm = algorithm

    def generate_access_token(
        self,
        subject: str = "editor-1",
        expires_in: int = 3600,
        **claims: Any,
    ) -> str:
        """Generate an access token for ``subject``."""
        now = datetime.now(timezone.utc)
        payload = {
            "sub": subject,
            "iat": int(now.timestamp()),
            "exp": int((now + timedelta(seconds=expires_in)).timestamp()),
            "roles": ["editor"],
        }
        payload.update(claims)
        return jwt.encode(payload, self.secret, algorithm=self.algorithm)

    def generate_expired_token(self, subject: str = "editor-1") -> str:
        return self.generate_access_token(subject, expires_in=-60)


class GatewayTestEnvironment:
    """Test environment configuration."""

    API_KEY = "test-api-key"
    JWT_SECRET = "test-secret"

    @classmethod
    def get_mock_config(cls, **overrides: Any) -> ServiceConfig:
        """Gateway configuration that never reads the process environment for secrets."""
        settings: Dict[str, Any] = {
            "env": "test",
            "log_level": "warning",
            "api_key": cls.API_KEY,
            "jwt_secret": cls.JWT_SECRET,
            "engine_timeout": 2.0,
        }
        settings.update(overrides)
        return get_config("gateway", **settings)

    @classmethod
    def get_auth_headers(cls, kind: str = "api-key", token: Optional[str] = None) -> Dict[str, str]:
        if kind == "api-key":
            return {"X-API-Key": cls.API_KEY}
        return {"Authorization": f"Bearer {token or mock_token_generator.generate_access_token()}"}


# Global instances for easy access
content_factory = ContentFactory()
mock_token_generator = MockTokenGenerator(secret=GatewayTestEnvironment.JWT_SECRET)
test_environment = GatewayTestEnvironment()
