"""
Unit tests for the backend executor and engine bridge.
"""

import asyncio
import json
import threading
import time

import httpx
import pytest

from content_gateway.app.adapters.backend_executor import (
    STRUCTURED_CONTENT_TYPE,
    BackendExecutor,
    build_engine_path,
    forwardable_headers,
    parse_engine_body,
    structured_content_headers,
)
from content_gateway.app.adapters.engine_bridge import (
    EngineRequest,
    EngineResponse,
    HttpEngineBridge,
    TransportError,
    load_wsgi_app,
)
from shared.circuit_breaker import CircuitBreaker
from shared.metrics import MetricsCollector
from shared.test_helpers import FakeEngineBridge, json_response, text_response


def engine_wsgi_app(environ, start_response):
    """Tiny WSGI engine echoing the request line and preview header."""
    path = environ["PATH_INFO"]
    query = environ.get("QUERY_STRING", "")
    body = json.dumps({
        "data": {
            "method": environ["REQUEST_METHOD"],
            "path": path,
            "query": query,
            "preview": environ.get("HTTP_X_PREVIEW_MODE"),
        }
    }).encode("utf-8")
    start_response("200 OK", [("Content-Type", STRUCTURED_CONTENT_TYPE), ("Content-Length", str(len(body)))])
    return [body]


class TestEnginePathHelpers:
    """Test cases for path and header helpers."""

    def test_build_engine_path_strips_prefix_and_roots_at_base(self):
        assert build_engine_path(
            "/content-proxy/node/article", "/content-proxy", "/jsonapi", "page[limit]=5"
        ) == "/jsonapi/node/article?page[limit]=5"

    def test_build_engine_path_without_base(self):
        assert build_engine_path("/engine-proxy/user/login", "/engine-proxy") == "/user/login"

    def test_build_engine_path_bare_prefix(self):
        assert build_engine_path("/engine-proxy", "/engine-proxy", "/jsonapi/") == "/jsonapi/"

    def test_forwardable_headers_drops_hop_by_hop_and_credentials(self):
        headers = forwardable_headers({
            "Host": "gateway",
            "Connection": "keep-alive",
            "X-API-Key": "secret",
            "Content-Length": "12",
            "Accept-Language": "en",
        })

        assert headers == {"Accept-Language": "en"}

    def test_structured_content_headers_force_media_type(self):
        headers = structured_content_headers({"accept": "text/html", "X-Preview-Mode": "true"})

        assert headers == {
            "X-Preview-Mode": "true",
            "Accept": STRUCTURED_CONTENT_TYPE,
            "Content-Type": STRUCTURED_CONTENT_TYPE,
        }

    def test_parse_engine_body_json(self):
        assert parse_engine_body(json_response({"data": []})) == ({"data": []}, True)

    def test_parse_engine_body_wraps_non_json(self):
        payload, is_json = parse_engine_body(text_response("<h1>Maintenance</h1>"))

        assert payload == {"data": "<h1>Maintenance</h1>"}
        assert is_json is False


class TestBackendExecutor:
    """Test cases for BackendExecutor."""

    @pytest.fixture
    def bridge(self):
        return FakeEngineBridge({("GET", "/jsonapi/node/article"): json_response({"data": []})})

    @pytest.fixture
    def metrics(self):
        return MetricsCollector("gateway")

    @pytest.fixture
    def executor(self, bridge, metrics):
        return BackendExecutor(bridge, timeout=1.0, max_concurrency=2, metrics=metrics)

    @pytest.mark.asyncio
    async def test_execute_returns_engine_response(self, executor, bridge, metrics):
        response = await executor.execute("get", "/jsonapi/node/article", {"Accept": STRUCTURED_CONTENT_TYPE})

        assert response.status_code == 200
        assert bridge.calls[0].method == "GET"
        assert bridge.calls[0].headers == {"Accept": STRUCTURED_CONTENT_TYPE}
        assert metrics.get_sample_value("engine_requests_total", method="GET", outcome="ok") == 1.0

    @pytest.mark.asyncio
    async def test_execute_serializes_body_copy(self, executor, bridge):
        body = {"data": {"type": "node--article"}}

        await executor.execute("POST", "/jsonapi/node/article", body=body)
        body["data"]["type"] = "mutated"

        assert json.loads(bridge.calls[0].body) == {"data": {"type": "node--article"}}

    @pytest.mark.asyncio
    async def test_execute_passes_bytes_through(self, executor, bridge):
        await executor.execute("POST", "/jsonapi/node/article", body=b'{"raw": true}')
        await executor.execute("POST", "/jsonapi/node/article", body=b"")

        assert bridge.calls[0].body == b'{"raw": true}'
        assert bridge.calls[1].body is None

    @pytest.mark.asyncio
    async def test_bridge_exception_becomes_transport_error(self, bridge, metrics):
        bridge.add("GET", "/jsonapi/node/page", RuntimeError("engine crashed"))
        executor = BackendExecutor(bridge, metrics=metrics)

        with pytest.raises(TransportError) as exc_info:
            await executor.execute("GET", "/jsonapi/node/page")

        assert exc_info.value.method == "GET"
        assert exc_info.value.path == "/jsonapi/node/page"
        assert metrics.get_sample_value("engine_requests_total", method="GET", outcome="error") == 1.0

    @pytest.mark.asyncio
    async def test_timeout_becomes_transport_error(self, bridge):
        def slow(request):
            time.sleep(0.3)
            return json_response({"data": []})

        bridge.add("GET", "/jsonapi/node/slow", slow)
        executor = BackendExecutor(bridge, timeout=0.05)

        with pytest.raises(TransportError, match="timed out"):
            await executor.execute("GET", "/jsonapi/node/slow")

    @pytest.mark.asyncio
    async def test_timed_out_call_keeps_its_slot_until_the_engine_returns(self, bridge):
        release = threading.Event()

        def hung(request):
            release.wait(5)
            return json_response({"data": "late"})

        bridge.add("GET", "/jsonapi/node/hung", hung)
        executor = BackendExecutor(bridge, timeout=0.05, max_concurrency=1)

        with pytest.raises(TransportError, match="timed out"):
            await executor.execute("GET", "/jsonapi/node/hung")

        follow_up = asyncio.ensure_future(executor.execute("GET", "/jsonapi/node/article"))
        await asyncio.sleep(0.1)
        assert len(bridge.calls) == 1

        release.set()
        response = await follow_up

        assert response.status_code == 200
        assert [call.path for call in bridge.calls] == ["/jsonapi/node/hung", "/jsonapi/node/article"]

    @pytest.mark.asyncio
    async def test_open_circuit_becomes_transport_error(self, bridge):
        bridge.add("GET", "/jsonapi/down", ConnectionError("refused"))
        breaker = CircuitBreaker(failure_threshold=1, recovery_timeout=60.0, name="test")
        executor = BackendExecutor(bridge, circuit_breaker=breaker)

        with pytest.raises(TransportError):
            await executor.execute("GET", "/jsonapi/down")
        with pytest.raises(TransportError, match="OPEN"):
            await executor.execute("GET", "/jsonapi/node/article")

        assert len(bridge.calls) == 1
        assert executor.check_health() == "error"

    @pytest.mark.asyncio
    async def test_engine_error_status_is_not_a_transport_failure(self, bridge):
        bridge.add("GET", "/jsonapi/node/missing", json_response({"errors": []}, status_code=404))
        executor = BackendExecutor(bridge)

        response = await executor.execute("GET", "/jsonapi/node/missing")

        assert response.status_code == 404
        assert executor.check_health() == "ok"


class TestHttpEngineBridge:
    """Test cases for HttpEngineBridge."""

    def test_wsgi_transport_round_trip(self):
        bridge = HttpEngineBridge("http://engine.local", wsgi_app=engine_wsgi_app)

        response = bridge.handle_request(
            EngineRequest("GET", "/jsonapi/node/article?page[limit]=5", {"X-Preview-Mode": "true"})
        )

        document = json.loads(response.body)
        assert response.status_code == 200
        assert document["data"]["path"] == "/jsonapi/node/article"
        assert document["data"]["preview"] == "true"
        assert "page" in document["data"]["query"]
        bridge.close()

    def test_http_error_becomes_transport_error(self):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        bridge = HttpEngineBridge("http://engine.local", transport=httpx.MockTransport(refuse))

        with pytest.raises(TransportError):
            bridge.handle_request(EngineRequest("GET", "/jsonapi"))

    def test_response_mapping(self):
        def handler(request):
            return httpx.Response(201, headers={"X-Engine": "1"}, content=b"created")

        bridge = HttpEngineBridge("http://engine.local/", transport=httpx.MockTransport(handler))

        response = bridge.handle_request(EngineRequest("POST", "/node", body=b"{}"))

        assert isinstance(response, EngineResponse)
        assert response.status_code == 201
        assert response.headers["x-engine"] == "1"
        assert response.text == "created"

    def test_load_wsgi_app(self):
        app = load_wsgi_app(f"{__name__}:engine_wsgi_app")

        assert app is engine_wsgi_app

    @pytest.mark.parametrize("target", ["no_colon", ":attr", "module:"])
    def test_load_wsgi_app_rejects_bad_reference(self, target):
        with pytest.raises(ValueError):
            load_wsgi_app(target)
