"""
Content service: proxying, aggregation and cache policy over the content engine.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import quote

from shared.errors import BackendUnavailableError, ValidationError, utc_timestamp
from shared.logging import get_logger

from ..adapters.backend_executor import (
    STRUCTURED_CONTENT_TYPE,
    BackendExecutor,
    build_engine_path,
    forwardable_headers,
    parse_engine_body,
    structured_content_headers,
)
from ..adapters.engine_bridge import TransportError
from ..caching.cache_manager import CACHE_MISS, CONTENT_STATS_CACHE_KEY, FEATURED_CACHE_KEY, CacheManager


_PATH_FRAGMENT_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,64}(/[A-Za-z0-9_-]{1,64})*$")
_SEGMENT_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,64}$")

BATCH_ITEM_ERROR = "Content not found or inaccessible"
DEFAULT_SEARCH_LIMIT = 10


@dataclass(frozen=True)
class ProxyRoute:
    """How one gateway prefix maps onto the engine."""

    namespace: str
    prefix: str
    base: str = ""
    structured: bool = False


@dataclass(frozen=True)
class GatewayResult:
    """Handler payload plus the response metadata the router needs."""

    payload: Any
    status_code: int = 200
    cache_status: Optional[str] = None
    media_type: Optional[str] = None


class ContentService:
    """Coordinates cache reads and engine calls for every content endpoint."""

    def __init__(self, executor: BackendExecutor, cache: CacheManager, config) -> None:
        self.executor = executor
        self.cache = cache
        self.config = config
        self.logger = get_logger("gateway.content")

        self.jsonapi_base = config.engine_jsonapi_base.rstrip("/")
        self.engine_route = ProxyRoute(namespace="engine-proxy", prefix="/engine-proxy")
        self.content_route = ProxyRoute(
            namespace="content-proxy",
            prefix="/content-proxy",
            base=self.jsonapi_base,
            structured=True,
        )

    async def proxy(
        self,
        route: ProxyRoute,
        method: str,
        inbound_path: str,
        *,
        query: str = "",
        headers: Optional[Mapping[str, str]] = None,
        body: Optional[bytes] = None,
    ) -> GatewayResult:
        """Forward one request to the engine, serving GET 200s from cache when possible."""
        method = method.upper()
        relative_path = build_engine_path(inbound_path, route.prefix)
        media_type = STRUCTURED_CONTENT_TYPE if route.structured else None
        cache_key = CacheManager.make_key(route.namespace, method, relative_path, query)
        cacheable = method == "GET"

        if cacheable:
            cached = self.cache.get_json(cache_key, route.namespace)
            if cached is not CACHE_MISS:
                return GatewayResult(cached, cache_status="HIT", media_type=media_type)

        engine_path = build_engine_path(inbound_path, route.prefix, route.base, query)
        outbound_headers = forwardable_headers(headers or {})
        if route.structured:
            outbound_headers = structured_content_headers(outbound_headers)

        try:
            response = await self.executor.execute(method, engine_path, outbound_headers, body)
        except TransportError as e:
            raise BackendUnavailableError(
                "Proxy request failed",
                details={"method": method, "path": engine_path, "reason": str(e)},
            ) from e

        payload, is_json = parse_engine_body(response)
        if route.structured:
            payload = self._decorate_structured(payload, is_json, response.status_code)

        if cacheable and response.status_code == 200:
            self.cache.set_json(
                cache_key,
                payload,
                route.namespace,
                tags=CacheManager.tags_for_path(relative_path),
            )

        return GatewayResult(
            payload,
            status_code=response.status_code,
            cache_status="MISS" if cacheable else None,
            media_type=media_type,
        )

    async def featured(self) -> GatewayResult:
        """Promoted articles and pages, newest first."""
        cached = self.cache.get_json(FEATURED_CACHE_KEY, "featured")
        if cached is not CACHE_MISS:
            return GatewayResult(cached, cache_status="HIT")

        title = "Failed to fetch featured content"
        articles = await self._fetch_items(
            self._collection_path(
                "article",
                f"filter[promote]=1&sort=-created&page[limit]={self.config.featured_article_limit}",
            ),
            title,
        )
        pages = await self._fetch_items(
            self._collection_path(
                "page",
                f"filter[promote]=1&sort=-created&page[limit]={self.config.featured_page_limit}",
            ),
            title,
        )

        payload = {
            "articles": articles,
            "pages": pages,
            "meta": {
                "total_articles": len(articles),
                "total_pages": len(pages),
                "generated_at": utc_timestamp(),
            },
        }
        self.cache.set_json(FEATURED_CACHE_KEY, payload, "featured", tags=("article", "page"))
        return GatewayResult(payload, cache_status="MISS")

    async def search(
        self,
        query: Optional[str],
        content_type: Optional[str] = None,
        limit: Optional[str] = None,
    ) -> GatewayResult:
        """Title search over one content type."""
        search_query = (query or "").strip()
        if not search_query:
            raise ValidationError("Search query is required", details={"parameter": "q"})

        content_type = (content_type or "").strip() or self.config.search_default_type
        if not _SEGMENT_PATTERN.match(content_type):
            raise ValidationError("Invalid content type", details={"parameter": "type"})

        page_limit = self._parse_limit(limit)
        cache_key = CacheManager.search_key(search_query, content_type, page_limit)
        cached = self.cache.get_json(cache_key, "search")
        if cached is not CACHE_MISS:
            return GatewayResult(cached, cache_status="HIT")

        results = await self._fetch_items(
            self._collection_path(
                content_type,
                "filter[title][operator]=CONTAINS"
                f"&filter[title][value]={quote(search_query, safe='')}"
                f"&page[limit]={page_limit}",
            ),
            "Search failed",
        )

        payload = {
            "query": search_query,
            "type": content_type,
            "results": results,
            "meta": {
                "count": len(results),
                "generated_at": utc_timestamp(),
            },
        }
        self.cache.set_json(cache_key, payload, "search", tags=(content_type,))
        return GatewayResult(payload, cache_status="MISS")

    async def batch(self, body: Any) -> Dict[str, Any]:
        """Fetch several documents one after another; failures are reported per item."""
        if not isinstance(body, dict):
            raise ValidationError("Request body must be a JSON object")

        ids = body.get("ids")
        if not isinstance(ids, list):
            raise ValidationError("IDs array is required", details={"field": "ids"})
        for item in ids:
            if isinstance(item, bool) or not isinstance(item, (str, int)) or not str(item) or "/" in str(item):
                raise ValidationError("Invalid content id", details={"field": "ids", "value": item})

        content_type = body.get("type", "node")
        if not isinstance(content_type, str) or not _PATH_FRAGMENT_PATTERN.match(content_type):
            raise ValidationError("Invalid content type", details={"field": "type"})

        data: Dict[str, Any] = {}
        returned = failed = 0
        for item in ids:
            content_id = str(item)
            path = f"{self.jsonapi_base}/{content_type}/{quote(content_id, safe='')}"
            try:
                data[content_id] = await self._fetch_document(path, "Batch item failed")
                returned += 1
            except BackendUnavailableError as e:
                self.logger.warning("Batch item failed", content_id=content_id, reason=e.message)
                data[content_id] = {"id": item, "error": BATCH_ITEM_ERROR}
                failed += 1

        return {
            "requested": len(ids),
            "returned": returned,
            "failed": failed,
            "data": data,
        }

    async def preview(
        self,
        content_type: str,
        content_id: str,
        revision_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Uncached fetch of a (possibly unpublished) revision."""
        if not _SEGMENT_PATTERN.match(content_type):
            raise ValidationError("Invalid content type", details={"parameter": "type"})
        if not content_id or "/" in content_id:
            raise ValidationError("Invalid content id", details={"parameter": "id"})

        path = f"{self.jsonapi_base}/{content_type}/{quote(content_id, safe='')}"
        if revision_id:
            path = f"{path}?revision={quote(revision_id, safe='')}"

        headers = structured_content_headers({"X-Preview-Mode": "true"})
        document = await self._fetch_document(path, "Preview request failed", headers=headers)
        if not isinstance(document, dict):
            document = {"data": document}

        meta = document.get("meta")
        meta = dict(meta) if isinstance(meta, dict) else {}
        meta["preview"] = True
        meta["revision_id"] = revision_id or "latest"
        return {**document, "meta": meta}

    def invalidate(self, body: Any) -> Dict[str, Any]:
        """Evict every cache entry related to an entity; a no-op when nothing matches."""
        if not isinstance(body, dict):
            raise ValidationError("Request body must be a JSON object")

        entity_type = body.get("entity_type")
        entity_id = body.get("entity_id")
        if entity_type in (None, "") or entity_id in (None, ""):
            raise ValidationError(
                "entity_type and entity_id are required",
                details={"fields": ["entity_type", "entity_id"]},
            )

        action = body.get("action")
        invalidated = self.cache.invalidate_entity(str(entity_type), str(entity_id))
        return {
            "message": "Cache invalidated successfully",
            "invalidated_keys": invalidated,
            "entity": {"type": entity_type, "id": entity_id},
            "action": action,
        }

    def flush(self) -> Dict[str, Any]:
        return {"message": "Cache cleared successfully", "cleared_keys": self.cache.flush()}

    def cache_stats(self) -> Dict[str, Any]:
        return self.cache.get_cache_stats()

    async def content_stats(self) -> GatewayResult:
        """Item counts per configured content type."""
        cached = self.cache.get_json(CONTENT_STATS_CACHE_KEY, "stats")
        if cached is not CACHE_MISS:
            return GatewayResult(cached, cache_status="HIT")

        counts: Dict[str, int] = {}
        for content_type in self.config.stats_content_types:
            document = await self._fetch_document(
                self._collection_path(content_type),
                "Failed to fetch statistics",
            )
            counts[content_type] = self._count_items(document)

        payload = {"types": counts, "total": sum(counts.values())}
        self.cache.set_json(
            CONTENT_STATS_CACHE_KEY,
            payload,
            "stats",
            tags=tuple(self.config.stats_content_types),
        )
        return GatewayResult(payload, cache_status="MISS")

    def site_config(self) -> Dict[str, Any]:
        config = self.config
        return {
            "site": {
                "name": config.site_name,
                "description": config.site_description,
                "url": config.site_url,
                "api_url": config.api_url,
            },
            "api": {
                "version": config.version,
                "endpoints": {
                    "engine": "/engine-proxy/*",
                    "content": "/content-proxy/*",
                    "search": "/search",
                    "featured": "/content/featured",
                    "batch": "/content/batch",
                    "preview": "/preview/{type}/{id}",
                    "config": "/config",
                    "stats": "/stats",
                    "cache": "/cache",
                },
            },
            "features": {
                "caching": True,
                "authentication": bool(config.jwt_secret),
                "rate_limiting": True,
                "cors": True,
            },
        }

    def _collection_path(self, content_type: str, query: str = "") -> str:
        path = f"{self.jsonapi_base}/node/{content_type}"
        return f"{path}?{query}" if query else path

    async def _fetch_document(
        self,
        path: str,
        title: str,
        *,
        headers: Optional[Mapping[str, str]] = None,
    ) -> Any:
        """GET one engine document; anything but a 2xx/3xx JSON answer is a failure."""
        try:
            response = await self.executor.execute(
                "GET",
                path,
                headers if headers is not None else structured_content_headers(),
            )
        except TransportError as e:
            raise BackendUnavailableError(title, details={"path": path, "reason": str(e)}) from e

        if response.status_code >= 400:
            raise BackendUnavailableError(
                title,
                message=f"Content engine returned status {response.status_code}",
                details={"path": path, "status_code": response.status_code},
            )

        document, is_json = parse_engine_body(response)
        if not is_json:
            raise BackendUnavailableError(
                title,
                message="Content engine returned invalid JSON",
                details={"path": path},
            )
        return document

    async def _fetch_items(self, path: str, title: str) -> List[Any]:
        document = await self._fetch_document(path, title)
        data = document.get("data") if isinstance(document, dict) else None
        if data is None:
            return []
        return data if isinstance(data, list) else [data]

    def _parse_limit(self, limit: Optional[str]) -> int:
        if limit is None or str(limit).strip() == "":
            return DEFAULT_SEARCH_LIMIT
        try:
            value = int(str(limit).strip())
        except ValueError:
            raise ValidationError("limit must be an integer", details={"parameter": "limit"})

        if not 1 <= value <= self.config.search_max_limit:
            raise ValidationError(
                f"limit must be between 1 and {self.config.search_max_limit}",
                details={"parameter": "limit", "value": value},
            )
        return value

    @staticmethod
    def _count_items(document: Any) -> int:
        if not isinstance(document, dict):
            return 0
        meta = document.get("meta")
        if isinstance(meta, dict) and isinstance(meta.get("count"), int):
            return meta["count"]
        data = document.get("data")
        if isinstance(data, list):
            return len(data)
        return 0 if data is None else 1

    @staticmethod
    def _decorate_structured(payload: Any, is_json: bool, status_code: int) -> Any:
        if not is_json:
            return {"error": "Invalid JSON response", "data": payload["data"]}

        if status_code < 400 and isinstance(payload, dict) and "data" in payload:
            meta = payload.get("meta")
            meta = dict(meta) if isinstance(meta, dict) else {}
            meta.setdefault("generated_at", utc_timestamp())
            return {**payload, "meta": meta}
        return payload
