"""Content endpoints for the Gateway."""

from .service import ContentService, GatewayResult, ProxyRoute

__all__ = ["ContentService", "GatewayResult", "ProxyRoute"]
