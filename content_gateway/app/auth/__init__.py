"""Authentication helpers for the Gateway."""

from .jwt_validator import JWTValidator

__all__ = ["JWTValidator"]
