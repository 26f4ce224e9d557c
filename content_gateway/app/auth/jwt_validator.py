"""
Bearer token verification for the Gateway.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import Request
from jose import JWTError, jwt

from shared.errors import AuthenticationError
from shared.logging import get_logger


class JWTValidator:
    """Verifies HS-signed bearer tokens against the configured shared secret."""

    def __init__(
        self,
        secret: Optional[str],
        *,
        algorithm: str = "HS256",
        audience: Optional[str] = None,
    ) -> None:
        self.secret = secret
        self.algorithm = algorithm
        self.audience = audience
        self.logger = get_logger("gateway.auth.jwt")

    @property
    def enabled(self) -> bool:
        return bool(self.secret)

    @staticmethod
    def bearer_token(request: Request) -> Optional[str]:
        """Return the bearer token from the Authorization header, if any."""
        authorization = request.headers.get("Authorization")
        if not authorization or not authorization.startswith("Bearer "):
            return None

        token = authorization[7:].strip()
        return token or None

    def validate(self, token: str) -> Dict[str, Any]:
        """Validate the JWT and return its claims."""
        if not self.enabled:
            raise AuthenticationError("JWT authentication is not configured")

        options: Dict[str, Any] = {"verify_aud": self.audience is not None}
        try:
            claims = jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                audience=self.audience,
                options=options,
            )
        except JWTError as exc:
            raise AuthenticationError("JWT validation failed", details={"error": str(exc)}) from exc

        if not isinstance(claims, dict):
            raise AuthenticationError("JWT payload is not an object")
        return claims

    @staticmethod
    def principal_for(claims: Dict[str, Any]) -> Optional[str]:
        """Best identifier for the token holder, for logging."""
        for claim in ("sub", "uid", "username"):
            value = claims.get(claim)
            if value not in (None, ""):
                return str(value)
        return None
