"""
Authentication gate for the Gateway.

Every request is classified exactly once, in this order:

1. public allowlist (path prefix match)
2. ``X-API-Key`` equal to the configured key
3. ``Authorization: Bearer`` token verified with the configured secret
4. read methods admitted anonymously
5. everything else rejected with 401

An invalid bearer token is logged and falls through to step 4, so a garbled
token still gets anonymous read access but never write access.
"""

import hmac
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, Optional, Tuple

from fastapi import Request

from shared.errors import AuthenticationError
from shared.logging import get_logger, set_auth_context
from shared.metrics import MetricsCollector
from ..auth.jwt_validator import JWTValidator


READ_METHODS = frozenset({"GET", "HEAD"})


class AuthMethod(str, Enum):
    PUBLIC = "public"
    API_KEY = "api-key"
    JWT = "jwt"
    ANONYMOUS_READ = "anonymous-read"


@dataclass(frozen=True)
class AuthContext:
    """Outcome of the gate for one request."""

    authenticated: bool
    method: AuthMethod
    principal: Optional[str] = None
    claims: Dict[str, Any] = field(default_factory=dict)


class AuthGate:
    """Admits or rejects inbound requests before they reach a handler."""

    def __init__(
        self,
        *,
        public_paths: Iterable[str] = (),
        api_key: Optional[str] = None,
        jwt_validator: Optional[JWTValidator] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.public_paths: Tuple[str, ...] = tuple(path for path in public_paths if path)
        self.api_key = api_key
        self.jwt_validator = jwt_validator or JWTValidator(None)
        self.metrics = metrics
        self.logger = get_logger("gateway.auth_gate")

    @classmethod
    def from_config(cls, config, metrics: Optional[MetricsCollector] = None) -> "AuthGate":
        return cls(
            public_paths=config.public_paths,
            api_key=config.api_key,
            jwt_validator=JWTValidator(
                config.jwt_secret,
                algorithm=config.jwt_algorithm,
                audience=config.jwt_audience,
            ),
            metrics=metrics,
        )

    def authenticate_request(self, request: Request) -> AuthContext:
        """Classify ``request`` and store the result on ``request.state.auth``.

        Raises AuthenticationError when no rule admits the request.
        """
        context = self.evaluate(
            request.method,
            request.url.path,
            api_key=request.headers.get("X-API-Key"),
            bearer_token=JWTValidator.bearer_token(request),
        )
        request.state.auth = context
        set_auth_context(principal=context.principal, auth_method=context.method.value)
        return context

    def evaluate(
        self,
        method: str,
        path: str,
        *,
        api_key: Optional[str] = None,
        bearer_token: Optional[str] = None,
    ) -> AuthContext:
        if self.is_public(path):
            return self._admit(AuthContext(authenticated=False, method=AuthMethod.PUBLIC))

        if api_key and self._api_key_matches(api_key):
            return self._admit(
                AuthContext(authenticated=True, method=AuthMethod.API_KEY, principal="api-key")
            )

        if bearer_token and self.jwt_validator.enabled:
            try:
                claims = self.jwt_validator.validate(bearer_token)
            except AuthenticationError as e:
                self.logger.warning("JWT authentication failed", error=e.message, path=path)
            else:
                return self._admit(
                    AuthContext(
                        authenticated=True,
                        method=AuthMethod.JWT,
                        principal=JWTValidator.principal_for(claims),
                        claims=claims,
                    )
                )

        if method.upper() in READ_METHODS:
            return self._admit(AuthContext(authenticated=False, method=AuthMethod.ANONYMOUS_READ))

        self._record("rejected")
        self.logger.info("Request rejected by auth gate", method=method, path=path)
        raise AuthenticationError()

    def is_public(self, path: str) -> bool:
        return any(path.startswith(prefix) for prefix in self.public_paths)

    def _api_key_matches(self, supplied: str) -> bool:
        if not self.api_key:
            return False
        return hmac.compare_digest(supplied.encode("utf-8"), self.api_key.encode("utf-8"))

    def _admit(self, context: AuthContext) -> AuthContext:
        self._record(context.method.value)
        return context

    def _record(self, outcome: str) -> None:
        if self.metrics:
            self.metrics.increment_counter("auth_decisions_total", auth_method=outcome)


def require_authenticated(request: Request) -> AuthContext:
    """Return the request's auth context, rejecting anything unauthenticated."""
    context = getattr(request.state, "auth", None)
    if context is None or not context.authenticated:
        raise AuthenticationError("Authentication required for preview")
    return context
