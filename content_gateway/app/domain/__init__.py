"""Request admission rules for the Gateway."""

from .auth_gate import AuthContext, AuthGate, AuthMethod, require_authenticated

__all__ = ["AuthContext", "AuthGate", "AuthMethod", "require_authenticated"]
