"""Authentication contracts consumed by the bulk assignment engine."""

from .types import AccessToken, AuthenticationFailed, TokenProvider

__all__ = ["AccessToken", "AuthenticationFailed", "TokenProvider"]
