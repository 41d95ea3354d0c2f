"""Authentication type definitions."""

from __future__ import annotations

from typing import Awaitable, Callable, NamedTuple, Sequence


class AccessToken(NamedTuple):
    """Represents an OAuth access token.

    Compatible with azure.core.credentials.AccessToken but avoids the dependency.
    """

    token: str
    """The token string."""

    expires_on: int
    """The token's expiration time in Unix time."""


class AuthenticationFailed(Exception):
    """Raised by a token provider when no usable access token can be produced."""


# Token acquisition lives outside the engine. Providers may be plain callables
# (MSAL silent acquisition) or coroutines (interactive refresh).
TokenProvider = Callable[[Sequence[str]], AccessToken | Awaitable[AccessToken]]


__all__ = ["AccessToken", "AuthenticationFailed", "TokenProvider"]
