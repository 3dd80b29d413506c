"""
Authentication provider — the narrow view of sign-in the engine needs.

The engine only asks two things: who is signed in (to pre-fill the
connect command) and a bearer token for a scope (to open secondary
channels such as Microsoft Graph).  How tokens are acquired is up to the
implementation.
"""

from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable

from cloudadmin.core.engine.errors import CloudAdminError

logger = logging.getLogger(__name__)


class AuthError(CloudAdminError):
    """No token is available for the requested scope."""


@runtime_checkable
class AuthProvider(Protocol):
    def identity_hint(self) -> str | None:
        """User principal name of the signed-in operator, if known."""
        ...

    async def get_access_token(self, scope: str) -> str:
        """Bearer token for *scope*.  Raises AuthError when unavailable."""
        ...


class StaticAuthProvider:
    """Identity and tokens supplied up front (config file, env, tests)."""

    def __init__(self, user_principal_name: str | None = None, tokens: dict[str, str] | None = None):
        self._upn = user_principal_name
        self._tokens = dict(tokens or {})
        self.token_requests: list[str] = []

    def identity_hint(self) -> str | None:
        return self._upn

    async def get_access_token(self, scope: str) -> str:
        self.token_requests.append(scope)
        token = self._tokens.get(scope)
        if not token:
            raise AuthError(f"No access token configured for scope '{scope}'")
        logger.debug("Issued static token for scope %s", scope)
        return token
