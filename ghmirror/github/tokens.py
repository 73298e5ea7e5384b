"""Resolve the GitHub credential a bootstrap run authenticates with."""

from __future__ import annotations

import os
import typing as typ

from ghmirror.common.time import utcnow
from ghmirror.github.errors import GitHubAuthError, GitHubConfigError
from ghmirror.projection.storage import InstallationCredential, UserCredential

if typ.TYPE_CHECKING:
    import datetime as dt

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

GITHUB_TOKEN_ENV = "GHMIRROR_GITHUB_TOKEN"


class TokenResolver(typ.Protocol):
    """Return a usable access token for a repository's installation."""

    async def resolve(
        self, installation_id: int, legacy_user_id: str | None = None
    ) -> str:
        """Return a non-empty token or raise :class:`GitHubAuthError`."""
        ...


def _usable(token: str | None, expires_at: dt.datetime | None) -> bool:
    if token is None or not token.strip():
        return False
    return expires_at is None or expires_at > utcnow()


class StoredCredentialResolver:
    """Read credentials maintained by the auth subsystem from the store.

    Installation credentials are preferred. A user-linked credential is only
    consulted when the repository was connected through the legacy user flow.
    Database errors raised by the lookups propagate unchanged.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        """Store the session factory used for credential lookups."""
        self._session_factory = session_factory

    async def resolve(
        self, installation_id: int, legacy_user_id: str | None = None
    ) -> str:
        """Return the preferred usable token for ``installation_id``."""
        async with self._session_factory() as session:
            installation = await session.get(InstallationCredential, installation_id)
            if installation is not None and _usable(
                installation.token, installation.expires_at
            ):
                return installation.token

            if legacy_user_id:
                user = await session.get(UserCredential, legacy_user_id)
                if user is not None and _usable(user.token, user.expires_at):
                    return user.token

        raise GitHubAuthError.no_credential(installation_id, legacy_user_id)


class StaticTokenResolver:
    """Resolve every installation to one configured token."""

    def __init__(self, token: str) -> None:
        """Store the configured token."""
        if not token.strip():
            raise GitHubConfigError.empty_token()
        self._token = token

    @classmethod
    def from_env(cls) -> StaticTokenResolver:
        """Build a resolver from ``GHMIRROR_GITHUB_TOKEN``."""
        token = os.environ.get(GITHUB_TOKEN_ENV, "")
        if not token.strip():
            raise GitHubConfigError.missing_token()
        return cls(token)

    async def resolve(
        self, installation_id: int, legacy_user_id: str | None = None
    ) -> str:
        """Return the configured token regardless of installation."""
        return self._token
