"""GitHub API and credential errors."""

from __future__ import annotations

_HTTP_TOO_MANY_REQUESTS = 429


class GitHubAPIError(RuntimeError):
    """Raised when GitHub returns a non-2xx response."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        rate_limited: bool = False,
    ) -> None:
        """Initialise with a message, HTTP status code and rate-limit flag."""
        self.status_code = status_code
        self.rate_limited = rate_limited or status_code == _HTTP_TOO_MANY_REQUESTS
        super().__init__(message)

    @classmethod
    def http_error(
        cls, status_code: int, path: str = "", *, rate_limited: bool = False
    ) -> GitHubAPIError:
        """Return an error for a non-2xx HTTP response."""
        target = f" for {path}" if path else ""
        return cls(
            f"GitHub API returned {status_code}{target}",
            status_code=status_code,
            rate_limited=rate_limited,
        )


class GitHubConfigError(RuntimeError):
    """Raised when GitHub client configuration is invalid."""

    @classmethod
    def missing_token(cls) -> GitHubConfigError:
        """Return an error when no static token is configured."""
        return cls("GHMIRROR_GITHUB_TOKEN is required for the static resolver")

    @classmethod
    def empty_token(cls) -> GitHubConfigError:
        """Return an error when the provided token is empty."""
        return cls("GitHub token must be non-empty")


class GitHubAuthError(RuntimeError):
    """Raised when no usable credential can be resolved for a repository."""

    def __init__(self, message: str, *, installation_id: int) -> None:
        """Record the installation the resolution failed for."""
        self.installation_id = installation_id
        super().__init__(message)

    @classmethod
    def no_credential(
        cls, installation_id: int, legacy_user_id: str | None
    ) -> GitHubAuthError:
        """Return an error when neither credential source yields a token."""
        return cls(
            "No usable GitHub credential: "
            f"installation_id={installation_id} legacy_user_id={legacy_user_id}",
            installation_id=installation_id,
        )
