"""GitHub REST client, response shapes and record transformers."""

from __future__ import annotations

from .client import PER_PAGE, GitHubRestClient, GitHubRestConfig, decode_lenient_array
from .errors import (
    GitHubAPIError,
    GitHubAuthError,
    GitHubConfigError,
)
from .models import LenientPage, SkippedItem
from .tokens import StaticTokenResolver, StoredCredentialResolver, TokenResolver
from .transformers import UserCollector, UserRecord

__all__ = [
    "PER_PAGE",
    "GitHubAPIError",
    "GitHubAuthError",
    "GitHubConfigError",
    "GitHubRestClient",
    "GitHubRestConfig",
    "LenientPage",
    "SkippedItem",
    "StaticTokenResolver",
    "StoredCredentialResolver",
    "TokenResolver",
    "UserCollector",
    "UserRecord",
    "decode_lenient_array",
]
