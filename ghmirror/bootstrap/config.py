"""Configuration for bootstrap runs.

Usage
-----
Create a configuration with defaults:

>>> config = BootstrapConfig()
>>> config.pages_per_chunk
10

Or load from environment variables:

>>> import os
>>> os.environ["GHMIRROR_PAGES_PER_CHUNK"] = "5"
>>> BootstrapConfig.from_env().pages_per_chunk
5

"""

from __future__ import annotations

import dataclasses as dc
import os

DATABASE_URL_ENV = "GHMIRROR_DATABASE_URL"


@dc.dataclass(frozen=True, slots=True)
class BootstrapConfig:
    """Limits applied to a bootstrap run.

    Attributes
    ----------
    pages_per_chunk
        Pages fetched by one chunk invocation before it hands back a cursor.
    write_batch_size
        Records committed per projection transaction.
    check_run_sha_batch
        Head SHAs handled by one check-run chunk.
    write_timeout_s
        Upper bound in seconds for a single projection write.
    max_running_per_installation
        Bootstrap runs allowed to execute at once for one installation.
    workflow_run_job_limit
        Workflow runs whose jobs are fetched during the workflow stage.
    progress_every_chunks
        Chunks between in-loop progress writes on the sync job.

    """

    pages_per_chunk: int = 10
    write_batch_size: int = 50
    check_run_sha_batch: int = 100
    write_timeout_s: float = 30.0
    max_running_per_installation: int = 25
    workflow_run_job_limit: int = 20
    progress_every_chunks: int = 5

    @staticmethod
    def _parse_positive_int(env_var: str, default: int) -> int:
        """Read a positive integer env var, falling back to a default."""
        raw = os.environ.get(env_var, "")
        if not raw.strip():
            return default
        try:
            value = int(raw)
        except ValueError as exc:
            msg = f"{env_var} must be an integer, got: {raw!r}"
            raise ValueError(msg) from exc
        if value < 1:
            msg = f"{env_var} must be positive, got: {value}"
            raise ValueError(msg)
        return value

    @staticmethod
    def _parse_positive_float(env_var: str, default: float) -> float:
        """Read a positive float env var, falling back to a default."""
        raw = os.environ.get(env_var, "")
        if not raw.strip():
            return default
        try:
            value = float(raw)
        except ValueError as exc:
            msg = f"{env_var} must be a number, got: {raw!r}"
            raise ValueError(msg) from exc
        if value <= 0:
            msg = f"{env_var} must be positive, got: {value}"
            raise ValueError(msg)
        return value

    @classmethod
    def from_env(cls) -> BootstrapConfig:
        """Create configuration from ``GHMIRROR_*`` environment variables.

        Reads ``GHMIRROR_PAGES_PER_CHUNK``, ``GHMIRROR_WRITE_BATCH_SIZE``,
        ``GHMIRROR_CHECK_RUN_SHA_BATCH``, ``GHMIRROR_WRITE_TIMEOUT_S`` and
        ``GHMIRROR_MAX_RUNNING_PER_INSTALLATION``; unset variables keep their
        defaults.

        Raises
        ------
        ValueError
            If a variable is set but is not a positive number.

        """
        return cls(
            pages_per_chunk=cls._parse_positive_int("GHMIRROR_PAGES_PER_CHUNK", 10),
            write_batch_size=cls._parse_positive_int("GHMIRROR_WRITE_BATCH_SIZE", 50),
            check_run_sha_batch=cls._parse_positive_int(
                "GHMIRROR_CHECK_RUN_SHA_BATCH", 100
            ),
            write_timeout_s=cls._parse_positive_float(
                "GHMIRROR_WRITE_TIMEOUT_S", 30.0
            ),
            max_running_per_installation=cls._parse_positive_int(
                "GHMIRROR_MAX_RUNNING_PER_INSTALLATION", 25
            ),
        )


def database_url_from_env() -> str | None:
    """Return ``GHMIRROR_DATABASE_URL`` when set and non-blank."""
    raw = os.environ.get(DATABASE_URL_ENV, "").strip()
    return raw or None
