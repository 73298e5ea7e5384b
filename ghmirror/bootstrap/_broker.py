"""Dramatiq broker checks run before a bootstrap actor does any work."""

from __future__ import annotations

import os
import sys
import threading

import dramatiq
from dramatiq.brokers.stub import StubBroker

ALLOW_STUB_BROKER_ENV = "GHMIRROR_ALLOW_STUB_BROKER"
_PYTEST_ENV_MARKERS = ("PYTEST_CURRENT_TEST", "PYTEST_XDIST_WORKER", "PYTEST_ADDOPTS")

_BROKER_LOCK = threading.Lock()
_broker_configured = False


def _is_running_tests() -> bool:
    return "pytest" in sys.modules or any(
        marker in os.environ for marker in _PYTEST_ENV_MARKERS
    )


def stub_broker_allowed() -> bool:
    """Return ``True`` under pytest or when ``GHMIRROR_ALLOW_STUB_BROKER`` is set."""
    allow_stub = os.environ.get(ALLOW_STUB_BROKER_ENV, "")
    return allow_stub.strip().lower() in {"1", "true", "yes"} or _is_running_tests()


def ensure_broker_configured() -> None:
    """Make sure a broker exists before an actor body runs.

    The check runs once per process under a lock, because Dramatiq worker
    threads may start actors concurrently. Without a configured broker a
    :class:`StubBroker` is installed where stubbing is allowed.

    Raises
    ------
    RuntimeError
        If no broker is configured and stubbing is not allowed.

    """
    global _broker_configured  # noqa: PLW0603

    if _broker_configured:
        return

    with _BROKER_LOCK:
        if _broker_configured:
            return

        try:
            current_broker = dramatiq.get_broker()
        except (ImportError, LookupError):
            # The default RabbitMQ broker needs pika, which is optional.
            current_broker = None

        if current_broker is None:
            if not stub_broker_allowed():
                message = (
                    "No Dramatiq broker configured. Set "
                    f"{ALLOW_STUB_BROKER_ENV}=1 for local runs or configure "
                    "a real broker before starting workers."
                )
                raise RuntimeError(message)
            dramatiq.set_broker(StubBroker())

        _broker_configured = True
