"""Unit tests for femtologging integration helpers."""

from __future__ import annotations

import pytest

from ghmirror.logging import (
    configure_logging,
    format_log_message,
    log_debug,
    log_error,
    log_exception,
    log_info,
    log_warning,
    normalize_log_level,
)


class _FakeLogger:
    """Collects log calls for assertions."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str, object | None]] = []

    def log(
        self,
        level: str,
        message: str,
        /,
        *,
        exc_info: object | None = None,
        stack_info: bool = False,
    ) -> str:
        assert stack_info is False
        self.calls.append((level, message, exc_info))
        return message


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("debug", ("DEBUG", False)),
        (" Warn ", ("WARN", False)),
        (None, ("INFO", True)),
        ("", ("INFO", True)),
        ("verbose", ("INFO", True)),
    ],
)
def test_normalize_log_level(raw: str | None, expected: tuple[str, bool]) -> None:
    """Levels are upper-cased and unknown ones fall back to INFO."""
    assert normalize_log_level(raw) == expected


def test_format_log_message() -> None:
    """Templates use percent interpolation."""
    assert format_log_message("%s fetched %d", "octo/reef", 3) == "octo/reef fetched 3"


@pytest.mark.parametrize(
    ("helper", "level"),
    [
        (log_debug, "DEBUG"),
        (log_info, "INFO"),
        (log_warning, "WARNING"),
        (log_error, "ERROR"),
    ],
)
def test_level_helpers_format_and_forward(helper: object, level: str) -> None:
    """Each helper formats eagerly and emits its own level."""
    logger = _FakeLogger()
    exc = RuntimeError("boom")

    helper(logger, "stage=%s", "issues", exc_info=exc)  # type: ignore[operator]

    assert logger.calls == [(level, "stage=issues", exc)]


def test_log_exception_attaches_exception() -> None:
    """log_exception logs at ERROR with the exception attached."""
    logger = _FakeLogger()
    exc = ValueError("bad page")

    log_exception(logger, "page failed", exc)

    assert logger.calls == [("ERROR", "page failed", exc)]


class TestConfigureLogging:
    """Tests for configure_logging."""

    @pytest.fixture
    def basic_config(self, monkeypatch: pytest.MonkeyPatch) -> dict[str, object]:
        captured: dict[str, object] = {}

        def fake_basic_config(**kwargs: object) -> None:
            captured.update(kwargs)

        monkeypatch.setattr("ghmirror.logging.basicConfig", fake_basic_config)
        return captured

    def test_explicit_level(self, basic_config: dict[str, object]) -> None:
        """An explicit level is normalised and passed to basicConfig."""
        assert configure_logging("debug") == "DEBUG"
        assert basic_config == {"level": "DEBUG", "force": False}

    def test_level_from_environment(
        self, monkeypatch: pytest.MonkeyPatch, basic_config: dict[str, object]
    ) -> None:
        """Without an argument the level comes from GHMIRROR_LOG_LEVEL."""
        monkeypatch.setenv("GHMIRROR_LOG_LEVEL", "error")

        assert configure_logging() == "ERROR"
        assert basic_config["level"] == "ERROR"

    def test_invalid_level_warns_and_falls_back(
        self, monkeypatch: pytest.MonkeyPatch, basic_config: dict[str, object]
    ) -> None:
        """An unusable level configures INFO and logs a warning."""
        logger = _FakeLogger()
        monkeypatch.setattr("ghmirror.logging.get_logger", lambda _name: logger)

        assert configure_logging("loud", force=True) == "INFO"

        assert basic_config == {"level": "INFO", "force": True}
        ((level, message, _),) = logger.calls
        assert level == "WARNING"
        assert "'loud'" in message
