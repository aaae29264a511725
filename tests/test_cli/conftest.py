"""CLI test harness: keep structlog from caching loggers bound to CliRunner's
captured stderr, which is closed after each invoke."""

import pytest
import structlog

import hybrid_recall.cli as cli_module


@pytest.fixture(autouse=True)
def _isolate_structlog(monkeypatch):
    original = cli_module.configure_logging

    def configure_without_cache(*args, **kwargs):
        original(*args, **kwargs)
        structlog.configure(cache_logger_on_first_use=False)

    monkeypatch.setattr(cli_module, "configure_logging", configure_without_cache)
    yield
    structlog.reset_defaults()
