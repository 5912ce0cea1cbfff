"""Logging configuration for the plugin updater."""

import logging
import sys
import uuid
from collections.abc import Iterator
from contextlib import contextmanager

import structlog

from plugin_updater.config import get_settings


def setup_logging() -> None:
    """Configure structured logging.

    Every event carries the ``host`` and ``environment`` it came from, since
    agents ship their logs to a shared collector.
    """
    settings = get_settings()

    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)
    if settings.debug:
        log_level = logging.DEBUG

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            _add_agent_identity(settings.hostname, settings.environment),
            structlog.processors.add_log_level,
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            (
                structlog.dev.ConsoleRenderer(colors=True)
                if settings.is_development
                else structlog.processors.JSONRenderer()
            ),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # git output is logged through structlog; stdlib logging only serves httpx
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=log_level)
    for noisy in ("httpx", "httpcore"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def _add_agent_identity(hostname: str | None, environment: str):
    identity = {"environment": environment}
    if hostname:
        identity["host"] = hostname

    def processor(logger, method_name, event_dict):
        for key, value in identity.items():
            event_dict.setdefault(key, value)
        return event_dict

    return processor


@contextmanager
def update_context(revision: str) -> Iterator[str]:
    """Bind an attempt id and the target revision to every event in the block."""
    attempt_id = uuid.uuid4().hex[:12]
    with structlog.contextvars.bound_contextvars(update_attempt=attempt_id, revision=revision):
        yield attempt_id


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a logger instance."""
    return structlog.get_logger(name)
