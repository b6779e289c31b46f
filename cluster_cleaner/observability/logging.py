"""Structured logging configuration using structlog.

Every line is one JSON object on stderr. Loggers carry a ``component``
field; while a reconciliation runs, ``cluster`` and ``namespace`` are bound
through contextvars so log lines from the policy, cascade and store layers
can be correlated without threading the key through every call.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import cast

import structlog
from structlog.typing import FilteringBoundLogger

# Chatty client libraries only surface warnings and above.
_QUIET_LIBRARIES = ("kubernetes_asyncio", "aiohttp", "httpx", "httpcore")


def setup_logging(level: str = "info", dry_run: bool = False) -> None:
    """Configure structlog for JSON output to stderr.

    ``dry_run`` is stamped on every line so dry-run output can never be
    mistaken for a live run.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    logging.basicConfig(level=log_level, stream=sys.stderr, format="%(message)s")
    for name in _QUIET_LIBRARIES:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.format_exc_info,
            structlog.processors.TimeStamper(fmt="iso", utc=True, key="ts"),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )
    structlog.contextvars.clear_contextvars()
    if dry_run:
        structlog.contextvars.bind_contextvars(dry_run=True)


def get_logger(component: str) -> FilteringBoundLogger:
    """Get a logger bound with a component name."""
    return cast(FilteringBoundLogger, structlog.get_logger(component=component))


@contextmanager
def reconcile_context(namespace: str, name: str) -> Iterator[None]:
    """Bind the cluster being reconciled for the duration of the block."""
    with structlog.contextvars.bound_contextvars(cluster=name, namespace=namespace):
        yield
