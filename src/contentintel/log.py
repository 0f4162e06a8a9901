"""Logging setup with digest-id context propagation.

Every record carries a ``digest_id`` attribute taken from a context
variable, so log lines emitted by fetchers, the analyzer and delivery can
be correlated with the run that produced them::

    >>> setup_logging("INFO")
    >>> with digest_context(42):
    ...     logger.info("Fetching sources")
"""

from __future__ import annotations

import contextvars
import logging
from contextlib import contextmanager
from typing import Iterator

from rich.logging import RichHandler

digest_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("digest_id", default="-")

LOG_FORMAT = "[digest %(digest_id)s] %(name)s: %(message)s"


class RunContextFilter(logging.Filter):
    """Inject the active digest id into every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.digest_id = digest_id_var.get()
        return True


@contextmanager
def digest_context(digest_id: int | str) -> Iterator[None]:
    """Tag all log records emitted inside the block with ``digest_id``."""
    token = digest_id_var.set(str(digest_id))
    try:
        yield
    finally:
        digest_id_var.reset(token)


def setup_logging(level: str = "INFO") -> None:
    """Install a rich console handler on the root logger.

    Safe to call more than once; existing handlers are replaced.
    """
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler = RichHandler(rich_tracebacks=True, show_path=False)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.addFilter(RunContextFilter())
    root.addHandler(handler)
    root.setLevel(level.upper())

    # Third-party clients are chatty at INFO
    for name in ("httpx", "httpcore", "anthropic", "googleapiclient"):
        logging.getLogger(name).setLevel(logging.WARNING)
