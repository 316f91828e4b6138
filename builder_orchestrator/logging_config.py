"""
Logging setup for the builder orchestrator.

Every record is stamped with the slug of the organization whose builder is being
ensured, so interleaved ensure calls can be told apart in the logs.
"""

import contextvars
import logging
from typing import Optional

_current_org: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar("builder_org", default=None)

LOG_FORMAT = "%(asctime)s %(levelname)s [%(org_slug)s] %(name)s: %(message)s"


def set_current_org(org_slug: Optional[str]) -> contextvars.Token:
    """Set the organization for subsequent log records; returns a token for reset_current_org()."""
    return _current_org.set(org_slug)


def reset_current_org(token: contextvars.Token) -> None:
    _current_org.reset(token)


def get_current_org() -> Optional[str]:
    return _current_org.get()


class OrgContextFilter(logging.Filter):
    """Adds `org_slug` to every record passing through."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.org_slug = _current_org.get() or "-"
        return True


def setup_logging(level: int = logging.INFO) -> logging.Handler:
    """Attach a stream handler with org context to the package logger."""
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.addFilter(OrgContextFilter())

    package_logger = logging.getLogger("builder_orchestrator")
    package_logger.setLevel(level)
    package_logger.addHandler(handler)
    return handler
