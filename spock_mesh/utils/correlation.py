"""
Correlation IDs for reconciliation passes.

Each pass runs inside a CorrelationContext so every log record emitted during the
pass carries the same id, which the CLI's JSON formatter and the report
both expose.
"""

import uuid
import contextvars
from typing import Optional
import logging

logger = logging.getLogger(__name__)

_correlation_id: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    'correlation_id',
    default=None
)


def generate_correlation_id() -> str:
    """Generate a new UUID4 correlation ID."""
    return str(uuid.uuid4())


def get_correlation_id() -> Optional[str]:
    """Current correlation ID, or None outside a run."""
    return _correlation_id.get()


class CorrelationContext:
    """
    Context manager scoping a correlation ID to one reconciliation pass.

    The previous ID (if any) is restored on exit.
    """

    def __init__(self, correlation_id: Optional[str] = None):
        self.correlation_id = correlation_id
        self._token = None

    def __enter__(self) -> str:
        if not self.correlation_id:
            self.correlation_id = generate_correlation_id()

        self._token = _correlation_id.set(self.correlation_id)
        logger.debug(f"Entered correlation context: {self.correlation_id}")
        return self.correlation_id

    def __exit__(self, exc_type, exc_val, exc_tb):
        _correlation_id.reset(self._token)
        self._token = None


def correlation_id_filter(record):
    """Logging filter that stamps records with the current correlation ID."""
    record.correlation_id = get_correlation_id() or "N/A"
    return True


def setup_correlation_logging(logger_instance: logging.Filterer) -> None:
    """Attach the correlation filter to a logger or handler."""
    logger_instance.addFilter(correlation_id_filter)
