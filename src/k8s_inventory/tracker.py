"""Timing of slow operations (API calls, collection phases)."""

from __future__ import annotations

import logging
import time
from collections.abc import Iterator
from contextlib import contextmanager

logger = logging.getLogger(__name__)


@contextmanager
def track_time(message: str) -> Iterator[None]:
    """Log at debug level how long the wrapped block took."""
    start = time.monotonic()
    try:
        yield
    finally:
        logger.debug("%s (%.3fs)", message, time.monotonic() - start)
