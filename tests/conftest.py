from __future__ import annotations

import logging
from collections.abc import Iterator

import pytest

from k8s_inventory.log import ROOT_LOGGER


@pytest.fixture(autouse=True)
def _reset_package_logger() -> Iterator[None]:
    """Undo ``setup_logging`` so caplog keeps seeing package records."""
    yield
    logger = logging.getLogger(ROOT_LOGGER)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(logging.NOTSET)
    logger.propagate = True
