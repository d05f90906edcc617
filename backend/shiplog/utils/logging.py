"""
ShipLog — Pipeline step logger with duration tracking.
"""

import logging
import time
from contextlib import contextmanager
from typing import Generator

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)-7s | %(message)s",
    datefmt="%H:%M:%S",
)

logger = logging.getLogger("shiplog")


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000


@contextmanager
def step_timer(step_name: str) -> Generator[None, None, None]:
    """Log the start of a step, then either its duration or the error that ended it."""
    logger.info("▶ %s — started", step_name)
    start = time.perf_counter()
    try:
        yield
    except Exception as exc:
        logger.warning("✘ %s — failed after %.0f ms: %s", step_name, _elapsed_ms(start), exc)
        raise
    logger.info("✔ %s — completed in %.0f ms", step_name, _elapsed_ms(start))
