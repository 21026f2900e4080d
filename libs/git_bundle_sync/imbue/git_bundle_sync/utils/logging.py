import sys
import time
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any
from typing import Final

from loguru import logger

_HUMAN_FORMAT: Final[str] = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)


def _dynamic_stderr_sink(message: Any) -> None:
    # resolve sys.stderr at write time, it may have been swapped out (e.g. by click or pytest capture)
    sys.stderr.write(str(message))
    sys.stderr.flush()


def setup_logging(level: str = "INFO", is_json: bool = False) -> None:
    """Replace loguru's default handler with a single stderr sink at the given level."""
    logger.remove()
    if is_json:
        logger.add(_dynamic_stderr_sink, level=level.upper(), serialize=True, diagnose=False)
    else:
        logger.add(_dynamic_stderr_sink, level=level.upper(), format=_HUMAN_FORMAT, diagnose=False)


@contextmanager
def log_span(message: str, *args: Any, **context: Any) -> Iterator[None]:
    """Log message at debug on entry and, with the elapsed time, at trace on exit.

    Keyword arguments are bound with logger.contextualize, so every record emitted inside the
    block carries them.
    """
    with logger.contextualize(**context):
        logger.debug(message, *args)
        start_time = time.monotonic()
        try:
            yield
        except BaseException:
            logger.trace(message + " [failed after {:.5f} sec]", *args, time.monotonic() - start_time)
            raise
        logger.trace(message + " [done in {:.5f} sec]", *args, time.monotonic() - start_time)
