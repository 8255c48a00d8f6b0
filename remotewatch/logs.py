import logging
import sys

from typing import IO, Optional  # noqa


LOG_FORMAT = '%(asctime)s %(levelname)s %(threadName)s %(name)s: %(message)s'


def configure_logging(level=logging.INFO, stream=None):
    # type: (int, Optional[IO[str]]) -> logging.Logger
    """Send remotewatch log records to ``stream`` (stderr by default).

    Calling this again replaces the handler installed by the previous call
    instead of adding a second one.
    """
    logger = logging.getLogger('remotewatch')
    for handler in list(logger.handlers):
        if getattr(handler, '_remotewatch', False):
            logger.removeHandler(handler)
    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler._remotewatch = True  # type: ignore
    logger.addHandler(handler)
    logger.setLevel(level)
    return logger
