import logging
import sys

from pythonjsonlogger import jsonlogger

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Send every log record to stdout as one JSON object per line."""
    log_handler = logging.StreamHandler(sys.stdout)
    log_handler.setFormatter(jsonlogger.JsonFormatter(LOG_FORMAT))

    logger = logging.getLogger()
    # create_app() may run more than once per process (tests)
    for handler in list(logger.handlers):
        if getattr(handler, "_petshop", False):
            logger.removeHandler(handler)
    log_handler._petshop = True

    logger.setLevel(level.upper())
    logger.addHandler(log_handler)
