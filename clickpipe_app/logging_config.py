"""
Loguru setup shared by the API process and the standalone consumer.
"""

import sys

from loguru import logger

from clickpipe_app.config import Settings

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
    "<level>{message}</level>"
)


def setup_logging(config: Settings):
    """
    Replace loguru's default sink with a single stdout sink.

    enqueue=True hands records to a background thread so a log call
    on the redirect path never waits on stdout.
    """
    logger.remove()
    logger.add(
        sys.stdout,
        level=config.log_level.upper(),
        enqueue=True,
        backtrace=config.debug,
        diagnose=False,
        colorize=not config.log_json,
        serialize=config.log_json,
        format=LOG_FORMAT,
    )
