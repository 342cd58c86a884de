import os
import sys

from loguru import logger

# Define log formats; every record carries the network it was logged for
debug_format = "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{extra[network]}</cyan> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
info_format = "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{extra[network]}</cyan> - <level>{message}</level>"

# Records logged without an explicit bind still render the network column
logger.configure(extra={"network": "GLOBAL"})


def configure_logging(level="INFO", force_color=False):
    """Replace loguru's default sink with the service's stderr sink.

    Returns the effective level, which falls back to INFO for anything other
    than TRACE or DEBUG.
    """
    level = (level or "INFO").upper()
    logger.remove()

    if level in ("TRACE", "DEBUG"):
        logger.add(sys.stderr, format=debug_format, colorize=True, level=level)
    else:
        level = "INFO"
        logger.add(sys.stderr, format=info_format, colorize=True, level=level)

    # If force color is requested, use environment variable to make loguru always colorize output
    if force_color:
        os.environ["FORCE_COLOR"] = "1"
        logger.info("Forcing colored output for logs (useful for k9s and other tools)")

    return level


def network_logger(name):
    return logger.bind(network=name.upper() if name else "UNKNOWN")
