# utils/logger.py
import logging
from rich.logging import RichHandler

from utils.config import LOG_LEVEL

# Configure the RichHandler for console output
handler = RichHandler(show_time=True, rich_tracebacks=True, log_time_format="[%X]")
handler.setFormatter(logging.Formatter("%(message)s"))

logger = logging.getLogger("coop")
logger.setLevel(LOG_LEVEL.upper())
logger.addHandler(handler)

# Prevent the log messages from being duplicated by the root logger
logger.propagate = False
