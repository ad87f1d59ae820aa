import os
import sys
from typing import Optional

from dotenv import load_dotenv
from loguru import logger

from .config import ENV

DEFAULT_LOG_LEVEL = "INFO"


def setup_logger(level: Optional[str] = None, log_file: Optional[str] = None) -> None:
    """
    Replace loguru's default sink with one honouring `LOG_LEVEL`, and
    optionally add a rotating file sink (`LOG_FILE`).
    """
    load_dotenv()

    level = (level or os.getenv(ENV.LOG_LEVEL) or DEFAULT_LOG_LEVEL).upper()
    log_file = log_file or os.getenv(ENV.LOG_FILE)

    logger.remove()
    logger.add(sys.stderr, level=level)

    if log_file:
        logger.add(log_file, level=level, rotation="100 MB", retention="10 days")
