import logging

import structlog
from structlog.stdlib import LoggerFactory

from medfund.core.constants import LOG_LEVEL

logging.basicConfig(level=LOG_LEVEL, format="%(message)s")

structlog.configure(
    logger_factory=LoggerFactory(),
    processors=[
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
        structlog.processors.JSONRenderer(),
    ],
)

logger = structlog.get_logger()
