"""
Structured Logging Service

structlog setup shared by the API, the pipeline stages and the CLI.
Log lines go to stderr so `newsdigest-run --json` keeps stdout clean.
"""

import logging
import sys
import structlog
from newsdigest.config import settings

# Chatty client libraries: every streamed chunk would otherwise be logged
QUIET_LOGGERS = ('httpx', 'httpcore', 'uvicorn.access')


def configure_logging(level: str = 'info', json_output: bool = False):
    """
    Configure structlog and the stdlib root logger
    Args:
        level: Log level name (debug, info, warning, error)
        json_output: Render JSON lines instead of the console format
    """
    renderer = structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer(
        colors=sys.stderr.isatty()
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, level.upper(), logging.INFO),
        force=True,
    )
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


configure_logging(settings.LOG_LEVEL, settings.NODE_ENV == 'production')

logger = structlog.get_logger('newsdigest')


def create_request_logger(request_id: str):
    """Logger with the request id bound to every line"""
    return logger.bind(requestId=request_id)
