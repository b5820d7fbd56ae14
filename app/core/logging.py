import logging
import sys
from typing import Dict, Any, Optional
from datetime import datetime, timezone
from app.config import settings

NOISY_LOGGERS = ("uvicorn.access", "asyncpg", "botocore", "boto3", "httpcore", "httpx", "urllib3")


class ColoredFormatter(logging.Formatter):
    """
    Console formatter: colored level names and the request context that
    exception handlers attach through extra={"context": {...}}.
    """

    COLORS = {
        'DEBUG': '\033[36m',
        'INFO': '\033[32m',
        'WARNING': '\033[33m',
        'ERROR': '\033[31m',
        'CRITICAL': '\033[1;35m',
    }
    RESET = '\033[0m'

    def __init__(self, fmt: str, datefmt: Optional[str] = None, use_colors: bool = True):
        super().__init__(fmt, datefmt)
        self.use_colors = use_colors

    def format(self, record):
        levelname = record.levelname
        if self.use_colors and levelname in self.COLORS:
            record.levelname = f"{self.COLORS[levelname]}{levelname}{self.RESET}"
        try:
            message = super().format(record)
        finally:
            record.levelname = levelname

        context = getattr(record, 'context', None)
        if context:
            message += " | " + " ".join(f"{k}={v}" for k, v in context.items())
        return message


def setup_logging(level: Optional[str] = None):
    """Install one console handler on the root logger"""

    level_name = (level or settings.log_level or ("DEBUG" if settings.debug else "INFO")).upper()

    root_logger = logging.getLogger()
    root_logger.setLevel(level_name)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level_name)
    console_handler.setFormatter(ColoredFormatter(
        '%(asctime)s | %(levelname)s | %(name)s | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
        use_colors=sys.stdout.isatty()
    ))
    root_logger.addHandler(console_handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return root_logger


def log_request_context(user_id: str = None, path: str = None) -> Dict[str, Any]:
    """Context dict for error logs; user ids are shortened"""
    context = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    if user_id:
        context["user_id"] = str(user_id)[:8] + "..."

    if path:
        context["path"] = path

    return context
