import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

from fastapi import Request

LOGGER_NAME = "simple_file_server"


def setup_logger() -> logging.Logger:
    """Return the server logger, attaching the console handler on first use."""
    logger = logging.getLogger(LOGGER_NAME)
    if any(type(h) is logging.StreamHandler for h in logger.handlers):
        return logger

    logger.setLevel(logging.DEBUG)

    console_formatter = logging.Formatter(
        '%(asctime)s - %(levelname)s - %(message)s'
    )

    # Console handler (always on)
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(console_formatter)
    logger.addHandler(console_handler)

    return logger


def enable_file_logging(logs_dir: Path, now: Optional[datetime] = None) -> bool:
    """Duplicate log lines into a per-session log and logs/latest.txt.

    latest.txt is truncated on every call. Returns False, after reporting the
    problem on the console, when the log files cannot be opened.
    """
    logger = setup_logger()
    now = now or datetime.now()

    file_formatter = logging.Formatter(
        '%(asctime)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s'
    )

    session_name = now.strftime("%Y_%m_%d_at_%H_%M_%S") + ".txt"
    try:
        logs_dir.mkdir(parents=True, exist_ok=True)
        latest_handler = logging.FileHandler(logs_dir / "latest.txt", mode="w", encoding="utf-8")
        session_handler = logging.FileHandler(logs_dir / session_name, encoding="utf-8")
    except OSError as e:
        logger.error(f"Failed to open log files in {logs_dir}: {e}")
        return False

    for handler in (latest_handler, session_handler):
        handler.setLevel(logging.DEBUG)
        handler.setFormatter(file_formatter)
        logger.addHandler(handler)

    logger.debug(f"File logging enabled: {logs_dir / session_name}")
    return True


def disable_file_logging() -> None:
    """Detach and close every file handler of the server logger."""
    logger = logging.getLogger(LOGGER_NAME)
    for handler in logger.handlers[:]:
        if isinstance(handler, logging.FileHandler):
            logger.removeHandler(handler)
            handler.close()


def format_request(request: Request) -> str:
    if request.client is not None:
        remote = f"{request.client.host}:{request.client.port}"
    else:
        remote = "-"
    url = request.url.path
    if request.url.query:
        url += f"?{request.url.query}"
    return f"{remote} {request.method} {url}"


async def log_requests(request: Request, call_next):
    """HTTP middleware recording every request before it is handled."""
    setup_logger().info(format_request(request))
    return await call_next(request)
