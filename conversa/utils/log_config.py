import logging
import sys

from conversa.config import Settings


def configure_logging(settings: Settings) -> None:
    """Install one console handler on the root logger and route uvicorn through it."""
    root = logging.getLogger()
    root.setLevel(settings.LOG_LEVEL.upper())

    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(fmt=settings.LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    root.addHandler(handler)

    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        uvicorn_logger = logging.getLogger(name)
        uvicorn_logger.handlers = [handler]
        uvicorn_logger.propagate = False
