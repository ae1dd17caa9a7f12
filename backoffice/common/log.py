import logging
import os

from logging.handlers import RotatingFileHandler

from rich.logging import RichHandler

from backoffice.core.conf import settings
from backoffice.core.path_conf import LOG_DIR
from backoffice.utils.console import console

_configured = False


def setup_logging() -> None:
    """
    Configure the root logger

    Console output goes through rich, file output is split into an access log
    and an error log. Safe to call more than once.
    """
    global _configured
    if _configured:
        return

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(logging.DEBUG)

    console_handler = RichHandler(console=console, rich_tracebacks=True, show_path=False)
    console_handler.setLevel(settings.LOG_STD_LEVEL)
    console_handler.setFormatter(logging.Formatter('%(name)s | %(message)s'))
    root.addHandler(console_handler)

    for handler in set_custom_logfile():
        root.addHandler(handler)

    # Third-party loggers that are too chatty at INFO
    for name in ('httpx', 'apscheduler', 'stripe'):
        logging.getLogger(name).setLevel(logging.WARNING)

    _configured = True


def set_custom_logfile() -> list[logging.Handler]:
    """Rotating access and error log files"""
    if not os.path.exists(LOG_DIR):
        os.makedirs(LOG_DIR, exist_ok=True)

    formatter = logging.Formatter(settings.LOG_FORMAT)

    access_handler = RotatingFileHandler(
        LOG_DIR / settings.LOG_ACCESS_FILENAME, maxBytes=10 * 1024 * 1024, backupCount=10, encoding='utf-8'
    )
    access_handler.setLevel(settings.LOG_FILE_ACCESS_LEVEL)
    access_handler.setFormatter(formatter)

    error_handler = RotatingFileHandler(
        LOG_DIR / settings.LOG_ERROR_FILENAME, maxBytes=10 * 1024 * 1024, backupCount=10, encoding='utf-8'
    )
    error_handler.setLevel(settings.LOG_FILE_ERROR_LEVEL)
    error_handler.setFormatter(formatter)

    return [access_handler, error_handler]


log = logging.getLogger('backoffice')
