"""Loggers for the HandyPay backend.

``request_logger`` keeps one line per HTTP exchange in a rotating file
under ``settings.LOG_DIR``. ``app_logger`` carries payment, webhook,
payout and push-notification events to stdout.
"""
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from app.config import settings

# Clients that log every outbound call at INFO
NOISY_LOGGERS = ("stripe", "httpx", "httpcore")


def _level() -> int:
    return getattr(logging, settings.LOG_LEVEL.upper())


def setup_request_logger() -> logging.Logger:
    log_dir = Path(settings.LOG_DIR)
    log_dir.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger("handypay.requests")
    logger.setLevel(_level())
    if logger.handlers:
        return logger

    handler = RotatingFileHandler(
        filename=log_dir / "requests.log",
        maxBytes=settings.LOG_MAX_SIZE_MB * 1024 * 1024,
        backupCount=settings.LOG_MAX_FILES,
        encoding="utf-8",
    )
    formatter = logging.Formatter(fmt="[%(asctime)s] %(message)s")
    formatter.default_msec_format = "%s.%03d"
    handler.setFormatter(formatter)

    logger.addHandler(handler)
    logger.propagate = False
    return logger


def setup_app_logger() -> logging.Logger:
    """
    Stdout logger for ledger and processor events.

    Webhook deliveries, payment-link changes and payout runs are logged
    here with their Stripe ids so a delivery can be traced end to end.
    """
    logger = logging.getLogger("handypay.app")
    logger.setLevel(_level())
    if logger.handlers:
        return logger

    handler = logging.StreamHandler()
    handler.setFormatter(
        logging.Formatter(
            fmt="[%(asctime)s] [%(levelname)s] %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    logger.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return logger


request_logger = setup_request_logger()
app_logger = setup_app_logger()
