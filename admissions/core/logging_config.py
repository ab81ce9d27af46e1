"""
Logging configuration using Loguru.

Provides:
- Human-readable logs (colored in dev, plain text in production)
- Request context via Loguru's .bind() method
- Third-party library log level control
"""

import os
import sys
import logging
from loguru import logger


def setup_logging(log_level: str = None, log_file: str = None) -> None:
    """
    Configure logging for the service using Loguru

    Args:
        log_level: Log level (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional log file path
    """

    # Remove default loguru handler
    logger.remove()

    if log_level is None:
        log_level = os.environ.get("LOG_LEVEL", "INFO").upper()

    environment = os.environ.get("ENVIRONMENT", "development")

    # Standard logging for third-party libraries that use logging.getLogger()
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        force=True
    )

    # Web server
    logging.getLogger("uvicorn").setLevel(getattr(logging, log_level, logging.INFO))
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.error").setLevel(getattr(logging, log_level, logging.INFO))

    # Database
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    # HTTP clients (Paystack, Brevo)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)

    if environment == "production":
        logger.add(
            sys.stdout,
            format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} | {message} | {extra}{exception}",
            level=log_level,
            colorize=False,
            serialize=False,
            enqueue=True
        )
    else:
        logger.add(
            sys.stdout,
            format="<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | <level>{message}</level> | <blue>{extra}</blue>{exception}",
            level=log_level,
            colorize=True,
            enqueue=True
        )

    if log_file:
        logger.add(log_file, level=log_level, rotation="50 MB", retention=5, enqueue=True)

    logger.info(f"Logging configured - Environment: {environment}, Level: {log_level}")


def get_logger(name: str = None):
    """Get a logger instance"""
    return logger.bind(module=name or "admissions-service")


def log_payment_event(event: str, reference: str, **kwargs):
    """Log a payment lifecycle event"""
    logger.bind(reference=reference, **kwargs).info(f"Payment event: {event}")
