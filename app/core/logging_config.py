# app/core/logging_config.py
import logging
import logging.config
import sys
from typing import Dict, Any
from app.core.config import settings


def setup_logging() -> None:
    """Setup centralized logging configuration"""
    # Prevent logging handler failures (e.g., broken pipe) from raising exceptions
    # that could interrupt request/background task processing.
    logging.raiseExceptions = False

    # Define log format
    log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    app_handlers = ["console"]
    handlers: Dict[str, Any] = {
        "console": {
            "class": "logging.StreamHandler",
            "level": "DEBUG" if settings.DEBUG else "INFO",
            "formatter": "detailed" if settings.DEBUG else "default",
            "stream": sys.stdout,
        },
    }
    if settings.LOG_FILE:
        handlers["file"] = {
            "class": "logging.FileHandler",
            "level": "INFO",
            "formatter": "detailed",
            "filename": settings.LOG_FILE,
            "mode": "a",
        }
        app_handlers.append("file")

    # Define logging configuration
    logging_config: Dict[str, Any] = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {
                "format": log_format,
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
            "detailed": {
                "format": "%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
        },
        "handlers": handlers,
        "loggers": {
            "": {  # Root logger
                "handlers": ["console"],
                "level": "INFO",
                "propagate": False,
            },
            "app": {  # Application logger
                "handlers": app_handlers,
                "level": "DEBUG" if settings.DEBUG else "INFO",
                "propagate": False,
            },
            "uvicorn": {
                "handlers": ["console"],
                "level": "INFO",
                "propagate": False,
            },
            "sqlalchemy": {
                "handlers": ["console"],
                "level": "WARNING",
                "propagate": False,
            },
            "httpx": {
                "handlers": ["console"],
                "level": "WARNING",
                "propagate": False,
            },
        },
    }

    # Apply configuration
    logging.config.dictConfig(logging_config)

    # Set specific logger levels based on environment
    if settings.ENVIRONMENT == "production":
        logging.getLogger("app").setLevel(logging.INFO)
        logging.getLogger("uvicorn").setLevel(logging.WARNING)

    logger = logging.getLogger(__name__)
    logger.info(f"Logging configured for {settings.ENVIRONMENT} environment")
    logger.info(f"Debug mode: {settings.DEBUG}")


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance with the given name"""
    return logging.getLogger(f"app.{name}")


# Initialize logging when module is imported
setup_logging()
