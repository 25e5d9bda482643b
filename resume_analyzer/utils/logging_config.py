"""
Centralized logging configuration for the resume analysis service
"""
import logging
import logging.config
import os
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Dict

LOGGER_NAMESPACE = "resume_analyzer"

FORMATS = {
    "simple": "%(levelname)s - %(name)s - %(message)s",
    "detailed": "%(asctime)s | %(levelname)-8s | %(name)-40s | %(funcName)-20s:%(lineno)-4d | %(message)s",
}


def setup_logging(
    level: str = "INFO",
    log_dir: str = "logs",
    enable_console: bool = True,
    enable_file: bool = True,
    format_style: str = "detailed"
) -> None:
    """
    Configure root, uvicorn and pdfminer loggers.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_dir: Directory for the rotating log files
        enable_console: Log to stdout
        enable_file: Log to ``<log_dir>/resume_analyzer_<date>.log`` plus an errors-only file
        format_style: 'simple' or 'detailed'
    """
    formatter = format_style if format_style in FORMATS else "detailed"
    config: Dict[str, Any] = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {name: {"format": fmt, "datefmt": "%Y-%m-%d %H:%M:%S"} for name, fmt in FORMATS.items()},
        "handlers": {},
        "loggers": {
            "": {"level": level, "handlers": [], "propagate": False},
            "uvicorn": {"level": "INFO", "handlers": [], "propagate": False},
            "uvicorn.access": {"level": "INFO", "handlers": [], "propagate": False},
            # pdfminer is extremely chatty at INFO
            "pdfminer": {"level": "ERROR", "handlers": [], "propagate": True},
        }
    }

    if enable_console:
        config["handlers"]["console"] = {
            "class": "logging.StreamHandler",
            "level": level,
            "formatter": formatter,
            "stream": "ext://sys.stdout"
        }
        for name in ("", "uvicorn", "uvicorn.access"):
            config["loggers"][name]["handlers"].append("console")

    if enable_file:
        directory = Path(log_dir)
        directory.mkdir(parents=True, exist_ok=True)
        stamp = datetime.now().strftime("%Y%m%d")
        config["handlers"]["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "level": level,
            "formatter": "detailed",
            "filename": str(directory / f"resume_analyzer_{stamp}.log"),
            "maxBytes": 10485760,  # 10MB
            "backupCount": 5,
            "encoding": "utf8"
        }
        config["handlers"]["error_file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "level": "ERROR",
            "formatter": "detailed",
            "filename": str(directory / f"resume_analyzer_errors_{stamp}.log"),
            "maxBytes": 10485760,
            "backupCount": 5,
            "encoding": "utf8"
        }
        config["loggers"][""]["handlers"].extend(["file", "error_file"])
        config["loggers"]["uvicorn"]["handlers"].append("file")

    logging.config.dictConfig(config)

    logger = get_logger("logging")
    logger.info(f"Logging configured - Level: {level}, Console: {enable_console}, File: {enable_file}")


def get_logger(name: str) -> logging.Logger:
    """Return a logger under the service namespace (usually called with __name__)"""
    if name == LOGGER_NAMESPACE or name.startswith(f"{LOGGER_NAMESPACE}."):
        return logging.getLogger(name)
    return logging.getLogger(f"{LOGGER_NAMESPACE}.{name}")


def configure_for_environment():
    """Configure logging from ENVIRONMENT and LOG_LEVEL"""
    environment = os.getenv("ENVIRONMENT", "development").lower()
    log_level = os.getenv("LOG_LEVEL", "INFO").upper()
    log_dir = os.getenv("LOG_DIR", "logs")

    if environment == "production":
        setup_logging(level=log_level, log_dir=log_dir)
    elif environment == "development":
        setup_logging(level="DEBUG", log_dir=log_dir)
    elif environment == "testing":
        setup_logging(level="WARNING", enable_file=False, format_style="simple")
    else:
        setup_logging(level=log_level, log_dir=log_dir)


class PerformanceMonitor:
    """Context manager that logs how long an operation took"""

    def __init__(self, operation_name: str, logger: logging.Logger = None, threshold_ms: float = 1000, **context):
        self.operation_name = operation_name
        self.logger = logger or get_logger("performance")
        self.threshold_ms = threshold_ms
        self.context = context
        self.start_time = None
        self.elapsed_ms = None

    def __enter__(self):
        self.start_time = time.perf_counter()
        self.logger.debug(f"Starting {self.operation_name}", extra=self.context)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.elapsed_ms = (time.perf_counter() - self.start_time) * 1000

        if exc_type is not None:
            self.logger.error(
                f"{self.operation_name} failed after {self.elapsed_ms:.2f}ms: {exc_val}", extra=self.context
            )
        elif self.elapsed_ms > self.threshold_ms:
            self.logger.warning(
                f"{self.operation_name} completed in {self.elapsed_ms:.2f}ms (exceeded threshold {self.threshold_ms}ms)",
                extra=self.context
            )
        else:
            self.logger.info(f"{self.operation_name} completed in {self.elapsed_ms:.2f}ms", extra=self.context)
        return False
