import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from typing import Optional


class Config:
    # MongoDB connection, same defaults as the Node deployment
    MONGODB_URI = os.environ.get("MONGODB_URI", "mongodb://localhost:27017/texflow")
    DATABASE_NAME = os.environ.get("DATABASE_NAME", "texflow")
    DB_TIMEOUT_MS = int(os.environ.get("DB_TIMEOUT_MS", "5000"))

    PORT = int(os.environ.get("PORT", "5000"))
    # Product images travel inline as base64
    MAX_PAYLOAD_BYTES = int(os.environ.get("MAX_PAYLOAD_BYTES", str(25 * 1024 * 1024)))
    CORS_ORIGINS = [o.strip() for o in os.environ.get("CORS_ORIGINS", "*").split(",") if o.strip()]

    LOW_STOCK_THRESHOLD = int(os.environ.get("LOW_STOCK_THRESHOLD", "10"))
    GST_RATE = float(os.environ.get("GST_RATE", "0.18"))

    API_BASE_URL = os.environ.get("API_BASE_URL", "http://localhost:5000/api")
    CLIENT_TIMEOUT = float(os.environ.get("CLIENT_TIMEOUT", "3.0"))
    CLIENT_CACHE_PATH = os.environ.get("CLIENT_CACHE_PATH")

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    LOG_FILE = os.environ.get("LOG_FILE")


def configure_logging(level: str = "INFO", log_file: Optional[str] = None) -> logging.Logger:
    """Configure the ``texflow`` logger tree with console and optional file handlers."""

    logger = logging.getLogger("texflow")
    if logger.handlers:
        return logger

    logger.setLevel(level.upper())
    formatter = logging.Formatter(
        fmt="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    if log_file:
        try:
            file_handler = RotatingFileHandler(
                log_file,
                maxBytes=1_000_000,
                backupCount=5,
                encoding="utf-8",
            )
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)
        except OSError as exc:
            print(f"Warning: unable to open log file '{log_file}': {exc}", file=sys.stderr)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    return logger
