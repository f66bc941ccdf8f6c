"""Logging setup for applications embedding the goal pipeline."""

import logging

from rehab_goals.core.config import settings


def configure_logging(log_format: str | None = None, log_level: str | None = None) -> None:
    """Set up root logging based on LOG_FORMAT / LOG_LEVEL.

    json: Structured JSON via python-json-logger (for production).
    text: Human-readable format (for local development).

    Args:
        log_format: Overrides ``settings.LOG_FORMAT``.
        log_level: Overrides ``settings.LOG_LEVEL``.
    """
    fmt = (log_format or settings.LOG_FORMAT).lower()
    level = (log_level or settings.LOG_LEVEL).upper()

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level, logging.INFO))

    # Remove existing handlers to avoid duplicate output
    root_logger.handlers.clear()

    handler = logging.StreamHandler()

    if fmt == "json":
        from pythonjsonlogger.json import JsonFormatter

        formatter = JsonFormatter(
            fmt="%(asctime)s %(levelname)s %(name)s %(message)s",
            rename_fields={
                "asctime": "timestamp",
                "levelname": "level",
                "name": "service",
            },
            static_fields={"app": "rehab-goals"},
        )
        handler.setFormatter(formatter)
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )

    root_logger.addHandler(handler)
