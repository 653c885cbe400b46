"""Logging configuration shared by the API process and the Celery worker."""

import logging


def _resolve_level(level_name: str) -> int:
    return getattr(logging, level_name.upper(), logging.INFO)


def configure_logging(level_name: str = "INFO") -> None:
    """Configure root logging with a concise format that carries the job id."""
    level = _resolve_level(level_name)
    formatter = logging.Formatter(
        "%(asctime)s %(levelname)s %(name)s job_id=%(job_id)s %(message)s",
        defaults={"job_id": "-"},
    )
    root_logger = logging.getLogger()

    if root_logger.handlers:
        root_logger.setLevel(level)
        for handler in root_logger.handlers:
            handler.setLevel(level)
            handler.setFormatter(formatter)
        return

    logging.basicConfig(level=level)
    for handler in logging.getLogger().handlers:
        handler.setFormatter(formatter)
