"""Logging setup and per-component loggers"""

import logging
from collections.abc import MutableMapping
from typing import Any

from .config import LoggingConfig

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"

# Client libraries that log every request at INFO
NOISY_LOGGERS = ("httpx", "httpcore")


class ComponentLogger(logging.LoggerAdapter):
    """
    Logger bound to a component (e.g. ``component="weather"``).

    Keyword arguments of a call become attributes of the record and are
    collected under ``record.fields`` so FieldsFormatter can print them:

        logger = get_component_logger(__name__, component="weather")
        logger.info("Fetched weather samples", rows=288)
    """

    PASSTHROUGH = frozenset({"exc_info", "stack_info", "stacklevel", "extra"})

    def process(
        self, msg: str, kwargs: MutableMapping[str, Any]
    ) -> tuple[str, MutableMapping[str, Any]]:
        fields = dict(self.extra or {})
        fields.update(kwargs.pop("extra", None) or {})
        for key in [key for key in kwargs if key not in self.PASSTHROUGH]:
            fields[key] = kwargs.pop(key)

        kwargs["extra"] = {**fields, "fields": fields}
        return msg, kwargs


def get_component_logger(name: str, **fields: Any) -> ComponentLogger:
    return ComponentLogger(logging.getLogger(name), fields)


class FieldsFormatter(logging.Formatter):
    """Appends the fields of a ComponentLogger record as ``key=value`` pairs."""

    def format(self, record: logging.LogRecord) -> str:
        text = super().format(record)
        fields = getattr(record, "fields", None)
        if fields:
            text += " " + " ".join(f"{key}={value}" for key, value in sorted(fields.items()))
        return text


def setup_logging(config: LoggingConfig, verbose: bool = False) -> None:
    """
    Configure root logging from the ``logging`` config section.

    Args:
        config: Level name and optional log file
        verbose: Force DEBUG and keep the HTTP client loggers at full volume
    """
    level = logging.DEBUG if verbose else getattr(logging, config.level.upper(), logging.INFO)

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    file_error = None
    if config.file:
        try:
            handlers.append(logging.FileHandler(config.file))
        except OSError as e:
            file_error = e

    formatter = FieldsFormatter(LOG_FORMAT)
    for handler in handlers:
        handler.setFormatter(formatter)
    logging.basicConfig(level=level, handlers=handlers, force=True)

    if not verbose:
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(max(level, logging.WARNING))

    if file_error is not None:
        logging.getLogger(__name__).warning(
            f"Cannot write to {config.file}, logging to stderr only: {file_error}"
        )
