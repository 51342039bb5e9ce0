import logging

from memberbase.core.config import settings


def configure_logging(level: str | None = None) -> None:
    root = logging.getLogger()
    if getattr(configure_logging, "_configured", False):
        root.setLevel((level or settings.LOG_LEVEL).upper())
        return
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(settings.LOG_FORMAT))
    root.addHandler(handler)
    root.setLevel((level or settings.LOG_LEVEL).upper())
    configure_logging._configured = True
