"""Process-wide logging setup."""

from __future__ import annotations

import logging

from herald.core.config import Settings

_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


def configure_logging(settings: Settings | None = None) -> None:
    """Configure the root logger from ``settings.log_level``.

    Quiets SQLAlchemy and httpx request logging unless ``settings.debug`` is set.
    """
    settings = settings or Settings()
    level = logging.DEBUG if settings.debug else getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(level=level, format=_FORMAT, force=True)

    if not settings.debug:
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
        logging.getLogger("httpx").setLevel(logging.WARNING)
