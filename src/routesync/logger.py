from __future__ import annotations

import sys

from loguru import logger

from routesync.config import settings


def configure_logging(level: str | None = None, json: bool | None = None) -> None:
    logger.remove()
    logger.add(
        sys.stderr,
        level=(level or settings.LOG_LEVEL).upper(),
        backtrace=False,
        diagnose=False,
        serialize=bool(settings.LOG_JSON if json is None else json),
    )
