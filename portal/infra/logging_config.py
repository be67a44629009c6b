from __future__ import annotations

import logging
import os

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

# Third-party loggers that only need to report errors.
QUIET_LOGGERS = ("httpx", "httpcore", "urllib3", "asyncio")


def configure_logging(level: str | None = None) -> None:
    resolved = (level or LOG_LEVEL).upper()
    numeric = logging.getLevelNamesMapping().get(resolved, logging.INFO)
    logging.basicConfig(level=numeric, format=LOG_FORMAT)
    logging.getLogger("portal").setLevel(numeric)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.ERROR)
