from __future__ import annotations

import logging

from alembic import command
from alembic.config import Config

from portal.infra.logging_config import configure_logging

logger = logging.getLogger(__name__)


def run_upgrade_head() -> None:
    config = Config("alembic.ini")
    logger.info("upgrading database schema to head")
    command.upgrade(config, "head")


if __name__ == "__main__":
    configure_logging()
    run_upgrade_head()
