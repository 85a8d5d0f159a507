"""Create every table on the configured database.

Run with ``python -m carshare.init_db`` from the ``backend`` directory.
"""

import logging

from sqlalchemy.engine import Engine

from .database import Base, engine
from . import models  # noqa: F401

logger = logging.getLogger(__name__)


def init_db(bind: Engine = engine) -> None:
    Base.metadata.create_all(bind=bind)
    logger.info("Created %s tables", len(Base.metadata.tables))


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    init_db()
