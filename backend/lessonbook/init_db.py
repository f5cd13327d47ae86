"""Create all lessonbook tables on the configured database."""

import logging

from lessonbook.database import Base, engine
from lessonbook import models  # noqa: F401  registers the mappers on Base.metadata

logger = logging.getLogger(__name__)


def init_db() -> None:
    logger.info("Creating database tables...")
    Base.metadata.create_all(bind=engine)
    logger.info("Tables created successfully")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    init_db()
