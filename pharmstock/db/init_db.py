# pharmstock/db/init_db.py
from __future__ import annotations

import argparse
import logging

from sqlalchemy import inspect
from sqlalchemy.engine import Engine

from pharmstock.core.config import settings
from pharmstock.core.logging_config import configure_logging
from pharmstock.db.base import Base
from pharmstock.db.session import get_or_create_engine

logger = logging.getLogger(__name__)


def create_tables(engine: Engine) -> list[str]:
    """
    Create missing tables; safe to run multiple times.
    Returns the names of tables that did not exist before.
    """
    before = set(inspect(engine).get_table_names())
    Base.metadata.create_all(bind=engine)
    after = set(inspect(engine).get_table_names())
    created = sorted(after - before)
    logger.info("create_tables: %d new table(s) %s", len(created), created)
    return created


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Create pharmstock tables")
    parser.add_argument("--db-uri", default=settings.SQLALCHEMY_DATABASE_URI)
    args = parser.parse_args(argv)

    configure_logging()
    create_tables(get_or_create_engine(args.db_uri))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
