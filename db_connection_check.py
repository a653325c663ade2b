import argparse

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from pos_backend.config import settings
from pos_backend.db import Base, build_engine
from pos_backend.logging_config import init_log
import pos_backend.models  # noqa: F401  registers tables on Base.metadata

logger = init_log("db_connection_check")


def main() -> int:
    parser = argparse.ArgumentParser(description="Check the POS database connection.")
    parser.add_argument("--create-tables", action="store_true", help="create missing tables after connecting")
    args = parser.parse_args()

    engine = build_engine(settings.database_url)
    logger.info("DATABASE_URL=%s", engine.url.render_as_string(hide_password=True))
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        logger.info("DB connection OK")
        if args.create_tables:
            Base.metadata.create_all(bind=engine)
            logger.info("Tables ready: %s", ", ".join(sorted(Base.metadata.tables)))
    except SQLAlchemyError:
        logger.exception("DB connection FAILED")
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
