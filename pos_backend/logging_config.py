import logging

from pos_backend.config import settings


def init_log(log_name: str = "pos_backend") -> logging.Logger:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s - %(levelname)s - [%(name)s] %(message)s",
    )

    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    return logging.getLogger(log_name)
