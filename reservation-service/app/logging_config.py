import logging
import sys

from app.config import Settings

_configured = False


def setup_logging(config: Settings) -> None:
    """Configure root logging once per process."""
    global _configured
    if _configured:
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(config.log_format))

    root = logging.getLogger()
    root.setLevel(config.log_level.upper())
    root.addHandler(handler)

    # aio_pika and sqlalchemy are noisy at INFO
    logging.getLogger("aio_pika").setLevel(logging.WARNING)
    logging.getLogger("aiormq").setLevel(logging.WARNING)
    if not config.sql_echo:
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    _configured = True
