import logging
import sys

from gym_accounting.core.config import get_settings


def configure_logging(level: str | None = None) -> None:
    """Configure root logging for the service."""
    settings = get_settings()
    log_level = (level or settings.log_level).upper()

    logging.basicConfig(
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level, logging.INFO),
    )

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
