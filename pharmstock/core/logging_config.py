import logging
import sys
from typing import Optional

from pharmstock.core.config import settings

LOG_FORMAT = "[%(asctime)s] [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def configure_logging(level: Optional[str] = None) -> logging.Logger:
    """
    Console logging for jobs/scripts. Library code only ever calls
    logging.getLogger(__name__) and leaves handlers to the host process.
    """
    root = logging.getLogger("pharmstock")
    root.setLevel((level or settings.LOG_LEVEL).upper())

    # don't stack handlers when called twice (tests, repeated CLI invocations)
    if not any(getattr(h, "_pharmstock", False) for h in root.handlers):
        ch = logging.StreamHandler(sys.stdout)
        ch.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
        ch._pharmstock = True  # type: ignore[attr-defined]
        root.addHandler(ch)
    return root
