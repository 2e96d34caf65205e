import logging
import sys
from typing import Optional

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: Optional[str] = None) -> None:
    """Install one stream handler on the package logger.

    Safe to call more than once; later calls only change the level.
    """
    if level is None:
        from ..config import get_settings
        level = get_settings().log_level

    package_logger = logging.getLogger("smart_weather")
    package_logger.setLevel(level.upper())
    if not any(getattr(h, "_smart_weather", False) for h in package_logger.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._smart_weather = True
        package_logger.addHandler(handler)
