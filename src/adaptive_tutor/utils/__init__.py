from .logging import configure_logging, get_logger
from .time import days_between, ensure_utc, utcnow

__all__ = ["configure_logging", "days_between", "ensure_utc", "get_logger", "utcnow"]
