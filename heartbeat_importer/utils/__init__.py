"""
Utilities package initialization.
"""
from .logger import get_logger, log_business_event, log_performance, setup_logging
from .dates import gen_date_range

__all__ = ["get_logger", "log_business_event", "log_performance", "setup_logging", "gen_date_range"]
