"""Utils package for QueryChat."""

from querychat.utils.logger import get_logger, setup_logging

__all__ = ["get_logger", "setup_logging"]
