"""Shared utilities for the geotrack package"""

from geotrack.utils.logger import get_logger, configure_logging

__all__ = [
    "get_logger",
    "configure_logging"
]
