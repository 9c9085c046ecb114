"""
Logger - Central logging setup for geotrack

All modules obtain their logger through get_logger() so that a single
handler configured on the "geotrack" root logger controls output.
"""

import logging
import sys
from typing import Optional

ROOT_LOGGER_NAME = "geotrack"
DEFAULT_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

def get_logger(name: str) -> logging.Logger:
    """Return a logger nested under the geotrack root logger"""
    
    if name == ROOT_LOGGER_NAME or name.startswith(f"{ROOT_LOGGER_NAME}."):
        return logging.getLogger(name)
    
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")

def configure_logging(level: str = "INFO", fmt: Optional[str] = None) -> logging.Logger:
    """Install a single stream handler on the geotrack root logger"""
    
    root = logging.getLogger(ROOT_LOGGER_NAME)
    numeric_level = logging.getLevelName(level.upper()) if isinstance(level, str) else level
    if not isinstance(numeric_level, int):
        raise ValueError(f"Unknown log level: {level}")
    
    root.setLevel(numeric_level)
    
    # Replace handlers so repeated configuration does not duplicate output
    for handler in list(root.handlers):
        root.removeHandler(handler)
    
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(fmt or DEFAULT_FORMAT))
    root.addHandler(handler)
    root.propagate = False
    
    return root
