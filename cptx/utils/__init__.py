"""
Utilities package for the cptx data layer.

Exports shared logging helpers. Keep this package lightweight and free of
database logic.
"""

from cptx.utils.logging import JsonFormatter, configure_logging, get_logger

__all__ = [
    "JsonFormatter",
    "configure_logging",
    "get_logger",
]
