"""Input/output handlers for ibsphere."""

from .config_manager import ConfigManager
from .data_handler import DataHandler

__all__ = ["ConfigManager", "DataHandler"]
