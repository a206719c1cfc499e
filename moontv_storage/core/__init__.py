"""
Core application layer.

The `DbManager` is the facade callers use to reach the configured backend;
`ConfigTransfer` builds on it to export, import and edit the admin configuration.
"""

from .config_transfer import ConfigTransfer
from .db_manager import DbManager, get_db_manager, reset_db_manager

__all__ = ["ConfigTransfer", "DbManager", "get_db_manager", "reset_db_manager"]
