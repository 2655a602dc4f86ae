"""Core app configuration, database and authorization."""

from userhub.core.config import get_settings, settings
from userhub.core.database import get_db

__all__ = ["get_settings", "settings", "get_db"]
