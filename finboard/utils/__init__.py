"""Utility modules for Finboard."""

from .config import Settings, get_settings
from .dates import month_key, shift_months

__all__ = [
    "Settings",
    "get_settings",
    # Calendar months
    "month_key",
    "shift_months",
]
