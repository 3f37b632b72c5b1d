"""
Configuration Package
=====================

Usage:
    from apps.murphy.backend.config import get_settings, AnomalyThresholds
"""

from .settings import (
    AnomalyThresholds,
    OutreachSettings,
    get_settings,
    reload_settings,
)

__all__ = [
    "AnomalyThresholds",
    "OutreachSettings",
    "get_settings",
    "reload_settings",
]
