# src/nudgeflow/infrastructure/__init__.py
"""Infrastructure layer - stores, mail providers, scheduling and configuration."""

from nudgeflow.infrastructure.settings import Settings, get_settings

__all__ = [
    "Settings",
    "get_settings",
]
