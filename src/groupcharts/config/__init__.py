"""Configuration module for groupcharts."""

from .settings import (
    ChartSettings,
    CompatibilitySettings,
    DatabaseSettings,
    ObservabilitySettings,
    RecordsSettings,
    Settings,
    WorkerSettings,
    get_settings,
)

__all__ = [
    "ChartSettings",
    "CompatibilitySettings",
    "DatabaseSettings",
    "ObservabilitySettings",
    "RecordsSettings",
    "Settings",
    "WorkerSettings",
    "get_settings",
]
