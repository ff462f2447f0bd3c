"""API module for groupcharts.

Structure:
- routers/: endpoints (charts, trends, records, entries, groups)
- schemas/: pydantic request/response models
- dependencies.py: dependency injection (sessions, services)
- exception_handlers.py: domain exception -> HTTP response mapping
"""

from groupcharts.api.routers import api_router

__all__ = ["api_router"]
