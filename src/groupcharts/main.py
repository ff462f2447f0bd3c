"""FastAPI application factory.

Run with: uvicorn --factory groupcharts.main:create_app
"""

from fastapi import FastAPI

from groupcharts import __version__
from groupcharts.api import api_router
from groupcharts.api.exception_handlers import register_exception_handlers
from groupcharts.config import Settings, get_settings
from groupcharts.infrastructure.lifecycle import lifespan
from groupcharts.infrastructure.observability.middleware import RequestLoggingMiddleware
from groupcharts.infrastructure.persistence.database import Database


def create_app(settings: Settings | None = None, database: Database | None = None) -> FastAPI:
    """Build the API app.

    Args:
        settings: Settings to use (defaults to get_settings())
        database: Pre-built Database (tests); otherwise created at startup
    """
    settings = settings or get_settings()
    app = FastAPI(title=settings.app_name, version=__version__, lifespan=lifespan)
    app.state.settings = settings
    app.state.db = database

    app.add_middleware(RequestLoggingMiddleware)
    register_exception_handlers(app)
    app.include_router(api_router, prefix="/api")
    return app
