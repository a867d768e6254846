"""FastAPI application factory."""

from fastapi import FastAPI

from evreserve.api import health, routes
from evreserve.api.dependencies import Services
from evreserve.api.errors import register_exception_handlers

API_PREFIX = "/api/v1"


def create_app(services: Services, title: str = "evreserve", lifespan=None) -> FastAPI:
    """Build the HTTP app around an already-wired service container."""
    app = FastAPI(title=title, lifespan=lifespan)
    app.state.services = services

    register_exception_handlers(app)
    app.include_router(routes.router, prefix=API_PREFIX)
    app.include_router(health.router)
    return app
