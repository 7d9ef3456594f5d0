"""
FastAPI dependencies shared by the routers.
"""

from __future__ import annotations

from fastapi import Request

from backend.app.services.container import ServiceContainer


def get_services(request: Request) -> ServiceContainer:
    """The application's service container (built in the lifespan)."""
    return request.app.state.services
