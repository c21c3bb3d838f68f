"""
FastAPI dependencies.
"""
from fastapi import Request

from tonerweb.services.container import ServiceContainer


def get_services(request: Request) -> ServiceContainer:
    """Service container built at app creation."""
    return request.app.state.services
