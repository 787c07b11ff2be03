"""Request-scoped dependencies."""
from fastapi import Request

from quickquote.services import Services


def services(request: Request) -> Services:
    """The Services instance built in the app lifespan."""
    return request.app.state.services
