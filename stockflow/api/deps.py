"""
API Dependencies
Common dependencies for API endpoints
"""

from fastapi import Header, Request

from stockflow.services.engine import InventoryEngine


def get_engine(request: Request) -> InventoryEngine:
    """
    Engine dependency - the instance built at application startup.
    """
    return request.app.state.engine


def get_actor(x_actor: str = Header(..., min_length=1, max_length=50)) -> str:
    """
    Caller identity, supplied by the identity provider in front of the API.
    """
    return x_actor.strip()
