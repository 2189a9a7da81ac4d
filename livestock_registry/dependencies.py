from fastapi import Request

from .store import RegistryStore


def get_store(request: Request) -> RegistryStore:
    """The store opened by the application at startup."""
    return request.app.state.store
