"""FastAPI dependency helpers exposing the objects built by ``create_app``."""
from fastapi import Request

from .coordinator import RoomSessionCoordinator
from .store import TortoiseStore


def get_store(request: Request) -> TortoiseStore:
    return request.app.state.store


def get_coordinator(request: Request) -> RoomSessionCoordinator:
    return request.app.state.coordinator


__all__ = ["get_store", "get_coordinator"]
