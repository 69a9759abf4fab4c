"""ASGI entry point: ``uvicorn partytrivia.main:app``."""
from .app import create_app

app = create_app()

__all__ = ["app"]
