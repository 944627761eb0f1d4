"""
asgi.py -- Application assembly for AuthGate.

Run with:  uvicorn asgi:app --reload

The FastAPI app, its routes and its lifespan live in api/main.py. This module
is the stable import path for ASGI servers, so deployment configuration does
not depend on the internal package layout.
"""

from api.main import app

__all__ = ["app"]
