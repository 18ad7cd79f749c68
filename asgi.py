"""
asgi.py -- ASGI entry point for the admin auth service.

Run with:  uvicorn asgi:app --reload
           uvicorn asgi:app --host 0.0.0.0 --port 8000 --proxy-headers

Kept separate from api/main.py so process managers have one stable import
path regardless of how the api package is laid out.
"""

from api.main import app

__all__ = ["app"]
