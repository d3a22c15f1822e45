"""
asgi.py -- ASGI entry point for the Angola geo API.

Kept separate from api/main.py so process managers and `python main.py serve`
have one stable import path regardless of how the api package is laid out.

Run with:  uvicorn asgi:app --reload
           python main.py serve
"""

from api.main import app

__all__ = ["app"]
