"""
asgi.py -- ASGI entry point for Cypress.

Run with:  uvicorn asgi:app --reload
           uvicorn asgi:app --host 0.0.0.0 --port 8000 --workers 1

Each process builds its own IdGenerator from WORKER_ID. When running several
processes or hosts, give each one a distinct WORKER_ID (0-1023).
"""

from api.main import app

__all__ = ["app"]
