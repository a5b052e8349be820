"""FastAPI REST API for Courier.

Exposes event ingestion, per-target delivery history and a health check.

Example:
    ```bash
    uvicorn courier.api:app
    ```
"""

from .app import app, create_app
from .router import router

__all__ = [
    "app",
    "create_app",
    "router",
]
