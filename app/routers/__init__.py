"""Router modules for API endpoints."""

from app.routers import dicomweb

__all__ = ["dicomweb"]
