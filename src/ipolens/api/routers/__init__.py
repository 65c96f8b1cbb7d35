"""API routers package."""

from ipolens.api.routers import admin, ipos

__all__ = ["admin", "ipos"]
