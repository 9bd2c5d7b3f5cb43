"""Authentication module."""

from germy_auth.api.auth.routes import router

__all__ = ["router"]
