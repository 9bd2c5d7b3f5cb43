"""Security monitoring module."""

from germy_auth.api.security.routes import router

__all__ = ["router"]
