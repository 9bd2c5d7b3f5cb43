"""Approval review module."""

from germy_auth.api.approvals.routes import router

__all__ = ["router"]
