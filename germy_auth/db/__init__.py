"""Database module."""

from germy_auth.db.models import ApprovalRequest, Base, Company, RevokedToken, SecurityEventRecord, User
from germy_auth.db.session import Database
from germy_auth.db.store import SQLAlchemyIdentityStore

__all__ = [
    "Database",
    "SQLAlchemyIdentityStore",
    "Base",
    "Company",
    "User",
    "ApprovalRequest",
    "RevokedToken",
    "SecurityEventRecord",
]
