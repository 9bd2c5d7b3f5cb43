"""
GERMY AUTH API - Main Application Entry Point

FastAPI service exposing the identity and access control engine.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from germy_auth.api.errors import register_error_handlers
from germy_auth.config import configure_logging, settings
from germy_auth.core.engine import IdentityEngine
from germy_auth.db.session import Database
from germy_auth.db.store import SQLAlchemyIdentityStore

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    # Startup
    configure_logging()
    database: Database = app.state.database
    await database.init(create_tables=settings.DEBUG)
    if app.state.identity is None:
        app.state.identity = IdentityEngine.from_settings(SQLAlchemyIdentityStore(database))
    await app.state.identity.start()
    yield
    # Shutdown
    await app.state.identity.close()
    await database.close()


def create_app(
    identity: Optional[IdentityEngine] = None,
    database: Optional[Database] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        identity: Prebuilt engine; built from settings at startup when omitted
        database: Database to use; defaults to ``DATABASE_URL``
    """
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Germy Auth - Identity and access control for the attendance platform",
        docs_url="/api/docs" if settings.DEBUG else None,
        redoc_url="/api/redoc" if settings.DEBUG else None,
        lifespan=lifespan,
    )
    app.state.identity = identity
    app.state.database = database or Database()

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_error_handlers(app)

    # Include routers
    from germy_auth.api.auth.routes import router as auth_router
    from germy_auth.api.approvals.routes import router as approvals_router
    from germy_auth.api.security.routes import router as security_router

    app.include_router(auth_router, prefix="/api/v1/auth", tags=["Authentication"])
    app.include_router(approvals_router, prefix="/api/v1/approvals", tags=["Approvals"])
    app.include_router(security_router, prefix="/api/v1/security", tags=["Security"])

    # Health check endpoint
    @app.get("/api/health", tags=["Health"])
    async def health_check():
        engine: Optional[IdentityEngine] = app.state.identity
        return {
            "status": "healthy",
            "version": settings.APP_VERSION,
            "service": settings.APP_NAME,
            "identity_engine": bool(engine and engine.started),
            "revocation_sweeper": bool(engine and engine.sweeper.running),
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "germy_auth.api.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
    )
