"""
FastAPI application factory and entry point.

create_app() builds and configures the FastAPI application:
  1. Lifespan manager — owns the Database handle (create tables, dispose)
  2. CORS middleware — allows frontend origins to make cross-origin requests
  3. Request logging middleware — one log line per request
  4. Exception handlers — maps domain errors to HTTP responses
  5. Router registration — mounts all API endpoint groups

Running locally:
    uvicorn wallet.main:app --reload
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from wallet.config import settings
from wallet.database import Database
from wallet.exceptions import register_exception_handlers
from wallet.logging_config import setup_logging
from wallet.middleware.request_log import RequestLogMiddleware
from wallet.routers import account, user


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup:
      Creates the Database handle from DATABASE_URL (unless one was passed
      to create_app) and creates all tables if they don't exist. In
      production you'd use migrations instead of create_all.

    Shutdown:
      Disposes of the handle this lifespan created, closing all connections.
    """
    owned = getattr(app.state, "database", None) is None
    if owned:
        app.state.database = Database(settings.DATABASE_URL, echo=settings.DEBUG)
    await app.state.database.create_all()
    yield
    if owned:
        await app.state.database.dispose()
        app.state.database = None


def create_app(database: Database | None = None) -> FastAPI:
    """
    Build the application.

    Args:
        database: Optional pre-built handle (tests, scripts). The caller
            keeps ownership of a handle passed in here.
    """
    setup_logging(settings.LOG_LEVEL)

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Digital wallet API with balances, peer-to-peer transfers and history",
        lifespan=lifespan,
    )
    app.state.database = database

    # In production, lock this down to your actual frontend domain(s).
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLogMiddleware)

    register_exception_handlers(app)

    app.include_router(user.router, prefix="/api/v1/user", tags=["User"])
    app.include_router(account.router, prefix="/api/v1/account", tags=["Account"])

    @app.get("/health", tags=["Health"])
    async def health_check():
        """Health check endpoint for deployment probes."""
        return {"status": "ok", "version": settings.APP_VERSION}

    return app


app = create_app()
