"""Main FastAPI application entry point for the Task Manager API."""

import logging
import time
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.errors import PyMongoError

from config.settings import settings
from config.database import database
from config.logging_utils import configure_logging, get_request_id, new_request_id
from api.routers.auth import router as auth_router
from api.routers.signup import router as signup_router
from api.routers.tasks import router as tasks_router
from api.routers.users import router as users_router
from services.email_service import EmailDeliveryError, EmailService
from services.token_service import KeyProvider, KeyProviderError, TokenIssuer, TokenValidator
from services.token_store import TokenStore
from storage.errors import NotFoundError
from storage.memory import MemoryTaskStore, MemoryUserStore
from storage.mongo import MongoTaskStore, MongoUserStore

logger = logging.getLogger(__name__)


def install_components(app: FastAPI, user_store, task_store, key_provider: KeyProvider,
                       email_service: EmailService) -> None:
    """Wire stores and auth services onto app.state for the request dependencies."""
    app.state.user_store = user_store
    app.state.task_store = task_store
    app.state.token_store = TokenStore(user_store)
    app.state.key_provider = key_provider
    app.state.token_issuer = TokenIssuer(
        key_provider,
        audience=settings.JWT_AUDIENCE,
        issuer=settings.JWT_ISSUER,
        ttl=timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES),
    )
    app.state.token_validator = TokenValidator(
        key_provider,
        user_store,
        audience=settings.JWT_AUDIENCE,
        issuer=settings.JWT_ISSUER,
    )
    app.state.email_service = email_service


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle startup and shutdown events."""
    if getattr(app.state, "user_store", None) is not None:
        yield
        return

    key_provider = KeyProvider.from_settings(settings)
    email_service = EmailService.from_settings(settings)

    if settings.USE_MEMORY_STORE:
        logger.warning("Using in-memory stores; data is lost on restart")
        install_components(app, MemoryUserStore(), MemoryTaskStore(), key_provider, email_service)
        yield
        return

    await database.connect()
    logger.info("Connected to MongoDB: %s", settings.DATABASE_NAME)
    user_store = MongoUserStore(database.get_collection("users"))
    task_store = MongoTaskStore(database.get_collection("tasks"))
    await user_store.ensure_indexes()
    await task_store.ensure_indexes()
    logger.info("Database indexes created")
    install_components(app, user_store, task_store, key_provider, email_service)
    yield
    await database.disconnect()
    logger.info("Disconnected from MongoDB")


def create_app(
    user_store=None,
    task_store=None,
    key_provider: Optional[KeyProvider] = None,
    email_service: Optional[EmailService] = None,
) -> FastAPI:
    """
    Build the application.

    Passing stores wires them immediately and makes startup skip the
    database connection, which is how tests run the app in memory.
    """
    configure_logging()

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Task management API with bearer-token sessions",
        lifespan=lifespan
    )

    if user_store is not None:
        install_components(
            app,
            user_store,
            task_store if task_store is not None else MemoryTaskStore(),
            key_provider or KeyProvider.from_settings(settings),
            email_service or EmailService.from_settings(settings),
        )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Tag the request with an id and log how long it took."""
        request_id = new_request_id(request.headers.get("X-Request-ID"))
        started = time.monotonic()
        logger.info("Start request %s %s", request.method, request.url.path)
        try:
            response = await call_next(request)
        finally:
            logger.info(
                "Request completed in %.0f ms",
                (time.monotonic() - started) * 1000,
            )
        response.headers["X-Request-ID"] = request_id
        return response

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError):
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content={"detail": f"{exc.kind} not found"},
        )

    @app.exception_handler(PyMongoError)
    @app.exception_handler(KeyProviderError)
    @app.exception_handler(EmailDeliveryError)
    async def internal_error_handler(request: Request, exc: Exception):
        logger.error(
            "%s during %s %s (request %s)",
            type(exc).__name__, request.method, request.url.path, get_request_id(),
            exc_info=exc,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "Internal server error"},
        )

    app.include_router(auth_router)
    app.include_router(signup_router)
    app.include_router(users_router)
    app.include_router(tasks_router)

    @app.get("/api")
    async def api_info():
        """API information endpoint."""
        return {
            "name": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "status": "running"
        }

    @app.get("/health")
    async def health_check():
        """Health check endpoint for monitoring."""
        if settings.USE_MEMORY_STORE or not database.is_connected:
            return {"status": "healthy", "database": "memory"}
        db_healthy = await database.health_check()
        return {
            "status": "healthy" if db_healthy else "unhealthy",
            "database": "connected" if db_healthy else "disconnected"
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "app:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG
    )
