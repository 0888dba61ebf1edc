"""
Main FastAPI application entry point.
Initializes the application with middleware, routes, the WebSocket gateway
and health check endpoints.
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional
from uuid import uuid4
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker
from starlette.middleware.base import BaseHTTPMiddleware

from lunarus import __version__
from lunarus.core.config import settings
from lunarus.core.exceptions import InvalidCredential, MessageValidationError, StoreError
from lunarus.core.logging_config import configure_logging, request_id_var
from lunarus.db.database import SessionLocal, engine as default_engine, init_db, seed_db
from lunarus.gateway import ConnectionRegistry, FanoutRouter, GatewayProtocolHandler
from lunarus.services import MessageIngress, MessageStore, SqlMessageStore
from lunarus.services.tenor_client import TenorClient
from lunarus.services.upload_storage import UploadStorage

# Prometheus metrics
from prometheus_fastapi_instrumentator import Instrumentator

# Configure structured JSON logging
configure_logging(service_name="lunarus-api", level=settings.log_level, enable_json=settings.log_json)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    Creates and seeds the schema on startup and closes live gateway
    connections on shutdown.
    """
    # Startup
    logger.info("Starting Lunarus API...")
    try:
        init_db(bind=app.state.engine)
        seed_db(app.state.session_factory)
        logger.info("Database initialized and seeded")
    except SQLAlchemyError as e:
        logger.error(f"Database initialization failed: {e}")

    yield

    # Shutdown
    logger.info("Shutting down Lunarus API...")
    open_connections = app.state.registry.snapshot()
    for connection in open_connections:
        await connection.close()
    logger.info(f"Closed {len(open_connections)} gateway connections")


# Request ID middleware
class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Middleware to add unique request_id to each request.
    The request_id is included in logs for request tracing.
    """
    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid4())
        request.state.request_id = request_id
        token = request_id_var.set(request_id)

        try:
            logger.info(
                f"{request.method} {request.url.path} - "
                f"Client: {request.client.host if request.client else 'unknown'}"
            )

            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id

            logger.info(f"Response: {response.status_code}")
            return response
        finally:
            request_id_var.reset(token)


# Domain error handlers
async def invalid_credential_handler(request: Request, exc: InvalidCredential):
    return JSONResponse(
        status_code=status.HTTP_401_UNAUTHORIZED,
        content={"detail": "invalid authorization"},
        headers={"WWW-Authenticate": "Bearer"},
    )


async def message_validation_handler(request: Request, exc: MessageValidationError):
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": str(exc)})


async def store_error_handler(request: Request, exc: StoreError):
    logger.error(f"Store failure on {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"detail": str(exc)})


def create_app(
    engine: Optional[Engine] = None,
    session_factory: Optional[sessionmaker] = None,
    message_store: Optional[MessageStore] = None,
    upload_storage: Optional[UploadStorage] = None,
    tenor_client: Optional[TenorClient] = None,
    expose_metrics: bool = True,
) -> FastAPI:
    """
    Build the application with its own gateway registry and collaborators.

    Args:
        engine: Database engine (defaults to the configured one)
        session_factory: Session factory bound to engine
        message_store: Durable message store (defaults to the SQL store)
        upload_storage: Upload storage (defaults to settings.uploads_dir)
        tenor_client: GIF search client (defaults to one built from settings, if keyed)
        expose_metrics: Instrument HTTP routes and serve /metrics
    """
    app = FastAPI(
        title="Lunarus API",
        description="Chat backend with a real-time WebSocket gateway",
        version=__version__,
        lifespan=lifespan
    )

    if engine is None:
        engine = default_engine
        session_factory = session_factory or SessionLocal
    elif session_factory is None:
        session_factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    if tenor_client is None and settings.tenor_api_key:
        tenor_client = TenorClient(settings.tenor_api_key, settings.tenor_client_key)

    registry = ConnectionRegistry()
    fanout = FanoutRouter(registry)
    message_store = message_store or SqlMessageStore(session_factory)

    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.registry = registry
    app.state.fanout = fanout
    app.state.gateway = GatewayProtocolHandler(
        registry,
        fanout,
        default_channel_id=settings.default_channel_id,
        send_queue_size=settings.gateway_send_queue_size,
    )
    app.state.message_store = message_store
    app.state.ingress = MessageIngress(message_store, fanout)
    app.state.upload_storage = upload_storage or UploadStorage(settings.uploads_dir, settings.public_base_url)
    app.state.tenor_client = tenor_client

    if expose_metrics:
        # Exposes /metrics with HTTP request metrics plus the gateway collectors
        Instrumentator().instrument(app).expose(app, endpoint="/metrics", tags=["Metrics"])

    # Add middlewares
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(InvalidCredential, invalid_credential_handler)
    app.add_exception_handler(MessageValidationError, message_validation_handler)
    app.add_exception_handler(StoreError, store_error_handler)

    # Register endpoint routers
    from lunarus.api.auth import router as auth_router
    from lunarus.api.health import router as health_router
    from lunarus.api.endpoints import (
        servers_router, channels_router, invites_router, messages_router,
        media_router, voice_router, gateway_router,
    )

    app.include_router(health_router)
    app.include_router(auth_router)
    app.include_router(servers_router, prefix="/servers", tags=["Servers"])
    app.include_router(channels_router, prefix="/channels", tags=["Channels"])
    app.include_router(invites_router, prefix="/invites", tags=["Invites"])
    app.include_router(messages_router, prefix="/messages", tags=["Messages"])
    app.include_router(media_router, tags=["Media"])
    app.include_router(voice_router, prefix="/voice", tags=["Voice"])

    # WebSocket endpoint
    app.include_router(gateway_router, tags=["WebSocket"])

    app.mount("/uploads", StaticFiles(directory=app.state.upload_storage.files_dir), name="uploads")

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "lunarus.main:app",
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower()
    )
