import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import LOG_LEVEL
from .errors import (
    AccessDenied,
    ConstraintViolation,
    DuplicatePenName,
    DuplicateTag,
    IndeterminateFailure,
    InvariantConflict,
    NotFound,
    PenNotEmpty,
    RegistryError,
    StorageError,
    UniqueViolation,
    ValidationFailed,
)
from .routes import animals, pens
from .store import RegistryStore, create_store

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)


def status_for(exc: RegistryError) -> int:
    """HTTP status code for a registry error kind."""
    if isinstance(exc, (DuplicateTag, DuplicatePenName, PenNotEmpty)):
        return 409
    if isinstance(exc, ValidationFailed):
        return 400
    if isinstance(exc, NotFound):
        return 404
    if isinstance(exc, InvariantConflict):
        return 409
    if isinstance(exc, AccessDenied):
        return 403
    if isinstance(exc, IndeterminateFailure):
        return 500
    if isinstance(exc, (UniqueViolation, ConstraintViolation)):
        return 409
    if isinstance(exc, StorageError):
        return 503
    return 500


def create_app(store: Optional[RegistryStore] = None) -> FastAPI:
    """
    Build the API. When ``store`` is given the caller owns its lifecycle;
    otherwise the configured store is opened on startup and closed on shutdown.
    """
    app = FastAPI(title="Livestock Registry", version="0.1.0")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.store = store

    if store is None:
        @app.on_event("startup")
        async def startup_event():
            """Open the registry store on startup"""
            app.state.store = create_store()
            await app.state.store.open()

        @app.on_event("shutdown")
        async def shutdown_event():
            """Close the registry store on shutdown"""
            await app.state.store.close()

    @app.exception_handler(RegistryError)
    async def registry_error_handler(request: Request, exc: RegistryError):
        status_code = status_for(exc)
        if status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.kind}: {exc.message}")
        return JSONResponse(status_code=status_code, content={"error": exc.kind, "detail": exc.message})

    @app.get("/health")
    async def health():
        result = await app.state.store.health_check()
        if result.get("status") != "healthy":
            return JSONResponse(status_code=503, content=result)
        return result

    app.include_router(animals.router)
    app.include_router(pens.router)
    return app


app = create_app()
