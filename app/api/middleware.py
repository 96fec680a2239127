import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

from app.core.exceptions import (
    SyncEngineError, NotFoundError, RequestValidationFailed, PersistenceError, MappingError,
    ExternalConnectionError,
)
from app.services.school_system_service import DuplicateMappingError

logger = logging.getLogger(__name__)


def _field_errors(exc: RequestValidationError):
    errors = []
    for error in exc.errors():
        location = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")]
        errors.append({"field": ".".join(location) or "body", "message": error.get("msg")})
    return errors


def setup_middlewares(app: FastAPI) -> None:
    """CORS et traduction des erreurs du domaine en réponses HTTP"""
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"detail": "Données invalides", "errors": _field_errors(exc)},
        )

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError):
        return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": exc.message})

    @app.exception_handler(DuplicateMappingError)
    async def duplicate_mapping_handler(request: Request, exc: DuplicateMappingError):
        return JSONResponse(
            status_code=status.HTTP_409_CONFLICT,
            content={"detail": exc.message, "errors": exc.errors},
        )

    @app.exception_handler(RequestValidationFailed)
    async def validation_failed_handler(request: Request, exc: RequestValidationFailed):
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"detail": exc.message, "errors": exc.errors},
        )

    @app.exception_handler(MappingError)
    async def mapping_error_handler(request: Request, exc: MappingError):
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"detail": exc.message, "errors": [{"field": exc.field, "message": exc.reason}]},
        )

    @app.exception_handler(ExternalConnectionError)
    async def external_error_handler(request: Request, exc: ExternalConnectionError):
        return JSONResponse(status_code=status.HTTP_502_BAD_GATEWAY, content={"detail": exc.message})

    @app.exception_handler(IntegrityError)
    async def integrity_error_handler(request: Request, exc: IntegrityError):
        logger.warning(f"Violation de contrainte sur {request.url.path}: {exc.orig}")
        return JSONResponse(status_code=status.HTTP_409_CONFLICT, content={"detail": "Conflit avec une ressource existante"})

    @app.exception_handler(PersistenceError)
    async def persistence_error_handler(request: Request, exc: PersistenceError):
        logger.error(f"Erreur de persistance sur {request.url.path}: {exc.message}")
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"detail": exc.message})

    @app.exception_handler(SyncEngineError)
    async def sync_engine_error_handler(request: Request, exc: SyncEngineError):
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": exc.message})
