from typing import Callable, Optional
from sqlalchemy.orm import Session
from fastapi import Depends

from app.config import settings
from app.core.database import get_db, get_session_factory
from app.external.school_system_client import SchoolSystemClient
from app.repositories.user_repository import UserRepository
from app.services.auth_service import AuthService
from app.services.school_system_service import SchoolSystemService
from app.services.sync_service import SyncService
from app.services.webhook_service import WebhookService
from app.workers.sync_scheduler_worker import SyncSchedulerWorker


# === CLIENTS EXTERNES ===
def get_client_factory() -> Callable[..., SchoolSystemClient]:
    """Fabrique des clients HTTP sortants (remplacée dans les tests)"""
    return SchoolSystemClient


# === REPOSITORIES ===
def get_user_repository(db: Session = Depends(get_db)) -> UserRepository:
    """Factory pour le repository des utilisateurs"""
    return UserRepository(db)


# === SERVICES ===
def get_auth_service(
        user_repo: UserRepository = Depends(get_user_repository)
) -> AuthService:
    """Factory pour le service d'authentification"""
    return AuthService(
        user_repository=user_repo,
        secret_key=settings.SECRET_KEY,
        algorithm=settings.ALGORITHM,
        access_token_expire_minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES
    )


def get_sync_service(
        db: Session = Depends(get_db),
        client_factory: Callable[..., SchoolSystemClient] = Depends(get_client_factory)
) -> SyncService:
    """Factory pour la file et l'exécuteur de synchronisation"""
    return SyncService(db, client_factory=client_factory)


def get_school_system_service(
        db: Session = Depends(get_db),
        sync_service: SyncService = Depends(get_sync_service),
        client_factory: Callable[..., SchoolSystemClient] = Depends(get_client_factory)
) -> SchoolSystemService:
    """Factory pour la gestion des systèmes externes"""
    return SchoolSystemService(db, sync_service=sync_service, client_factory=client_factory)


def get_webhook_service(
        db: Session = Depends(get_db),
        sync_service: SyncService = Depends(get_sync_service)
) -> WebhookService:
    """Factory pour la réception des webhooks"""
    return WebhookService(db, sync_service=sync_service)


# === WORKERS ===
_sync_worker_instance: Optional[SyncSchedulerWorker] = None


def get_sync_worker() -> SyncSchedulerWorker:
    """Factory pour le worker de synchronisation (singleton)"""
    global _sync_worker_instance
    if _sync_worker_instance is None:
        _sync_worker_instance = SyncSchedulerWorker(
            session_factory=get_session_factory(),
            interval_seconds=settings.SYNC_WORKER_INTERVAL_SECONDS,
            batch_size=settings.SYNC_WORKER_BATCH_SIZE
        )
    return _sync_worker_instance
