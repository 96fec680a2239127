import logging
from typing import Any, Callable, Dict, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.exceptions import NotFoundError, PersistenceError, RequestValidationFailed, SyncEngineError
from app.core.field_mapping import apply_mapping
from app.models.base import utcnow
from app.models.enums import SyncModule, SyncOperation, WebhookStatus, MappingDirection
from app.models.webhook import Webhook
from app.repositories.field_mapping_repository import FieldMappingRepository
from app.repositories.school_system_repository import SchoolSystemRepository
from app.repositories.webhook_repository import WebhookRepository
from app.services.sync_service import SyncService

logger = logging.getLogger(__name__)

EVENT_MODULES: Dict[str, SyncModule] = {
    "student": SyncModule.STUDENTS,
    "course": SyncModule.COURSES,
    "enrollment": SyncModule.ENROLLMENTS,
    "payment": SyncModule.PAYMENTS,
    "lead": SyncModule.LEADS,
}

EVENT_OPERATIONS: Dict[str, SyncOperation] = {
    "created": SyncOperation.IMPORT,
    "updated": SyncOperation.IMPORT,
    "status_changed": SyncOperation.IMPORT,
    "confirmed": SyncOperation.IMPORT,
    "cancelled": SyncOperation.IMPORT,
    "deleted": SyncOperation.DELETE,
}


def resolve_event(event: str) -> Tuple[SyncModule, SyncOperation]:
    """``student.created`` -> (students, import) ; lève RequestValidationFailed si inconnu"""
    entity, _, action = (event or "").partition(".")
    module = EVENT_MODULES.get(entity)
    operation = EVENT_OPERATIONS.get(action)
    if module is None or operation is None:
        raise RequestValidationFailed(f"Événement inconnu: {event}",
                                      [{"field": "event", "message": f"inconnu: {event}"}])
    return module, operation


class WebhookService:
    """Réception durable puis traitement différé des webhooks"""

    def __init__(self, db: Session, sync_service: Optional[SyncService] = None):
        self.db = db
        self.systems = SchoolSystemRepository(db)
        self.webhooks = WebhookRepository(db)
        self.field_mappings = FieldMappingRepository(db)
        self.sync_service = sync_service or SyncService(db)

    def register_webhook(self, system_id: int, event: str, payload: Dict[str, Any]) -> int:
        """Écrit le webhook en ``received`` et valide avant tout accusé de réception"""
        if not self.systems.exists(system_id):
            raise NotFoundError("Système", system_id)

        try:
            webhook = self.webhooks.create({
                "system_id": system_id,
                "event": event,
                "payload": payload,
                "status": WebhookStatus.RECEIVED,
            })
        except SQLAlchemyError as e:
            logger.error(f"Enregistrement du webhook {event} (système {system_id}) impossible: {e}")
            raise PersistenceError(f"Le webhook n'a pas pu être enregistré: {e}")

        logger.info(f"Webhook {webhook.id} reçu: {event} (système {system_id})")
        return webhook.id

    @staticmethod
    def _record_shape(payload: Any) -> Dict[str, Any]:
        if not isinstance(payload, dict):
            raise RequestValidationFailed("Le payload du webhook doit être un objet JSON")
        data = payload.get("data")
        if data is not None:
            if not isinstance(data, dict):
                raise RequestValidationFailed("Le champ 'data' du webhook doit être un objet")
            return data
        record = {key: value for key, value in payload.items() if key != "event"}
        if not record:
            raise RequestValidationFailed("Le webhook ne contient aucune donnée")
        return record

    def process_webhook(self, webhook_id: int) -> Webhook:
        """Traduit l'événement en tâche de synchronisation ; l'échec est consigné sur la ligne"""
        webhook = self.webhooks.get_by_id(webhook_id)
        if not webhook:
            raise NotFoundError("Webhook", webhook_id)
        if webhook.status != WebhookStatus.RECEIVED:
            logger.info(f"Webhook {webhook_id} déjà traité ({webhook.status.value})")
            return webhook

        try:
            module, operation = resolve_event(webhook.event)
            record = self._record_shape(webhook.payload)

            mappings = self.field_mappings.get_for_module(webhook.system_id, module)
            if mappings and operation == SyncOperation.IMPORT:
                apply_mapping(record, mappings, MappingDirection.IMPORT)

            data_id = record.get("id")
            task, _ = self.sync_service.schedule_sync_task(
                webhook.system_id,
                module.value,
                operation.value,
                data_id=str(data_id) if data_id is not None else None,
                data_payload={"event": webhook.event, "data": record},
            )
        except SyncEngineError as e:
            self.db.rollback()
            logger.warning(f"Webhook {webhook_id} en échec: {e}")
            return self.webhooks.mark_failed(self.webhooks.get_by_id(webhook_id), utcnow(), str(e))

        logger.info(f"Webhook {webhook_id} traité, tâche {task.id} planifiée")
        return self.webhooks.mark_processed(webhook, utcnow(), task_id=task.id)


def process_webhook_in_background(webhook_id: int, session_factory: Callable[[], Session]) -> None:
    """Point d'entrée des BackgroundTasks : session dédiée, jamais celle de la requête"""
    db = session_factory()
    try:
        WebhookService(db).process_webhook(webhook_id)
    except Exception:
        # la ligne reste en received : le payload n'est jamais perdu
        logger.exception(f"Traitement du webhook {webhook_id} interrompu")
        db.rollback()
    finally:
        db.close()
