import logging
import random
import uuid
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import settings
from app.core.exceptions import (
    SyncEngineError, NotFoundError, RequestValidationFailed, MappingError,
    ExternalConnectionError, PersistenceError,
)
from app.core.field_mapping import apply_mapping, get_path, primary_key_field, MISSING
from app.external.school_system_client import SchoolSystemClient
from app.models.base import utcnow
from app.models.enums import (
    SyncModule, SyncOperation, SyncTaskStatus, SyncDirection, SyncHistoryStatus,
    MappingDirection, MODULE_ENTITIES, module_for,
)
from app.models.sync_task import SyncTask
from app.repositories.endpoint_repository import EndpointRepository
from app.repositories.field_mapping_repository import FieldMappingRepository
from app.repositories.school_system_repository import SchoolSystemRepository
from app.repositories.sync_history_repository import SyncHistoryRepository
from app.repositories.sync_task_repository import SyncTaskRepository
from app.services.id_mapping_service import IdMappingService, IdResolution

logger = logging.getLogger(__name__)


def compute_backoff(attempts: int, base: float, maximum: float,
                    jitter: Callable[[float, float], float] = random.uniform) -> float:
    """Délai exponentiel plafonné, plus une gigue dans [0, base/2]"""
    delay = min(base * 2 ** max(attempts - 1, 0), maximum)
    return delay + jitter(0, base / 2)


class SyncService:
    """File de tâches de synchronisation et exécuteur"""

    def __init__(self, db: Session, client_factory: Callable[..., SchoolSystemClient] = SchoolSystemClient,
                 clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.client_factory = client_factory
        self.clock = clock
        self.systems = SchoolSystemRepository(db)
        self.endpoints = EndpointRepository(db)
        self.field_mappings = FieldMappingRepository(db)
        self.tasks = SyncTaskRepository(db)
        self.history = SyncHistoryRepository(db)
        self.id_mapping_service = IdMappingService(db)

    # === FILE ===

    def schedule_sync_task(self, system_id: int, module_key: str, operation: str, priority: Optional[int] = None,
                           data_id: Optional[str] = None, data_payload: Optional[Dict[str, Any]] = None,
                           scheduled_for: Optional[datetime] = None, execute_now: bool = False,
                           max_attempts: Optional[int] = None) -> Tuple[SyncTask, Optional[Dict[str, Any]]]:
        """Crée une tâche ``pending`` ; avec ``execute_now`` elle est exécutée tout de suite"""
        if not self.systems.exists(system_id):
            raise NotFoundError("Système", system_id)

        errors = []
        module = operation_value = None
        try:
            module = module_for(str(getattr(module_key, "value", module_key)))
        except (ValueError, KeyError):
            errors.append({"field": "module_key", "message": f"module inconnu: {module_key}"})
        try:
            operation_value = SyncOperation(operation)
        except ValueError:
            errors.append({"field": "operation", "message": f"opération inconnue: {operation}"})
        if max_attempts is not None and max_attempts < 1:
            errors.append({"field": "max_attempts", "message": "doit être >= 1"})
        if errors:
            raise RequestValidationFailed("Tâche de synchronisation invalide", errors)

        if priority is None:
            priority = settings.SYNC_DEFAULT_PRIORITY
        task = self.tasks.create({
            "system_id": system_id,
            "module_key": module,
            "operation": operation_value,
            "priority": max(1, min(10, int(priority))),
            "status": SyncTaskStatus.PENDING,
            "data_id": str(data_id) if data_id is not None else None,
            "data_payload": data_payload,
            "scheduled_for": scheduled_for,
            "attempts": 0,
            "max_attempts": max_attempts or settings.SYNC_DEFAULT_MAX_ATTEMPTS,
        })
        logger.info(f"Tâche {task.id} planifiée: {module.value}/{operation_value.value} (système {system_id})")

        result = None
        if execute_now:
            result = self.execute_sync_task(task.id, worker_id="api")
            self.db.refresh(task)
        return task, result

    def get_task(self, task_id: int) -> SyncTask:
        task = self.tasks.get_by_id(task_id)
        if not task:
            raise NotFoundError("Tâche de synchronisation", task_id)
        return task

    def list_tasks(self, system_id: int, status: Optional[str] = None, limit: int = 100) -> List[SyncTask]:
        if not self.systems.exists(system_id):
            raise NotFoundError("Système", system_id)
        try:
            status_value = SyncTaskStatus(status) if status else None
        except ValueError:
            raise RequestValidationFailed("Statut invalide", [{"field": "status", "message": f"inconnu: {status}"}])
        return self.tasks.list_for_system(system_id, status_value, limit)

    def run_due_tasks(self, limit: Optional[int] = None, worker_id: Optional[str] = None) -> Dict[str, int]:
        """Balayage unique : libère les baux expirés puis exécute les tâches dues"""
        worker_id = worker_id or f"sweep-{uuid.uuid4().hex[:8]}"
        now = self.clock()
        lease_cutoff = now - timedelta(seconds=settings.SYNC_CLAIM_TIMEOUT_SECONDS)
        released = self.tasks.release_stale_claims(lease_cutoff, now)
        if released:
            logger.warning(f"{released} tâche(s) au bail expiré libérée(s)")

        summary = {"released": released, "executed": 0, "succeeded": 0, "failed": 0, "skipped": 0}
        due_ids = [task.id for task in self.tasks.get_due_tasks(now, limit or settings.SYNC_WORKER_BATCH_SIZE)]
        for task_id in due_ids:
            result = self.execute_sync_task(task_id, worker_id=worker_id)
            if not result.get("executed"):
                summary["skipped"] += 1
                continue
            summary["executed"] += 1
            summary["succeeded" if result["success"] else "failed"] += 1
        return summary

    # === EXÉCUTION ===

    def execute_sync_task(self, task_id: int, worker_id: Optional[str] = None) -> Dict[str, Any]:
        """Exécute une tâche réservée ; les échecs sont consignés sur la tâche, jamais levés"""
        task = self.get_task(task_id)
        worker_id = worker_id or f"worker-{uuid.uuid4().hex[:8]}"
        started_at = self.clock()

        if not self.tasks.claim(task_id, worker_id, started_at):
            self.db.refresh(task)
            logger.info(f"Tâche {task_id} non exécutable (statut {task.status.value}, "
                        f"tentatives {task.attempts}/{task.max_attempts})")
            return {
                "success": False,
                "executed": False,
                "taskId": task_id,
                "status": task.status.value,
                "message": "Tâche non exécutable",
            }

        self.db.refresh(task)
        logger.info(f"Tâche {task_id} réservée par {worker_id}")
        try:
            outcome = self._run(task)
        except Exception as e:
            if not isinstance(e, SyncEngineError):
                logger.exception(f"Erreur inattendue pendant la tâche {task_id}")
            return self._record_failure(task_id, e, started_at)

        try:
            return self._record_success(task, outcome, started_at)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Enregistrement du succès de la tâche {task_id} impossible: {e}")
            return self._record_failure(task_id, PersistenceError(str(e)), started_at)

    def _persist_token(self, system) -> None:
        self.db.commit()

    def _run(self, task: SyncTask) -> Dict[str, Any]:
        system = self.systems.get_by_id(task.system_id)
        if not system:
            raise NotFoundError("Système", task.system_id)

        module = SyncModule(task.module_key)
        operation = SyncOperation(task.operation)
        mappings = self.field_mappings.get_for_module(system.id, module)
        with self.client_factory(system, on_token_refreshed=self._persist_token) as client:
            context = {
                "task": task,
                "system": system,
                "module": module,
                "operation": operation,
                "entity": MODULE_ENTITIES[module].value,
                "mappings": mappings,
                "payload": task.data_payload if isinstance(task.data_payload, dict) else {},
                "client": client,
            }

            if operation == SyncOperation.IMPORT:
                return self._run_import(context)
            if operation == SyncOperation.DELETE:
                return self._run_delete(context)
            return self._run_export(context)

    def _endpoint(self, context):
        endpoint = self.endpoints.find_for(context["system"].id, context["module"], context["operation"])
        if endpoint is None:
            raise NotFoundError("Endpoint", f"{context['module'].value}/{context['operation'].value}")
        return endpoint

    @staticmethod
    def _external_entity(context, endpoint=None) -> str:
        template = (endpoint.response_template if endpoint is not None else None) or {}
        return template.get("entity", context["entity"])

    @staticmethod
    def _with_external_id(template: str) -> str:
        if "{external_id}" in template:
            return template
        return template.rstrip("/") + "/{external_id}"

    @staticmethod
    def _outcome(direction: SyncDirection, processed: int = 1, succeeded: int = 1, failed: int = 0,
                 id_mappings=None, **extra) -> Dict[str, Any]:
        outcome = {
            "direction": direction,
            "processed": processed,
            "succeeded": succeeded,
            "failed": failed,
            "id_mappings": id_mappings or [],
            "errors": [],
        }
        outcome.update(extra)
        return outcome

    def _run_export(self, context) -> Dict[str, Any]:
        task, payload, client = context["task"], context["payload"], context["client"]
        if not context["mappings"]:
            raise SyncEngineError(f"Aucun mapping de champs pour le module {context['module'].value}")
        if not payload:
            raise MappingError("<record>", "aucun enregistrement à exporter")

        endpoint = self._endpoint(context)
        external_entity = self._external_entity(context, endpoint)
        mapped = apply_mapping(payload, context["mappings"], MappingDirection.EXPORT)
        if not mapped:
            raise MappingError("<record>", "aucun champ mappé dans l'enregistrement")

        internal_id = task.data_id or (str(payload["id"]) if payload.get("id") is not None else None)
        if internal_id:
            resolution = self.id_mapping_service.resolve_or_create_mapping(
                context["system"].id, context["entity"], internal_id, external_entity)
        else:
            resolution = IdResolution(mapping=None, is_create=True)

        if resolution.is_create and context["operation"] == SyncOperation.EXPORT:
            method = endpoint.method.upper() if endpoint.method and endpoint.method.upper() in ("POST", "PUT") else "POST"
            response = client.call_endpoint(endpoint, method=method, record=mapped,
                                            url_values={"data_id": internal_id})
            external_id = client.extract_id(response, endpoint.response_template)
            if external_id is None:
                raise ExternalConnectionError("La réponse de création ne contient pas d'identifiant externe")
            action = "create"
        else:
            external_id = resolution.external_id or payload.get("external_id")
            if not external_id:
                raise MappingError("external_id", "aucun identifiant externe connu pour la mise à jour")
            method = endpoint.method.upper() if endpoint.method and endpoint.method.upper() in ("PUT", "PATCH") else "PUT"
            client.call_endpoint(endpoint, method=method, record=mapped,
                                 url_values={"external_id": external_id, "data_id": internal_id},
                                 url_template=self._with_external_id(endpoint.url_template))
            action = "update"

        id_mappings = [(internal_id, external_entity, str(external_id))] if internal_id else []
        return self._outcome(SyncDirection.EXPORT, id_mappings=id_mappings,
                             action=action, external_id=str(external_id), record=mapped)

    def _run_delete(self, context) -> Dict[str, Any]:
        task, payload, system = context["task"], context["payload"], context["system"]

        if "data" in payload:
            # suppression notifiée par le système externe
            data = payload["data"] if isinstance(payload["data"], dict) else {}
            external_id = task.data_id or data.get("id")
            if external_id is None:
                raise MappingError("id", "identifiant externe absent de la notification")
            mapping = self.id_mapping_service.find_by_external(system.id, context["entity"], str(external_id))
            return self._outcome(SyncDirection.IMPORT, action="delete", external_id=str(external_id),
                                 internal_id=mapping.internal_id if mapping else None)

        endpoint = self._endpoint(context)
        external_entity = self._external_entity(context, endpoint)
        external_id = None
        if task.data_id:
            resolution = self.id_mapping_service.resolve_or_create_mapping(
                system.id, context["entity"], task.data_id, external_entity)
            external_id = resolution.external_id
        external_id = external_id or payload.get("external_id")
        if not external_id:
            raise MappingError("external_id", "aucun identifiant externe connu pour la suppression")

        context["client"].call_endpoint(endpoint, method="DELETE",
                                        url_values={"external_id": external_id, "data_id": task.data_id},
                                        url_template=self._with_external_id(endpoint.url_template))
        return self._outcome(SyncDirection.EXPORT, action="delete", external_id=str(external_id))

    def _run_import(self, context) -> Dict[str, Any]:
        task, payload, client = context["task"], context["payload"], context["client"]
        if not context["mappings"]:
            raise SyncEngineError(f"Aucun mapping de champs pour le module {context['module'].value}")

        endpoint = None
        if "data" in payload:
            # données poussées par webhook, pas d'appel sortant
            pushed = payload["data"]
            raw_records = pushed if isinstance(pushed, list) else [pushed]
        else:
            endpoint = self._endpoint(context)
            response = client.call_endpoint(endpoint, method="GET", params=payload.get("filters"),
                                            url_values={"data_id": task.data_id})
            raw_records = client.extract_records(response, endpoint.response_template)
            if payload.get("limit"):
                raw_records = raw_records[:int(payload["limit"])]

        external_entity = self._external_entity(context, endpoint)
        pk_field = primary_key_field(context["mappings"], MappingDirection.IMPORT) or "id"
        records, errors, id_mappings = [], [], []
        first_error = None

        for index, raw in enumerate(raw_records):
            try:
                mapped = apply_mapping(raw, context["mappings"], MappingDirection.IMPORT)
            except MappingError as e:
                first_error = first_error or e
                errors.append({"index": index, "field": e.field, "error": e.reason})
                continue
            records.append(mapped)
            external_id = get_path(raw, pk_field)
            internal_id = mapped.get("id")
            if external_id not in (MISSING, None) and internal_id is not None:
                id_mappings.append((str(internal_id), external_entity, str(external_id)))

        if raw_records and not records:
            raise first_error

        return self._outcome(SyncDirection.IMPORT, processed=len(raw_records), succeeded=len(records),
                             failed=len(errors), id_mappings=id_mappings, records=records, errors=errors)

    def _record_success(self, task: SyncTask, outcome: Dict[str, Any], started_at: datetime) -> Dict[str, Any]:
        """Tâche, historique, mappings d'ID et statut du système validés dans une seule transaction"""
        now = self.clock()
        system = self.systems.get_by_id(task.system_id)
        entity = MODULE_ENTITIES[SyncModule(task.module_key)].value

        for internal_id, external_entity, external_id in outcome["id_mappings"]:
            self.id_mapping_service.record_mapping(system.id, entity, internal_id, external_entity,
                                                   external_id, commit=False)

        self.history.create({
            "system_id": system.id,
            "task_id": task.id,
            "entity_type": entity,
            "direction": outcome["direction"],
            "status": SyncHistoryStatus.PARTIAL if outcome["failed"] else SyncHistoryStatus.COMPLETED,
            "records_processed": outcome["processed"],
            "records_succeeded": outcome["succeeded"],
            "records_failed": outcome["failed"],
            "started_at": started_at,
            "completed_at": now,
            "error_details": {"errors": outcome["errors"]} if outcome["errors"] else None,
        }, commit=False)
        self.tasks.apply_changes(task, {
            "status": SyncTaskStatus.COMPLETED,
            "completed_at": now,
            "last_error": None,
            "next_attempt_at": None,
        }, commit=False)
        self.systems.record_success(system, now, commit=False)
        self.db.commit()

        logger.info(f"Tâche {task.id} terminée: {outcome['succeeded']}/{outcome['processed']} enregistrement(s)")
        result = {
            "success": True,
            "executed": True,
            "taskId": task.id,
            "status": SyncTaskStatus.COMPLETED.value,
            "recordsProcessed": outcome["processed"],
            "recordsSucceeded": outcome["succeeded"],
            "recordsFailed": outcome["failed"],
        }
        for key in ("action", "external_id", "records", "errors"):
            if outcome.get(key):
                result["externalId" if key == "external_id" else key] = outcome[key]
        return result

    def _record_failure(self, task_id: int, error: Exception, started_at: datetime) -> Dict[str, Any]:
        self.db.rollback()
        task = self.get_task(task_id)
        now = self.clock()
        attempts = (task.attempts or 0) + 1
        changes = {
            "attempts": attempts,
            "last_error": str(error),
            "claimed_by": None,
            "claimed_at": None,
        }
        if attempts >= task.max_attempts:
            changes.update(status=SyncTaskStatus.FAILED, completed_at=now, next_attempt_at=None)
        else:
            delay = compute_backoff(attempts, settings.SYNC_BACKOFF_BASE_SECONDS, settings.SYNC_BACKOFF_MAX_SECONDS)
            changes.update(status=SyncTaskStatus.PENDING, next_attempt_at=now + timedelta(seconds=delay))

        try:
            self.tasks.apply_changes(task, changes, commit=False)
            system = self.systems.get_by_id(task.system_id)
            if system:
                operation = SyncOperation(task.operation)
                self.history.create({
                    "system_id": system.id,
                    "task_id": task.id,
                    "entity_type": MODULE_ENTITIES[SyncModule(task.module_key)].value,
                    "direction": SyncDirection.IMPORT if operation == SyncOperation.IMPORT else SyncDirection.EXPORT,
                    "status": SyncHistoryStatus.FAILED,
                    "records_processed": 1,
                    "records_succeeded": 0,
                    "records_failed": 1,
                    "started_at": started_at,
                    "completed_at": now,
                    "error_details": {
                        "error": str(error),
                        "type": type(error).__name__,
                        "field": getattr(error, "field", None),
                        "status_code": getattr(error, "status_code", None),
                    },
                }, commit=False)
                self.systems.record_error(system, str(error), commit=False)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Enregistrement de l'échec de la tâche {task_id} impossible: {e}")
            raise PersistenceError(f"Échec de la tâche {task_id} non enregistré: {e}")

        if task.status == SyncTaskStatus.FAILED:
            logger.error(f"Tâche {task_id} en échec définitif après {attempts} tentative(s): {error}")
        else:
            logger.warning(f"Tâche {task_id} en échec ({attempts}/{task.max_attempts}), "
                           f"nouvelle tentative à {task.next_attempt_at}: {error}")
        return {
            "success": False,
            "executed": True,
            "taskId": task_id,
            "status": task.status.value,
            "attempts": attempts,
            "error": str(error),
        }
