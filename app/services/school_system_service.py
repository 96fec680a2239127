import logging
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from app.core.exceptions import NotFoundError, RequestValidationFailed, ExternalConnectionError
from app.core.transformations import transformation_registry
from app.external.school_system_client import SchoolSystemClient
from app.models.endpoint import SystemEndpoint
from app.models.enums import (
    SystemStatus, SyncDirection, SyncOperation, SyncModule, MODULE_ENTITIES, module_for,
)
from app.models.field_mapping import FieldMapping
from app.models.school_system import SchoolSystem
from app.repositories.endpoint_repository import EndpointRepository
from app.repositories.field_mapping_repository import FieldMappingRepository
from app.repositories.school_system_repository import SchoolSystemRepository
from app.repositories.sync_history_repository import SyncHistoryRepository
from app.repositories.sync_task_repository import SyncTaskRepository
from app.services.sync_service import SyncService

logger = logging.getLogger(__name__)


class DuplicateMappingError(RequestValidationFailed):
    """Un mapping existe déjà pour (système, module, champ interne)"""


class SchoolSystemService:
    """Gestion des systèmes externes, de leurs endpoints et mappings"""

    def __init__(self, db: Session, sync_service: Optional[SyncService] = None,
                 client_factory: Callable[..., SchoolSystemClient] = SchoolSystemClient):
        self.db = db
        self.systems = SchoolSystemRepository(db)
        self.endpoints = EndpointRepository(db)
        self.field_mappings = FieldMappingRepository(db)
        self.tasks = SyncTaskRepository(db)
        self.history = SyncHistoryRepository(db)
        self.client_factory = client_factory
        self.sync_service = sync_service or SyncService(db, client_factory=client_factory)

    @staticmethod
    def _module(value: str, field: str = "module_key") -> SyncModule:
        try:
            return module_for(str(getattr(value, "value", value)))
        except (ValueError, KeyError):
            raise RequestValidationFailed(f"Module ou entité inconnu: {value}",
                                          [{"field": field, "message": f"inconnu: {value}"}])

    # === SYSTÈMES ===

    def get_system(self, system_id: int) -> SchoolSystem:
        system = self.systems.get_by_id(system_id)
        if not system:
            raise NotFoundError("Système", system_id)
        return system

    def list_systems(self, school_id: int) -> List[SchoolSystem]:
        return self.systems.get_by_school(school_id)

    def create_system(self, data: Dict[str, Any]) -> SchoolSystem:
        data = dict(data)
        data.setdefault("status", SystemStatus.CONFIGURING)
        system = self.systems.create(data)
        logger.info(f"Système {system.id} '{system.name}' créé pour l'école {system.school_id}")
        return system

    def update_system(self, system_id: int, data: Dict[str, Any]) -> SchoolSystem:
        system = self.get_system(system_id)
        return self.systems.apply_changes(system, data)

    def delete_system(self, system_id: int) -> bool:
        """Suppression réelle, ou désactivation si un historique existe. Retourne True si supprimé"""
        system = self.get_system(system_id)
        if self.systems.has_history(system_id):
            self.systems.apply_changes(system, {"status": SystemStatus.INACTIVE})
            logger.info(f"Système {system_id} désactivé (historique conservé)")
            return False
        self.systems.delete(system_id)
        logger.info(f"Système {system_id} supprimé")
        return True

    def test_connection(self, system_id: int) -> Dict[str, Any]:
        system = self.get_system(system_id)
        try:
            with self.client_factory(system, on_token_refreshed=lambda _: self.db.commit()) as client:
                client.test_connection()
        except ExternalConnectionError as e:
            self.systems.record_error(system, str(e))
            logger.warning(f"Test de connexion échoué pour le système {system_id}: {e}")
            return {"success": False, "message": f"Échec de la connexion: {e.message}"}

        self.systems.apply_changes(system, {"status": SystemStatus.ACTIVE, "error_count": 0, "last_error": None})
        logger.info(f"Test de connexion réussi pour le système {system_id}")
        return {"success": True, "message": "Connexion établie avec succès"}

    # === ENDPOINTS ===

    def list_endpoints(self, system_id: int) -> List[SystemEndpoint]:
        self.get_system(system_id)
        return self.endpoints.get_by_system(system_id)

    def create_endpoint(self, system_id: int, data: Dict[str, Any]) -> SystemEndpoint:
        self.get_system(system_id)
        data = dict(data)
        if data.get("module_key"):
            data["module_key"] = self._module(data["module_key"])
        if data.get("method"):
            data["method"] = data["method"].upper()
        endpoint = self.endpoints.create({"system_id": system_id, **data})
        logger.info(f"Endpoint {endpoint.id} '{endpoint.name}' ajouté au système {system_id}")
        return endpoint

    # === MAPPINGS ===

    def get_field_mappings(self, system_id: int, entity_type: str) -> List[FieldMapping]:
        self.get_system(system_id)
        return self.field_mappings.get_for_module(system_id, self._module(entity_type, "entity_type"))

    def create_field_mapping(self, system_id: int, data: Dict[str, Any]) -> FieldMapping:
        """Crée un mapping ; la transformation doit exister dans le registre fermé"""
        self.get_system(system_id)
        data = dict(data)
        module = self._module(data.pop("module_key"))
        transformation_registry.validate(data.get("transformation"))

        if self.field_mappings.field_exists(system_id, module, data["internal_field"]):
            raise DuplicateMappingError(
                f"Mapping déjà défini pour {module.value}.{data['internal_field']}",
                [{"field": "internal_field", "message": "déjà mappé"}],
            )
        mapping = self.field_mappings.create({"system_id": system_id, "module_key": module, **data})
        logger.info(f"Mapping {module.value}.{mapping.internal_field} -> {mapping.external_field} "
                    f"(système {system_id})")
        return mapping

    # === SYNCHRONISATION ===

    def synchronize(self, system_id: int, entity_type: str, direction: str,
                    filters: Optional[Dict[str, Any]] = None, limit: Optional[int] = None,
                    execute_now: bool = False, data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        system = self.get_system(system_id)
        module = self._module(entity_type, "entity_type")
        try:
            direction = SyncDirection(direction)
        except ValueError:
            raise RequestValidationFailed(f"Direction inconnue: {direction}",
                                          [{"field": "direction", "message": f"inconnue: {direction}"}])

        if not self.field_mappings.get_for_module(system.id, module):
            raise RequestValidationFailed(
                f"Aucun mapping configuré pour l'entité {MODULE_ENTITIES[module].value}",
                [{"field": "entity_type", "message": "mapping absent"}],
            )
        if direction != SyncDirection.IMPORT and not data:
            raise RequestValidationFailed(
                "Un export exige l'enregistrement à envoyer",
                [{"field": "data", "message": "requis pour export et bidirectional"}],
            )

        operations = {
            SyncDirection.IMPORT: [SyncOperation.IMPORT],
            SyncDirection.EXPORT: [SyncOperation.EXPORT],
            SyncDirection.BIDIRECTIONAL: [SyncOperation.IMPORT, SyncOperation.EXPORT],
        }[direction]

        task_ids, results = [], []
        for operation in operations:
            if operation == SyncOperation.IMPORT:
                payload = {"filters": filters or {}, "limit": limit}
                data_id = None
            else:
                payload = dict(data or {})
                data_id = payload.get("id")
            task, result = self.sync_service.schedule_sync_task(
                system.id, module.value, operation.value,
                data_id=data_id, data_payload=payload, execute_now=execute_now,
            )
            task_ids.append(task.id)
            if result is not None:
                results.append(result)

        if execute_now:
            return {
                "success": all(result.get("success") for result in results),
                "message": "executed",
                "taskIds": task_ids,
                "results": results,
            }
        return {"success": True, "message": "scheduled", "taskIds": task_ids}

    def get_sync_status(self, system_id: int, entity_type: Optional[str] = None) -> Dict[str, Any]:
        system = self.get_system(system_id)
        entity = None
        if entity_type:
            entity = MODULE_ENTITIES[self._module(entity_type, "entity_type")].value

        recent = self.history.get_recent(system.id, entity, limit=10)
        return {
            "systemId": system.id,
            "status": system.status.value,
            "lastSync": recent[0].completed_at if recent else system.last_sync_at,
            "errorCount": system.error_count,
            "lastError": system.last_error,
            "pendingTasks": self.tasks.count_pending(system.id),
            "recentSyncs": recent,
        }
