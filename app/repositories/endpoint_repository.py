from typing import List, Optional
from sqlalchemy.orm import Session

from app.repositories.base_repository import BaseRepository
from app.models.endpoint import SystemEndpoint
from app.models.enums import EndpointStatus, SyncModule, SyncOperation


class EndpointRepository(BaseRepository[SystemEndpoint]):
    def __init__(self, db: Session):
        super().__init__(SystemEndpoint, db)

    def get_by_system(self, system_id: int) -> List[SystemEndpoint]:
        """Récupère les endpoints d'un système"""
        return (self.db.query(SystemEndpoint)
                .filter(SystemEndpoint.system_id == system_id)
                .order_by(SystemEndpoint.id)
                .all())

    def find_for(self, system_id: int, module_key: SyncModule, operation: SyncOperation) -> Optional[SystemEndpoint]:
        """Résout l'endpoint actif d'un module pour une opération.

        Ordre : module + opération exacts, puis module sans opération, puis
        endpoint dont le nom correspond au module.
        """
        active = [ep for ep in self.get_by_system(system_id) if ep.status == EndpointStatus.ACTIVE]

        for endpoint in active:
            if endpoint.module_key == module_key and endpoint.operation == operation:
                return endpoint
        for endpoint in active:
            if endpoint.module_key == module_key and endpoint.operation is None:
                return endpoint
        for endpoint in active:
            if endpoint.module_key is None and endpoint.name.lower() == module_key.value:
                return endpoint
        return None
