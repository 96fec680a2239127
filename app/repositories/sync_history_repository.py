from typing import List, Optional, Dict, Any
from sqlalchemy.orm import Session

from app.core.exceptions import PersistenceError
from app.repositories.base_repository import BaseRepository
from app.models.sync_history import SyncHistory


class SyncHistoryRepository(BaseRepository[SyncHistory]):
    """Historique en ajout seul : une ligne écrite n'est plus modifiée"""

    def __init__(self, db: Session):
        super().__init__(SyncHistory, db)

    def get_recent(self, system_id: int, entity_type: Optional[str] = None, limit: int = 10) -> List[SyncHistory]:
        """Récupère les exécutions les plus récentes d'un système"""
        query = self.db.query(SyncHistory).filter(SyncHistory.system_id == system_id)
        if entity_type:
            query = query.filter(SyncHistory.entity_type == entity_type)
        return (query.order_by(SyncHistory.started_at.desc(), SyncHistory.id.desc())
                .limit(limit)
                .all())

    def update(self, id: int, obj_data: Dict[str, Any], commit: bool = True):
        raise PersistenceError("L'historique de synchronisation ne peut pas être modifié")

    def delete(self, id: int) -> bool:
        raise PersistenceError("L'historique de synchronisation ne peut pas être supprimé")
