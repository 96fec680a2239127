from typing import List
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError

from app.repositories.base_repository import BaseRepository
from app.models.school_system import SchoolSystem
from app.models.sync_history import SyncHistory
from app.models.webhook import Webhook
from app.models.enums import SystemStatus


class SchoolSystemRepository(BaseRepository[SchoolSystem]):
    def __init__(self, db: Session):
        super().__init__(SchoolSystem, db)

    def get_by_school(self, school_id: int) -> List[SchoolSystem]:
        """Récupère tous les systèmes configurés pour une école"""
        try:
            return (self.db.query(SchoolSystem)
                    .filter(SchoolSystem.school_id == school_id)
                    .order_by(SchoolSystem.id)
                    .all())
        except SQLAlchemyError as e:
            self.db.rollback()
            raise e

    def has_history(self, system_id: int) -> bool:
        """Vrai si un historique ou un webhook référence le système"""
        history = self.db.query(SyncHistory.id).filter(SyncHistory.system_id == system_id).first()
        webhook = self.db.query(Webhook.id).filter(Webhook.system_id == system_id).first()
        return history is not None or webhook is not None

    def record_success(self, system: SchoolSystem, when, commit: bool = True) -> SchoolSystem:
        return self.apply_changes(system, {
            "last_sync_at": when,
            "status": SystemStatus.ACTIVE,
            "error_count": 0,
            "last_error": None,
        }, commit=commit)

    def record_error(self, system: SchoolSystem, error: str, commit: bool = True) -> SchoolSystem:
        return self.apply_changes(system, {
            "status": SystemStatus.ERROR,
            "error_count": (system.error_count or 0) + 1,
            "last_error": error,
        }, commit=commit)
