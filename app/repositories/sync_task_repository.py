from datetime import datetime
from typing import List, Optional
from sqlalchemy import DateTime, case, literal, update, or_
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError

from app.repositories.base_repository import BaseRepository
from app.models.sync_task import SyncTask
from app.models.enums import SyncTaskStatus


class SyncTaskRepository(BaseRepository[SyncTask]):
    def __init__(self, db: Session):
        super().__init__(SyncTask, db)

    def get_due_tasks(self, now: datetime, limit: int = 20) -> List[SyncTask]:
        """Tâches en attente dont l'heure planifiée et le délai de retry sont passés"""
        return (self.db.query(SyncTask)
                .filter(SyncTask.status == SyncTaskStatus.PENDING)
                .filter(or_(SyncTask.scheduled_for.is_(None), SyncTask.scheduled_for <= now))
                .filter(or_(SyncTask.next_attempt_at.is_(None), SyncTask.next_attempt_at <= now))
                .order_by(SyncTask.priority.desc(),
                          SyncTask.scheduled_for.is_(None).desc(),
                          SyncTask.scheduled_for.asc(),
                          SyncTask.id.asc())
                .limit(limit)
                .all())

    def claim(self, task_id: int, worker_id: str, now: datetime) -> bool:
        """Réservation atomique : un seul appelant peut passer la tâche en in_progress"""
        try:
            result = self.db.execute(
                update(SyncTask)
                .where(SyncTask.id == task_id)
                .where(SyncTask.status.in_([SyncTaskStatus.PENDING, SyncTaskStatus.FAILED]))
                .where(SyncTask.attempts < SyncTask.max_attempts)
                .values(status=SyncTaskStatus.IN_PROGRESS,
                        claimed_by=worker_id,
                        claimed_at=now,
                        started_at=now,
                        updated_at=now)
                .execution_options(synchronize_session=False)
            )
            self.db.commit()
            return result.rowcount == 1
        except SQLAlchemyError as e:
            self.db.rollback()
            raise e

    def release_stale_claims(self, older_than: datetime, now: Optional[datetime] = None) -> int:
        """Bail expiré : la tentative est consommée, la tâche repart en attente ou passe en failed"""
        exhausted = SyncTask.attempts + 1 >= SyncTask.max_attempts
        status_type = SyncTask.__table__.c.status.type
        try:
            result = self.db.execute(
                update(SyncTask)
                .where(SyncTask.status == SyncTaskStatus.IN_PROGRESS)
                .where(SyncTask.claimed_at < older_than)
                .values(attempts=SyncTask.attempts + 1,
                        last_error="bail expiré",
                        status=case((exhausted, literal(SyncTaskStatus.FAILED, status_type)),
                                    else_=literal(SyncTaskStatus.PENDING, status_type)),
                        completed_at=case((exhausted, literal(now or older_than, DateTime())),
                                          else_=SyncTask.completed_at),
                        claimed_by=None,
                        claimed_at=None)
                .execution_options(synchronize_session=False)
            )
            self.db.commit()
            return result.rowcount
        except SQLAlchemyError as e:
            self.db.rollback()
            raise e

    def list_for_system(self, system_id: int, status: Optional[SyncTaskStatus] = None,
                        limit: int = 100) -> List[SyncTask]:
        query = self.db.query(SyncTask).filter(SyncTask.system_id == system_id)
        if status is not None:
            query = query.filter(SyncTask.status == status)
        return query.order_by(SyncTask.id.desc()).limit(limit).all()

    def count_pending(self, system_id: int) -> int:
        return (self.db.query(SyncTask)
                .filter(SyncTask.system_id == system_id)
                .filter(SyncTask.status.in_([SyncTaskStatus.PENDING, SyncTaskStatus.IN_PROGRESS]))
                .count())
