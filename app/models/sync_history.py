from sqlalchemy import Column, String, DateTime, Integer, JSON, ForeignKey
from .base import BaseModel
from .enums import SyncDirection, SyncHistoryStatus, enum_column_type


class SyncHistory(BaseModel):
    __tablename__ = "sync_history"

    system_id = Column(Integer, ForeignKey("school_systems.id"), nullable=False, index=True)
    task_id = Column(Integer, ForeignKey("sync_tasks.id"), nullable=True)
    entity_type = Column(String(50), nullable=False)
    direction = Column(enum_column_type(SyncDirection), nullable=False)
    status = Column(enum_column_type(SyncHistoryStatus), nullable=False)

    # Résultats
    records_processed = Column(Integer, default=0)
    records_succeeded = Column(Integer, default=0)
    records_failed = Column(Integer, default=0)

    # Timing
    started_at = Column(DateTime, nullable=False)
    completed_at = Column(DateTime)

    # Erreurs
    error_details = Column(JSON)
