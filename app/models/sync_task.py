from sqlalchemy import Column, String, DateTime, Integer, Text, JSON, ForeignKey, Index
from sqlalchemy.orm import relationship

from app.models.base import BaseModel
from app.models.enums import SyncModule, SyncOperation, SyncTaskStatus, enum_column_type


class SyncTask(BaseModel):
    __tablename__ = "sync_tasks"
    __table_args__ = (
        Index("ix_sync_tasks_status_priority", "status", "priority"),
    )

    system_id = Column(Integer, ForeignKey("school_systems.id"), nullable=False, index=True)
    module_key = Column(enum_column_type(SyncModule), nullable=False)
    operation = Column(enum_column_type(SyncOperation), nullable=False)
    priority = Column(Integer, default=5, nullable=False)  # 1-10, plus grand = plus prioritaire
    status = Column(enum_column_type(SyncTaskStatus), default=SyncTaskStatus.PENDING, nullable=False)

    # Données
    data_id = Column(String(255))
    data_payload = Column(JSON)

    # Planification
    scheduled_for = Column(DateTime)
    next_attempt_at = Column(DateTime)
    started_at = Column(DateTime)
    completed_at = Column(DateTime)

    # Tentatives
    attempts = Column(Integer, default=0, nullable=False)
    max_attempts = Column(Integer, default=3, nullable=False)
    last_error = Column(Text)

    # Bail d'exécution
    claimed_by = Column(String(255))
    claimed_at = Column(DateTime)

    # Relations
    system = relationship("SchoolSystem", back_populates="sync_tasks")

    def __repr__(self):
        return f"<SyncTask(id={self.id}, module='{self.module_key}', operation='{self.operation}', status='{self.status}')>"
