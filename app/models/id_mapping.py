from sqlalchemy import Column, String, DateTime, Integer, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship

from app.models.base import BaseModel


class IdMapping(BaseModel):
    __tablename__ = "id_mappings"
    __table_args__ = (
        UniqueConstraint("system_id", "internal_entity", "internal_id", name="uq_id_mappings_system_entity_id"),
    )

    system_id = Column(Integer, ForeignKey("school_systems.id"), nullable=False, index=True)
    internal_entity = Column(String(50), nullable=False)
    internal_id = Column(String(255), nullable=False)
    external_entity = Column(String(100), nullable=False)
    external_id = Column(String(255), nullable=False, index=True)
    last_sync_at = Column(DateTime)

    # Relations
    system = relationship("SchoolSystem", back_populates="id_mappings")
