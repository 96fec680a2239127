from sqlalchemy import Column, String, Integer, Boolean, JSON, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship

from app.models.base import BaseModel
from app.models.enums import SyncModule, enum_column_type


class FieldMapping(BaseModel):
    __tablename__ = "field_mappings"
    __table_args__ = (
        UniqueConstraint("system_id", "module_key", "internal_field", name="uq_field_mappings_system_module_field"),
    )

    system_id = Column(Integer, ForeignKey("school_systems.id"), nullable=False, index=True)
    module_key = Column(enum_column_type(SyncModule), nullable=False)
    internal_field = Column(String(255), nullable=False)
    external_field = Column(String(255), nullable=False)

    transformation = Column(String(100), nullable=True)
    transformation_params = Column(JSON)
    is_required = Column(Boolean, default=False, nullable=False)
    is_primary_key = Column(Boolean, default=False, nullable=False)
    validation_rules = Column(JSON)  # min_length, max_length, pattern, choices

    # Relations
    system = relationship("SchoolSystem", back_populates="field_mappings")
