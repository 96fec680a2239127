from sqlalchemy import Column, String, Integer, Boolean, Text, JSON, ForeignKey
from sqlalchemy.orm import relationship

from app.models.base import BaseModel
from app.models.enums import EndpointStatus, SyncModule, SyncOperation, enum_column_type


class SystemEndpoint(BaseModel):
    __tablename__ = "system_endpoints"

    system_id = Column(Integer, ForeignKey("school_systems.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    url_template = Column(String(500), nullable=False)  # ex: /students/{external_id}
    method = Column(String(10), default="GET", nullable=False)
    description = Column(Text)

    # Résolution par module / opération
    module_key = Column(enum_column_type(SyncModule), nullable=True)
    operation = Column(enum_column_type(SyncOperation), nullable=True)

    # Templates
    request_template = Column(JSON)  # ex: {"student": "{{record}}"}
    response_template = Column(JSON)  # ex: {"id_field": "data.id", "data_path": "items"}
    headers = Column(JSON)

    requires_auth = Column(Boolean, default=True, nullable=False)
    rate_limit_per_minute = Column(Integer)  # indicatif, non appliqué
    status = Column(enum_column_type(EndpointStatus), default=EndpointStatus.ACTIVE, nullable=False)

    # Relations
    system = relationship("SchoolSystem", back_populates="endpoints")
