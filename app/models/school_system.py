from sqlalchemy import Column, String, DateTime, Integer, Text, JSON
from sqlalchemy.orm import relationship

from app.models.base import BaseModel
from app.models.enums import SystemType, SystemStatus, AuthType, enum_column_type


class SchoolSystem(BaseModel):
    __tablename__ = "school_systems"

    school_id = Column(Integer, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    system_type = Column(enum_column_type(SystemType), nullable=False)
    description = Column(Text)
    vendor = Column(String(255))
    version = Column(String(50))

    # Connexion
    base_url = Column(String(500))
    auth_type = Column(enum_column_type(AuthType), default=AuthType.APIKEY, nullable=False)
    api_key = Column(Text)
    api_secret = Column(Text)
    username = Column(String(255))
    password = Column(Text)
    auth_token = Column(Text)
    refresh_token = Column(Text)
    token_expires_at = Column(DateTime)
    webhook_secret = Column(Text)
    connection_settings = Column(JSON)  # headers, timeout, refresh_path

    # Statut
    status = Column(enum_column_type(SystemStatus), default=SystemStatus.CONFIGURING, nullable=False)
    last_sync_at = Column(DateTime)
    error_count = Column(Integer, default=0, nullable=False)
    last_error = Column(Text)

    # Relations
    endpoints = relationship("SystemEndpoint", back_populates="system", cascade="all, delete-orphan")
    field_mappings = relationship("FieldMapping", back_populates="system", cascade="all, delete-orphan")
    sync_tasks = relationship("SyncTask", back_populates="system", cascade="all, delete-orphan")
    id_mappings = relationship("IdMapping", back_populates="system", cascade="all, delete-orphan")

    @property
    def has_credentials(self) -> bool:
        return any([self.api_key, self.auth_token, self.password])

    def __repr__(self):
        return f"<SchoolSystem(name='{self.name}', type='{self.system_type}', status='{self.status}')>"
