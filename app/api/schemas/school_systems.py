from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel
from datetime import datetime
from typing import Dict, Any, Optional

from app.models.enums import AuthType, EndpointStatus, SyncModule, SyncOperation, SystemStatus, SystemType


class CamelModel(BaseModel):
    """Accepte camelCase et snake_case en entrée, répond en camelCase"""

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True


class SchoolSystemCreate(CamelModel):
    school_id: int
    name: str = Field(min_length=1, max_length=255)
    system_type: SystemType
    description: Optional[str] = None
    vendor: Optional[str] = None
    version: Optional[str] = None
    base_url: Optional[str] = None
    auth_type: AuthType = AuthType.APIKEY
    api_key: Optional[str] = None
    api_secret: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    auth_token: Optional[str] = None
    refresh_token: Optional[str] = None
    webhook_secret: Optional[str] = None
    connection_settings: Optional[Dict[str, Any]] = None


class SchoolSystemUpdate(CamelModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    system_type: Optional[SystemType] = None
    description: Optional[str] = None
    vendor: Optional[str] = None
    version: Optional[str] = None
    base_url: Optional[str] = None
    auth_type: Optional[AuthType] = None
    api_key: Optional[str] = None
    api_secret: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    auth_token: Optional[str] = None
    refresh_token: Optional[str] = None
    webhook_secret: Optional[str] = None
    connection_settings: Optional[Dict[str, Any]] = None
    status: Optional[SystemStatus] = None


class SchoolSystemResponse(CamelModel):
    """Jamais de secrets en sortie : seulement ``has_credentials``"""
    id: int
    school_id: int
    name: str
    system_type: SystemType
    description: Optional[str] = None
    vendor: Optional[str] = None
    version: Optional[str] = None
    base_url: Optional[str] = None
    auth_type: AuthType
    status: SystemStatus
    last_sync_at: Optional[datetime] = None
    error_count: int
    last_error: Optional[str] = None
    has_credentials: bool
    created_at: datetime
    updated_at: datetime


class ConnectionTestResponse(CamelModel):
    success: bool
    message: str


class EndpointCreate(CamelModel):
    name: str = Field(min_length=1, max_length=255)
    url_template: str = Field(min_length=1, max_length=500)
    method: str = Field(default="GET", pattern=r"^(?i:GET|POST|PUT|PATCH|DELETE)$")
    description: Optional[str] = None
    module_key: Optional[str] = None  # clé de module ou type d'entité
    operation: Optional[SyncOperation] = None
    request_template: Optional[Any] = None
    response_template: Optional[Dict[str, Any]] = None
    headers: Optional[Dict[str, str]] = None
    requires_auth: bool = True
    rate_limit_per_minute: Optional[int] = Field(default=None, ge=1)
    status: EndpointStatus = EndpointStatus.ACTIVE


class EndpointResponse(CamelModel):
    id: int
    system_id: int
    name: str
    url_template: str
    method: str
    description: Optional[str] = None
    module_key: Optional[SyncModule] = None
    operation: Optional[SyncOperation] = None
    request_template: Optional[Any] = None
    response_template: Optional[Dict[str, Any]] = None
    headers: Optional[Dict[str, str]] = None
    requires_auth: bool
    rate_limit_per_minute: Optional[int] = None
    status: EndpointStatus


class FieldMappingCreate(CamelModel):
    module_key: str = Field(min_length=1)
    internal_field: str = Field(min_length=1, max_length=255)
    external_field: str = Field(min_length=1, max_length=255)
    transformation: Optional[str] = None
    transformation_params: Optional[Dict[str, Any]] = None
    is_required: bool = False
    is_primary_key: bool = False
    validation_rules: Optional[Dict[str, Any]] = None


class FieldMappingResponse(CamelModel):
    id: int
    system_id: int
    module_key: SyncModule
    internal_field: str
    external_field: str
    transformation: Optional[str] = None
    transformation_params: Optional[Dict[str, Any]] = None
    is_required: bool
    is_primary_key: bool
    validation_rules: Optional[Dict[str, Any]] = None
