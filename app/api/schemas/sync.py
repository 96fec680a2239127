from pydantic import Field
from datetime import datetime
from typing import List, Dict, Any, Optional, Union

from app.api.schemas.school_systems import CamelModel
from app.models.enums import SyncDirection, SyncHistoryStatus, SyncModule, SyncOperation, SyncTaskStatus, SystemStatus


class SyncRequest(CamelModel):
    entity_type: str = Field(min_length=1)
    direction: SyncDirection
    filters: Optional[Dict[str, Any]] = None
    limit: Optional[int] = Field(default=None, ge=1)
    execute_now: bool = False
    data: Optional[Dict[str, Any]] = None  # enregistrement interne à exporter


class SyncTaskCreate(CamelModel):
    module_key: str = Field(min_length=1)
    operation: SyncOperation
    priority: Optional[int] = None
    data_id: Optional[Union[str, int]] = None
    data_payload: Optional[Dict[str, Any]] = None
    scheduled_for: Optional[datetime] = None
    execute_now: bool = False
    max_attempts: Optional[int] = Field(default=None, ge=1, le=20)


class SyncTaskResponse(CamelModel):
    id: int
    system_id: int
    module_key: SyncModule
    operation: SyncOperation
    priority: int
    status: SyncTaskStatus
    data_id: Optional[str] = None
    scheduled_for: Optional[datetime] = None
    next_attempt_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    attempts: int
    max_attempts: int
    last_error: Optional[str] = None
    claimed_by: Optional[str] = None
    created_at: datetime


class SyncTaskScheduled(CamelModel):
    task_id: int
    status: SyncTaskStatus
    result: Optional[Dict[str, Any]] = None


class SyncHistoryResponse(CamelModel):
    id: int
    task_id: Optional[int] = None
    entity_type: str
    direction: SyncDirection
    status: SyncHistoryStatus
    records_processed: int
    records_succeeded: int
    records_failed: int
    started_at: datetime
    completed_at: Optional[datetime] = None
    error_details: Optional[Dict[str, Any]] = None


class SyncStatusResponse(CamelModel):
    system_id: int
    status: SystemStatus
    last_sync: Optional[datetime] = None
    error_count: int
    last_error: Optional[str] = None
    pending_tasks: int
    recent_syncs: List[SyncHistoryResponse]


class SyncResult(CamelModel):
    success: bool
    message: str
    task_ids: List[int]
    results: Optional[List[Dict[str, Any]]] = None
