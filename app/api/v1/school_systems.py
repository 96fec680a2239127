from fastapi import APIRouter, Depends, Query, Response, status
from typing import List, Dict, Any, Optional

from app.api.auth import require_school_admin
from app.api.schemas.school_systems import (
    SchoolSystemCreate, SchoolSystemUpdate, SchoolSystemResponse, ConnectionTestResponse,
    EndpointCreate, EndpointResponse, FieldMappingCreate, FieldMappingResponse,
)
from app.api.schemas.sync import (
    SyncRequest, SyncResult, SyncStatusResponse, SyncTaskCreate, SyncTaskResponse, SyncTaskScheduled,
)
from app.dependencies import get_school_system_service, get_sync_service
from app.models.user import User
from app.services.school_system_service import SchoolSystemService
from app.services.sync_service import SyncService

router = APIRouter(prefix="/school-systems", tags=["school-systems"])


# === SYSTÈMES ===

@router.get("/school/{school_id}", response_model=List[SchoolSystemResponse])
async def list_school_systems(
        school_id: int,
        service: SchoolSystemService = Depends(get_school_system_service),
        current_user: User = Depends(require_school_admin)
):
    """Lister les systèmes configurés pour une école"""
    return service.list_systems(school_id)


@router.post("/", response_model=SchoolSystemResponse, status_code=status.HTTP_201_CREATED)
async def create_school_system(
        system_data: SchoolSystemCreate,
        service: SchoolSystemService = Depends(get_school_system_service),
        current_user: User = Depends(require_school_admin)
):
    """Configurer un nouveau système externe"""
    return service.create_system(system_data.model_dump())


@router.get("/{system_id}", response_model=SchoolSystemResponse)
async def get_school_system(
        system_id: int,
        service: SchoolSystemService = Depends(get_school_system_service),
        current_user: User = Depends(require_school_admin)
):
    return service.get_system(system_id)


@router.put("/{system_id}", response_model=SchoolSystemResponse)
async def update_school_system(
        system_id: int,
        system_data: SchoolSystemUpdate,
        service: SchoolSystemService = Depends(get_school_system_service),
        current_user: User = Depends(require_school_admin)
):
    """Mise à jour partielle : seuls les champs envoyés sont modifiés"""
    return service.update_system(system_id, system_data.model_dump(exclude_unset=True))


@router.delete("/{system_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_school_system(
        system_id: int,
        service: SchoolSystemService = Depends(get_school_system_service),
        current_user: User = Depends(require_school_admin)
):
    """Supprimer un système (désactivé seulement s'il a un historique)"""
    service.delete_system(system_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{system_id}/test-connection", response_model=ConnectionTestResponse)
async def test_connection(
        system_id: int,
        service: SchoolSystemService = Depends(get_school_system_service),
        current_user: User = Depends(require_school_admin)
):
    """Tester la connexion au système externe"""
    return service.test_connection(system_id)


# === SYNCHRONISATION ===

@router.post("/{system_id}/sync", response_model=SyncResult)
async def synchronize(
        system_id: int,
        sync_request: SyncRequest,
        service: SchoolSystemService = Depends(get_school_system_service),
        current_user: User = Depends(require_school_admin)
):
    """Lancer une synchronisation (import, export ou bidirectionnelle)"""
    return service.synchronize(
        system_id,
        sync_request.entity_type,
        sync_request.direction,
        filters=sync_request.filters,
        limit=sync_request.limit,
        execute_now=sync_request.execute_now,
        data=sync_request.data,
    )


@router.get("/{system_id}/sync-status", response_model=SyncStatusResponse)
async def get_sync_status(
        system_id: int,
        entity_type: Optional[str] = Query(default=None, alias="entityType"),
        service: SchoolSystemService = Depends(get_school_system_service),
        current_user: User = Depends(require_school_admin)
):
    return service.get_sync_status(system_id, entity_type)


@router.post("/{system_id}/sync-tasks", response_model=SyncTaskScheduled, status_code=status.HTTP_201_CREATED)
async def schedule_sync_task(
        system_id: int,
        task_data: SyncTaskCreate,
        sync_service: SyncService = Depends(get_sync_service),
        current_user: User = Depends(require_school_admin)
):
    """Planifier une tâche de synchronisation"""
    task, result = sync_service.schedule_sync_task(
        system_id,
        task_data.module_key,
        task_data.operation,
        priority=task_data.priority,
        data_id=task_data.data_id,
        data_payload=task_data.data_payload,
        scheduled_for=task_data.scheduled_for,
        execute_now=task_data.execute_now,
        max_attempts=task_data.max_attempts,
    )
    return SyncTaskScheduled(task_id=task.id, status=task.status, result=result)


@router.get("/{system_id}/sync-tasks", response_model=List[SyncTaskResponse])
async def list_sync_tasks(
        system_id: int,
        task_status: Optional[str] = Query(default=None, alias="status"),
        limit: int = Query(default=100, ge=1, le=500),
        sync_service: SyncService = Depends(get_sync_service),
        current_user: User = Depends(require_school_admin)
):
    return sync_service.list_tasks(system_id, task_status, limit)


@router.post("/sync-tasks/{task_id}/execute", response_model=Dict[str, Any])
async def execute_sync_task(
        task_id: int,
        sync_service: SyncService = Depends(get_sync_service),
        current_user: User = Depends(require_school_admin)
):
    """Exécuter immédiatement une tâche ; un échec est consigné sur la tâche"""
    return sync_service.execute_sync_task(task_id, worker_id=f"api-user-{current_user.id}")


# === ENDPOINTS ===

@router.get("/{system_id}/endpoints", response_model=List[EndpointResponse])
async def list_endpoints(
        system_id: int,
        service: SchoolSystemService = Depends(get_school_system_service),
        current_user: User = Depends(require_school_admin)
):
    return service.list_endpoints(system_id)


@router.post("/{system_id}/endpoints", response_model=EndpointResponse, status_code=status.HTTP_201_CREATED)
async def create_endpoint(
        system_id: int,
        endpoint_data: EndpointCreate,
        service: SchoolSystemService = Depends(get_school_system_service),
        current_user: User = Depends(require_school_admin)
):
    """Ajouter un endpoint au système"""
    return service.create_endpoint(system_id, endpoint_data.model_dump())


# === MAPPINGS ===

@router.get("/{system_id}/mappings/{entity_type}", response_model=List[FieldMappingResponse])
async def get_field_mappings(
        system_id: int,
        entity_type: str,
        service: SchoolSystemService = Depends(get_school_system_service),
        current_user: User = Depends(require_school_admin)
):
    """Mappings d'une entité (``student``) ou d'un module (``students``)"""
    return service.get_field_mappings(system_id, entity_type)


@router.post("/{system_id}/mappings", response_model=FieldMappingResponse, status_code=status.HTTP_201_CREATED)
async def create_field_mapping(
        system_id: int,
        mapping_data: FieldMappingCreate,
        service: SchoolSystemService = Depends(get_school_system_service),
        current_user: User = Depends(require_school_admin)
):
    """Créer un mapping ; transformation inconnue -> 400, doublon -> 409"""
    return service.create_field_mapping(system_id, mapping_data.model_dump())
