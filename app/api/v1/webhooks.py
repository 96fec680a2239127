import logging
from typing import Callable

from fastapi import APIRouter, BackgroundTasks, Depends, status
from sqlalchemy.orm import Session

from app.api.schemas.webhooks import WebhookIn, WebhookAccepted
from app.core.database import get_session_factory
from app.dependencies import get_webhook_service
from app.services.webhook_service import WebhookService, process_webhook_in_background

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/school-systems", tags=["webhooks"])


@router.post("/webhooks/{system_id}", response_model=WebhookAccepted, status_code=status.HTTP_202_ACCEPTED)
async def receive_webhook(
        system_id: int,
        webhook: WebhookIn,
        background_tasks: BackgroundTasks,
        service: WebhookService = Depends(get_webhook_service),
        session_factory: Callable[[], Session] = Depends(get_session_factory)
):
    """Réception publique : écriture durable, puis traitement en arrière-plan"""
    payload = webhook.model_dump(exclude_unset=True)
    webhook_id = service.register_webhook(system_id, webhook.event, payload)
    background_tasks.add_task(process_webhook_in_background, webhook_id, session_factory)
    return WebhookAccepted(message="Webhook reçu", webhook_id=webhook_id)
