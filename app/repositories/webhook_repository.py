from datetime import datetime
from typing import Optional
from sqlalchemy.orm import Session

from app.repositories.base_repository import BaseRepository
from app.models.webhook import Webhook
from app.models.enums import WebhookStatus


class WebhookRepository(BaseRepository[Webhook]):
    def __init__(self, db: Session):
        super().__init__(Webhook, db)

    def mark_processed(self, webhook: Webhook, when: datetime, task_id: Optional[int] = None) -> Webhook:
        return self.apply_changes(webhook, {
            "status": WebhookStatus.PROCESSED,
            "processed_at": when,
            "task_id": task_id,
            "error": None,
        })

    def mark_failed(self, webhook: Webhook, when: datetime, error: str) -> Webhook:
        return self.apply_changes(webhook, {
            "status": WebhookStatus.FAILED,
            "processed_at": when,
            "error": error,
        })
