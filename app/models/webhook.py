from sqlalchemy import Column, String, DateTime, Integer, Text, JSON, ForeignKey
from .base import BaseModel
from .enums import WebhookStatus, enum_column_type


class Webhook(BaseModel):
    __tablename__ = "webhooks"

    system_id = Column(Integer, ForeignKey("school_systems.id"), nullable=False, index=True)
    event = Column(String(100), nullable=False)
    payload = Column(JSON, nullable=False)
    status = Column(enum_column_type(WebhookStatus), default=WebhookStatus.RECEIVED, nullable=False)
    processed_at = Column(DateTime)
    error = Column(Text)
    task_id = Column(Integer, ForeignKey("sync_tasks.id"), nullable=True)
