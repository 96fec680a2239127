from pydantic import BaseModel, Field
from typing import Any, Optional

from app.api.schemas.school_systems import CamelModel


class WebhookIn(BaseModel):
    """Corps libre : seul ``event`` est obligatoire"""
    event: str = Field(min_length=1, max_length=100)
    data: Optional[Any] = None

    class Config:
        extra = "allow"


class WebhookAccepted(CamelModel):
    message: str
    webhook_id: int
