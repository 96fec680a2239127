from pydantic import BaseModel
from typing import Optional
from app.models.user import UserRole


class TokenData(BaseModel):
    username: Optional[str] = None
    role: Optional[UserRole] = None
    school_id: Optional[int] = None
