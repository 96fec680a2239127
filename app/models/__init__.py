from .base import BaseModel
from .user import User, UserRole
from .school_system import SchoolSystem
from .endpoint import SystemEndpoint
from .field_mapping import FieldMapping
from .sync_task import SyncTask
from .sync_history import SyncHistory
from .id_mapping import IdMapping
from .webhook import Webhook

__all__ = [
    "BaseModel", "User", "UserRole", "SchoolSystem", "SystemEndpoint", "FieldMapping",
    "SyncTask", "SyncHistory", "IdMapping", "Webhook",
]
