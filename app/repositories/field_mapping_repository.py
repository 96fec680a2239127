from typing import List
from sqlalchemy.orm import Session

from app.repositories.base_repository import BaseRepository
from app.models.field_mapping import FieldMapping
from app.models.enums import SyncModule


class FieldMappingRepository(BaseRepository[FieldMapping]):
    def __init__(self, db: Session):
        super().__init__(FieldMapping, db)

    def get_for_module(self, system_id: int, module_key: SyncModule) -> List[FieldMapping]:
        """Récupère les mappings d'un (système, module)"""
        return (self.db.query(FieldMapping)
                .filter(FieldMapping.system_id == system_id)
                .filter(FieldMapping.module_key == module_key)
                .order_by(FieldMapping.id)
                .all())

    def field_exists(self, system_id: int, module_key: SyncModule, internal_field: str) -> bool:
        return (self.db.query(FieldMapping.id)
                .filter(FieldMapping.system_id == system_id)
                .filter(FieldMapping.module_key == module_key)
                .filter(FieldMapping.internal_field == internal_field)
                .first()) is not None
