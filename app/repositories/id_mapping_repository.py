from datetime import datetime
from typing import Optional
from sqlalchemy import select
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError

from app.repositories.base_repository import BaseRepository
from app.models.id_mapping import IdMapping


class IdMappingRepository(BaseRepository[IdMapping]):
    def __init__(self, db: Session):
        super().__init__(IdMapping, db)

    def get(self, system_id: int, internal_entity: str, internal_id: str) -> Optional[IdMapping]:
        return (self.db.query(IdMapping)
                .filter(IdMapping.system_id == system_id)
                .filter(IdMapping.internal_entity == internal_entity)
                .filter(IdMapping.internal_id == str(internal_id))
                .first())

    def find_by_external(self, system_id: int, external_entity: str, external_id: str) -> Optional[IdMapping]:
        return (self.db.query(IdMapping)
                .filter(IdMapping.system_id == system_id)
                .filter(IdMapping.external_entity == external_entity)
                .filter(IdMapping.external_id == str(external_id))
                .first())

    def upsert(self, system_id: int, internal_entity: str, internal_id: str, external_entity: str,
               external_id: str, now: datetime, commit: bool = True) -> IdMapping:
        """Insère ou met à jour sur la clé unique (system_id, internal_entity, internal_id)"""
        values = {
            "system_id": system_id,
            "internal_entity": internal_entity,
            "internal_id": str(internal_id),
            "external_entity": external_entity,
            "external_id": str(external_id),
            "last_sync_at": now,
            "created_at": now,
            "updated_at": now,
        }
        changes = {
            "external_entity": external_entity,
            "external_id": str(external_id),
            "last_sync_at": now,
            "updated_at": now,
        }
        try:
            dialect = self.db.get_bind().dialect.name
            if dialect == "postgresql":
                from sqlalchemy.dialects.postgresql import insert
            elif dialect == "sqlite":
                from sqlalchemy.dialects.sqlite import insert
            else:
                insert = None

            if insert is not None:
                stmt = insert(IdMapping).values(**values).on_conflict_do_update(
                    index_elements=["system_id", "internal_entity", "internal_id"],
                    set_=changes,
                )
                self.db.execute(stmt)
            else:
                existing = self.get(system_id, internal_entity, internal_id)
                if existing:
                    for field, value in changes.items():
                        setattr(existing, field, value)
                else:
                    self.db.add(IdMapping(**values))
                self.db.flush()

            if commit:
                self.db.commit()

            return self.db.execute(
                select(IdMapping)
                .where(IdMapping.system_id == system_id)
                .where(IdMapping.internal_entity == internal_entity)
                .where(IdMapping.internal_id == str(internal_id))
                .execution_options(populate_existing=True)
            ).scalar_one()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise e
