import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from app.models.base import utcnow
from app.models.id_mapping import IdMapping
from app.repositories.id_mapping_repository import IdMappingRepository

logger = logging.getLogger(__name__)


@dataclass
class IdResolution:
    """Résultat de la résolution : mapping existant ou création à venir"""
    mapping: Optional[IdMapping]
    is_create: bool

    @property
    def external_id(self) -> Optional[str]:
        return self.mapping.external_id if self.mapping else None


class IdMappingService:
    def __init__(self, db: Session):
        self.db = db
        self.repository = IdMappingRepository(db)

    def resolve_or_create_mapping(self, system_id: int, internal_entity: str, internal_id: str,
                                  external_entity: str) -> IdResolution:
        """Cherche le mapping existant ; sans mapping, la synchronisation est une création.

        L'appelant fournit l'ID externe après l'appel distant via ``record_mapping``.
        """
        mapping = self.repository.get(system_id, internal_entity, internal_id)
        if mapping and mapping.external_entity != external_entity:
            logger.warning(f"Mapping {internal_entity}/{internal_id} lié à l'entité externe "
                           f"{mapping.external_entity} (attendu {external_entity})")
        return IdResolution(mapping=mapping, is_create=mapping is None)

    def record_mapping(self, system_id: int, internal_entity: str, internal_id: str, external_entity: str,
                       external_id: str, commit: bool = True) -> IdMapping:
        """Upsert sur (system_id, internal_entity, internal_id)"""
        mapping = self.repository.upsert(system_id, internal_entity, internal_id, external_entity,
                                         external_id, now=utcnow(), commit=commit)
        logger.info(f"Mapping d'ID {internal_entity}/{internal_id} -> {external_id} (système {system_id})")
        return mapping

    def find_by_external(self, system_id: int, external_entity: str, external_id: str) -> Optional[IdMapping]:
        return self.repository.find_by_external(system_id, external_entity, external_id)
