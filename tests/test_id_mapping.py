from app.models import IdMapping
from app.services.id_mapping_service import IdMappingService


class TestIdMapping:
    def test_unknown_entity_resolves_to_create(self, db_session, school_system):
        resolution = IdMappingService(db_session).resolve_or_create_mapping(
            school_system.id, "student", "stu-1", "student")

        assert resolution.is_create is True
        assert resolution.mapping is None
        assert resolution.external_id is None

    def test_recorded_mapping_resolves_to_update(self, db_session, school_system):
        service = IdMappingService(db_session)
        service.record_mapping(school_system.id, "student", "stu-1", "student", "ext-42")

        resolution = service.resolve_or_create_mapping(school_system.id, "student", "stu-1", "student")

        assert resolution.is_create is False
        assert resolution.external_id == "ext-42"

    def test_second_record_overwrites_instead_of_duplicating(self, db_session, school_system):
        service = IdMappingService(db_session)
        first = service.record_mapping(school_system.id, "student", "stu-1", "student", "ext-42")
        second = service.record_mapping(school_system.id, "student", "stu-1", "student", "ext-99")

        rows = db_session.query(IdMapping).all()
        assert len(rows) == 1
        assert rows[0].external_id == "ext-99"
        assert second.id == first.id
        assert second.last_sync_at >= first.created_at

    def test_mappings_are_scoped_per_entity(self, db_session, school_system):
        service = IdMappingService(db_session)
        service.record_mapping(school_system.id, "student", "1", "student", "ext-1")
        service.record_mapping(school_system.id, "course", "1", "course", "ext-1")

        assert db_session.query(IdMapping).count() == 2

    def test_reverse_lookup(self, db_session, school_system):
        service = IdMappingService(db_session)
        service.record_mapping(school_system.id, "student", "stu-1", "aluno", "A-7")

        found = service.find_by_external(school_system.id, "aluno", "A-7")

        assert found.internal_id == "stu-1"
        assert service.find_by_external(school_system.id, "aluno", "missing") is None
