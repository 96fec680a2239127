import pytest

from app.core.exceptions import MappingError
from app.core.field_mapping import apply_mapping, get_path, set_path, primary_key_field, MISSING
from app.models.enums import MappingDirection


def mapping(internal, external, **extra):
    return {"internal_field": internal, "external_field": external, **extra}


class TestPaths:
    def test_get_and_set_nested(self):
        record = {}
        set_path(record, "student.name", "Ana")
        assert record == {"student": {"name": "Ana"}}
        assert get_path(record, "student.name") == "Ana"
        assert get_path(record, "student.age") is MISSING
        assert get_path({"student": "flat"}, "student.name") is MISSING


class TestApplyMapping:
    def test_export_translates_internal_to_external(self):
        result = apply_mapping(
            {"fullName": "Ana Souza", "email": "ANA@X.COM"},
            [mapping("fullName", "student_name"), mapping("email", "contact.email", transformation="to_lower_case")],
            MappingDirection.EXPORT,
        )
        assert result == {"student_name": "Ana Souza", "contact": {"email": "ana@x.com"}}

    def test_import_translates_external_to_internal(self):
        result = apply_mapping(
            {"student_name": "Ana", "birth": "01/03/2010"},
            [mapping("fullName", "student_name"), mapping("birthDate", "birth", transformation="format_date")],
            MappingDirection.IMPORT,
        )
        assert result == {"fullName": "Ana", "birthDate": "2010-03-01"}

    def test_missing_required_field_names_the_field(self):
        with pytest.raises(MappingError) as exc:
            apply_mapping(
                {"email": "a@x.com"},
                [mapping("email", "email"), mapping("fullName", "student_name", is_required=True)],
                MappingDirection.EXPORT,
            )
        assert exc.value.field == "fullName"

    def test_required_none_is_absent(self):
        with pytest.raises(MappingError):
            apply_mapping({"fullName": None}, [mapping("fullName", "n", is_required=True)], MappingDirection.EXPORT)

    def test_optional_absent_field_is_omitted(self):
        result = apply_mapping({"fullName": "Ana"}, [mapping("fullName", "n"), mapping("phone", "p")],
                               MappingDirection.EXPORT)
        assert result == {"n": "Ana"}

    def test_source_record_is_not_mutated(self):
        record = {"tags": ["a"], "name": "ana"}
        result = apply_mapping(record, [mapping("tags", "labels"), mapping("name", "nome", transformation="to_upper_case")],
                               MappingDirection.EXPORT)
        result["labels"].append("b")
        assert record == {"tags": ["a"], "name": "ana"}

    def test_validation_rules(self):
        rules = {"min_length": 3, "pattern": r"[A-Z]+"}
        assert apply_mapping({"code": "ABC"}, [mapping("code", "c", validation_rules=rules)],
                             MappingDirection.EXPORT) == {"c": "ABC"}
        with pytest.raises(MappingError) as exc:
            apply_mapping({"code": "ab"}, [mapping("code", "c", validation_rules=rules)], MappingDirection.EXPORT)
        assert exc.value.field == "code"

    def test_choices_rule(self):
        with pytest.raises(MappingError):
            apply_mapping({"shift": "night"}, [mapping("shift", "turno", validation_rules={"choices": ["morning"]})],
                          MappingDirection.EXPORT)

    def test_failed_transformation_becomes_mapping_error(self):
        with pytest.raises(MappingError) as exc:
            apply_mapping({"age": "abc"}, [mapping("age", "idade", transformation="to_int")], MappingDirection.EXPORT)
        assert exc.value.field == "age"

    def test_non_dict_record_is_rejected(self):
        with pytest.raises(MappingError):
            apply_mapping(["not", "a", "record"], [], MappingDirection.EXPORT)

    def test_primary_key_field_follows_direction(self):
        mappings = [mapping("fullName", "student_name"), mapping("id", "codigo", is_primary_key=True)]
        assert primary_key_field(mappings, MappingDirection.IMPORT) == "codigo"
        assert primary_key_field(mappings, MappingDirection.EXPORT) == "id"
        assert primary_key_field(mappings[:1], MappingDirection.IMPORT) is None
