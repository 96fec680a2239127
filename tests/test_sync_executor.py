from datetime import timedelta

import pytest
import requests

from app.models import FieldMapping, IdMapping, SyncHistory, SystemEndpoint
from app.models.base import utcnow
from app.models.enums import (
    AuthType, SyncHistoryStatus, SyncModule, SyncOperation, SyncTaskStatus, SystemStatus,
)
from app.core.exceptions import NotFoundError
from app.services.id_mapping_service import IdMappingService
from app.services.sync_service import SyncService
from tests.conftest import fake_response


def export_student(db_session, system, **kwargs):
    service = SyncService(db_session)
    kwargs.setdefault("data_id", "stu-1")
    kwargs.setdefault("data_payload", {"fullName": "Ana Souza"})
    return service.schedule_sync_task(system.id, "students", kwargs.pop("operation", "export"), **kwargs)


class TestExport:
    def test_end_to_end_export_records_mapping_and_history(
            self, db_session, school_system, students_endpoint, student_name_mapping, http_mock):
        http_mock.return_value = fake_response(201, {"id": "ext-42"})

        task, result = export_student(db_session, school_system, execute_now=True)

        assert result["success"] is True
        assert result["externalId"] == "ext-42"
        assert task.status == SyncTaskStatus.COMPLETED
        assert task.completed_at is not None

        mapping = db_session.query(IdMapping).one()
        assert (mapping.system_id, mapping.internal_entity, mapping.internal_id) == (1, "student", "stu-1")
        assert mapping.external_id == "ext-42"

        history = db_session.query(SyncHistory).all()
        assert len(history) == 1
        assert history[0].records_succeeded == 1
        assert history[0].status == SyncHistoryStatus.COMPLETED
        assert history[0].task_id == task.id

        db_session.refresh(school_system)
        assert school_system.status == SystemStatus.ACTIVE
        assert school_system.last_sync_at is not None

    def test_outbound_call_carries_mapped_body_and_api_key(
            self, db_session, school_system, students_endpoint, student_name_mapping, http_mock):
        http_mock.return_value = fake_response(201, {"id": "ext-42"})

        export_student(db_session, school_system, execute_now=True)

        method, url = http_mock.call_args.args
        assert method == "POST"
        assert url == "https://erp.example.com/api/students"
        assert http_mock.call_args.kwargs["json"] == {"student_name": "Ana Souza"}
        assert http_mock.call_args.kwargs["headers"]["X-Api-Key"] == "secret-api-key"
        assert http_mock.call_args.kwargs["timeout"]

    def test_second_export_updates_instead_of_creating(
            self, db_session, school_system, students_endpoint, student_name_mapping, http_mock):
        http_mock.return_value = fake_response(201, {"id": "ext-42"})
        export_student(db_session, school_system, execute_now=True)

        http_mock.return_value = fake_response(200, {"id": "ext-42"})
        task, result = export_student(db_session, school_system, execute_now=True,
                                      data_payload={"fullName": "Ana S. Souza"})

        method, url = http_mock.call_args.args
        assert (method, url) == ("PUT", "https://erp.example.com/api/students/ext-42")
        assert result["action"] == "update"
        assert db_session.query(IdMapping).count() == 1

    def test_request_template_wraps_record(
            self, db_session, school_system, students_endpoint, student_name_mapping, http_mock):
        students_endpoint.request_template = {"aluno": "{{record}}", "origem": "matriculas"}
        students_endpoint.response_template = {"id_field": "data.codigo"}
        db_session.commit()
        http_mock.return_value = fake_response(201, {"data": {"codigo": 77}})

        task, result = export_student(db_session, school_system, execute_now=True)

        assert http_mock.call_args.kwargs["json"] == {"aluno": {"student_name": "Ana Souza"}, "origem": "matriculas"}
        assert result["externalId"] == "77"

    def test_missing_required_field_fails_without_calling_out(
            self, db_session, school_system, students_endpoint, student_name_mapping, http_mock):
        task, result = export_student(db_session, school_system, execute_now=True, data_payload={"email": "a@x.com"})

        assert result["success"] is False
        assert "fullName" in result["error"]
        assert task.status == SyncTaskStatus.PENDING
        assert task.attempts == 1
        http_mock.assert_not_called()

    def test_empty_payload_is_never_sent(
            self, db_session, school_system, students_endpoint, student_name_mapping, http_mock):
        task, result = export_student(db_session, school_system, execute_now=True, data_id=None, data_payload={})

        assert result["success"] is False
        assert "<record>" in result["error"]
        assert task.status == SyncTaskStatus.PENDING
        assert db_session.query(SyncHistory).one().status == SyncHistoryStatus.FAILED
        http_mock.assert_not_called()

    def test_record_without_mapped_fields_is_never_sent(
            self, db_session, school_system, students_endpoint, student_name_mapping, http_mock):
        student_name_mapping.is_required = False
        db_session.commit()

        task, result = export_student(db_session, school_system, execute_now=True, data_payload={"email": "a@x.com"})

        assert result["success"] is False
        assert "aucun champ mappé" in result["error"]
        assert db_session.query(IdMapping).count() == 0
        http_mock.assert_not_called()

    def test_missing_endpoint_is_a_task_failure(self, db_session, school_system, student_name_mapping, http_mock):
        task, result = export_student(db_session, school_system, execute_now=True)

        assert result["success"] is False
        assert "Endpoint" in task.last_error


class TestFailures:
    def test_three_failures_reach_terminal_failed(
            self, db_session, school_system, students_endpoint, student_name_mapping, http_mock):
        http_mock.side_effect = requests.ConnectionError("connection refused by erp")
        service = SyncService(db_session)
        task, _ = export_student(db_session, school_system, max_attempts=3)

        for _ in range(3):
            result = service.execute_sync_task(task.id)
            assert result["executed"] is True

        db_session.refresh(task)
        assert task.attempts == 3
        assert task.status == SyncTaskStatus.FAILED
        assert "connection refused by erp" in task.last_error

        again = service.execute_sync_task(task.id)
        assert again["executed"] is False
        db_session.refresh(task)
        assert task.attempts == 3
        assert http_mock.call_count == 3

        failed_rows = db_session.query(SyncHistory).filter(SyncHistory.status == SyncHistoryStatus.FAILED).count()
        assert failed_rows == 3
        db_session.refresh(school_system)
        assert school_system.status == SystemStatus.ERROR
        assert school_system.error_count == 3

    def test_failure_schedules_backoff(
            self, db_session, school_system, students_endpoint, student_name_mapping, http_mock):
        http_mock.return_value = fake_response(503, {"error": "maintenance"})
        before = utcnow()

        task, result = export_student(db_session, school_system, execute_now=True)

        assert task.status == SyncTaskStatus.PENDING
        assert task.claimed_by is None
        assert task.next_attempt_at >= before + timedelta(seconds=30)
        assert "503" in result["error"]

    def test_completed_task_is_not_executed_again(
            self, db_session, school_system, students_endpoint, student_name_mapping, http_mock):
        http_mock.return_value = fake_response(201, {"id": "ext-42"})
        task, _ = export_student(db_session, school_system, execute_now=True)

        result = SyncService(db_session).execute_sync_task(task.id)

        assert result == {"success": False, "executed": False, "taskId": task.id,
                          "status": "completed", "message": "Tâche non exécutable"}
        assert http_mock.call_count == 1

    def test_unknown_task(self, db_session):
        with pytest.raises(NotFoundError):
            SyncService(db_session).execute_sync_task(404)


class TestOtherOperations:
    def test_delete_uses_known_external_id(
            self, db_session, school_system, students_endpoint, student_name_mapping, http_mock):
        IdMappingService(db_session).record_mapping(school_system.id, "student", "stu-1", "student", "ext-42")
        http_mock.return_value = fake_response(204)

        task, result = export_student(db_session, school_system, operation="delete", execute_now=True)

        assert result["success"] is True
        assert http_mock.call_args.args == ("DELETE", "https://erp.example.com/api/students/ext-42")

    def test_import_maps_records_and_counts_failures(self, db_session, school_system, students_endpoint, http_mock):
        db_session.add_all([
            FieldMapping(system_id=school_system.id, module_key=SyncModule.STUDENTS,
                         internal_field="fullName", external_field="nome", is_required=True),
            FieldMapping(system_id=school_system.id, module_key=SyncModule.STUDENTS,
                         internal_field="externalCode", external_field="codigo", is_primary_key=True),
        ])
        db_session.commit()
        http_mock.return_value = fake_response(200, {"items": [
            {"codigo": "A1", "nome": "Ana"},
            {"codigo": "B2"},
        ]})

        task, result = SyncService(db_session).schedule_sync_task(
            school_system.id, "students", "import", data_payload={"filters": {"turma": "3A"}}, execute_now=True)

        assert result["success"] is True
        assert result["recordsSucceeded"] == 1
        assert result["recordsFailed"] == 1
        assert result["records"] == [{"fullName": "Ana", "externalCode": "A1"}]
        assert http_mock.call_args.kwargs["params"] == {"turma": "3A"}
        history = db_session.query(SyncHistory).one()
        assert history.status == SyncHistoryStatus.PARTIAL

    def test_expired_bearer_token_is_refreshed(
            self, db_session, school_system, students_endpoint, student_name_mapping, http_mock):
        school_system.auth_type = AuthType.BEARER
        school_system.auth_token = "old-token"
        school_system.refresh_token = "refresh-me"
        db_session.commit()
        http_mock.side_effect = [
            fake_response(401, {"error": "expired"}),
            fake_response(200, {"token": "new-token"}),
            fake_response(201, {"id": "ext-42"}),
        ]

        task, result = export_student(db_session, school_system, execute_now=True)

        assert result["success"] is True
        refresh_call = http_mock.call_args_list[1]
        assert refresh_call.args[1] == "https://erp.example.com/api/auth/refresh"
        assert http_mock.call_args.kwargs["headers"]["Authorization"] == "Bearer new-token"
        db_session.refresh(school_system)
        assert school_system.auth_token == "new-token"
        assert school_system.token_expires_at > utcnow()


class TestSweep:
    def test_run_due_tasks_executes_due_work(
            self, db_session, school_system, students_endpoint, student_name_mapping, http_mock):
        http_mock.return_value = fake_response(201, {"id": "ext-42"})
        service = SyncService(db_session)
        export_student(db_session, school_system)
        export_student(db_session, school_system, data_id="stu-2",
                       scheduled_for=utcnow() + timedelta(hours=1))

        summary = service.run_due_tasks(limit=10)

        assert summary["executed"] == 1
        assert summary["succeeded"] == 1
        assert summary["released"] == 0
