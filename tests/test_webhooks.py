from unittest.mock import patch

from sqlalchemy.exc import OperationalError

from app.models import SyncTask, Webhook
from app.models.enums import SyncModule, SyncOperation, SyncTaskStatus, WebhookStatus
from app.repositories.webhook_repository import WebhookRepository
from app.services.webhook_service import WebhookService, resolve_event

WEBHOOK_URL = "/api/v1/school-systems/webhooks/{}"


class TestWebhookReceipt:
    def test_accepted_and_processed_in_background(self, client, db_session, school_system):
        response = client.post(WEBHOOK_URL.format(school_system.id),
                               json={"event": "student.created", "data": {"id": "A-7", "nome": "Ana"}})

        assert response.status_code == 202
        body = response.json()
        assert body["webhookId"] > 0

        db_session.expire_all()
        webhook = db_session.get(Webhook, body["webhookId"])
        assert webhook.status == WebhookStatus.PROCESSED
        assert webhook.payload == {"event": "student.created", "data": {"id": "A-7", "nome": "Ana"}}

        task = db_session.get(SyncTask, webhook.task_id)
        assert task.module_key == SyncModule.STUDENTS
        assert task.operation == SyncOperation.IMPORT
        assert task.status == SyncTaskStatus.PENDING
        assert task.data_id == "A-7"

    def test_row_survives_when_processing_crashes(self, client, db_session, school_system):
        with patch.object(WebhookService, "process_webhook", side_effect=RuntimeError("boom")):
            response = client.post(WEBHOOK_URL.format(school_system.id),
                                   json={"event": "student.updated", "data": {"id": "A-7"}})

        assert response.status_code == 202
        db_session.expire_all()
        webhook = db_session.get(Webhook, response.json()["webhookId"])
        assert webhook is not None
        assert webhook.status == WebhookStatus.RECEIVED

    def test_unknown_system(self, client, db_session):
        response = client.post(WEBHOOK_URL.format(999), json={"event": "student.created"})

        assert response.status_code == 404
        assert db_session.query(Webhook).count() == 0

    def test_missing_event_is_rejected(self, client, school_system):
        response = client.post(WEBHOOK_URL.format(school_system.id), json={"data": {"id": 1}})

        assert response.status_code == 400
        assert response.json()["errors"][0]["field"] == "event"

    def test_storage_failure_is_a_server_error(self, client, school_system):
        failure = OperationalError("INSERT INTO webhooks", {}, Exception("disk full"))
        with patch.object(WebhookRepository, "create", side_effect=failure):
            response = client.post(WEBHOOK_URL.format(school_system.id), json={"event": "student.created"})

        assert response.status_code == 500

    def test_no_authentication_required(self, client, school_system):
        response = client.post(WEBHOOK_URL.format(school_system.id),
                               json={"event": "payment.confirmed", "id": "P-1", "amount": 10})
        assert response.status_code == 202


class TestWebhookProcessing:
    def _register(self, db_session, system, event, payload):
        service = WebhookService(db_session)
        return service, service.register_webhook(system.id, event, payload)

    def test_unknown_event_marks_failed(self, db_session, school_system):
        service, webhook_id = self._register(db_session, school_system, "staff.hired", {"data": {"id": 1}})

        webhook = service.process_webhook(webhook_id)

        assert webhook.status == WebhookStatus.FAILED
        assert "staff.hired" in webhook.error
        assert webhook.processed_at is not None
        assert db_session.query(SyncTask).count() == 0

    def test_invalid_payload_shape_marks_failed(self, db_session, school_system):
        service, webhook_id = self._register(db_session, school_system, "student.created",
                                             {"event": "student.created", "data": "not-an-object"})

        assert service.process_webhook(webhook_id).status == WebhookStatus.FAILED

    def test_mapping_error_marks_failed(self, db_session, school_system, student_name_mapping):
        service, webhook_id = self._register(db_session, school_system, "student.created",
                                             {"data": {"id": "A-7"}})

        webhook = service.process_webhook(webhook_id)

        assert webhook.status == WebhookStatus.FAILED
        assert "student_name" in webhook.error

    def test_deleted_event_enqueues_delete(self, db_session, school_system):
        service, webhook_id = self._register(db_session, school_system, "enrollment.deleted",
                                             {"data": {"id": "M-3"}})

        webhook = service.process_webhook(webhook_id)

        task = db_session.get(SyncTask, webhook.task_id)
        assert task.operation == SyncOperation.DELETE
        assert task.module_key == SyncModule.ENROLLMENTS

    def test_processing_is_idempotent(self, db_session, school_system):
        service, webhook_id = self._register(db_session, school_system, "course.updated", {"data": {"id": "C-1"}})

        service.process_webhook(webhook_id)
        service.process_webhook(webhook_id)

        assert db_session.query(SyncTask).count() == 1

    def test_event_resolution(self):
        assert resolve_event("enrollment.status_changed") == (SyncModule.ENROLLMENTS, SyncOperation.IMPORT)
        assert resolve_event("lead.created") == (SyncModule.LEADS, SyncOperation.IMPORT)
