import asyncio

from app.models.enums import SyncTaskStatus
from app.services.sync_service import SyncService
from app.workers.sync_scheduler_worker import SyncSchedulerWorker
from tests.conftest import fake_response


class TestSyncSchedulerWorker:
    def test_sweep_runs_due_tasks_with_its_own_session(
            self, db_session, session_factory, school_system, students_endpoint, student_name_mapping, http_mock):
        http_mock.return_value = fake_response(201, {"id": "ext-42"})
        task, _ = SyncService(db_session).schedule_sync_task(
            school_system.id, "students", "export", data_id="stu-1", data_payload={"fullName": "Ana"})
        worker = SyncSchedulerWorker(session_factory, interval_seconds=1, batch_size=5)

        summary = asyncio.run(worker.sweep())

        assert summary["succeeded"] == 1
        assert worker.last_sweep["summary"] == summary
        db_session.refresh(task)
        assert task.status == SyncTaskStatus.COMPLETED
        assert task.claimed_by == worker.worker_id

    def test_status_when_not_started(self, session_factory):
        worker = SyncSchedulerWorker(session_factory)

        status = worker.get_status()

        assert status["running"] is False
        assert status["healthy"] is False
        assert worker.is_healthy() is False
