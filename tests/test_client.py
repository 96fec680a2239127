from unittest.mock import MagicMock, patch

import pytest
import requests

from app.core.exceptions import ExternalConnectionError, SyncEngineError
from app.external.school_system_client import SchoolSystemClient
from app.models import SchoolSystem
from app.models.enums import AuthType
from app.services.sync_service import SyncService
from tests.conftest import fake_response


def make_system(**overrides):
    values = {"id": 1, "base_url": "https://erp.example.com/api/", "auth_type": AuthType.APIKEY,
              "api_key": "k", "connection_settings": None}
    values.update(overrides)
    return SchoolSystem(**values)


class TestSchoolSystemClient:
    def test_basic_auth(self, http_mock):
        http_mock.return_value = fake_response(200, {"ok": True})
        client = SchoolSystemClient(make_system(auth_type=AuthType.BASIC, username="u", password="p"))

        client.test_connection()

        assert http_mock.call_args.kwargs["auth"] == ("u", "p")
        assert http_mock.call_args.args == ("GET", "https://erp.example.com/api/")

    def test_connection_settings_headers_and_timeout(self, http_mock):
        http_mock.return_value = fake_response(200, {})
        system = make_system(connection_settings={"headers": {"X-Tenant": "escola-1"}, "timeout": 3})
        client = SchoolSystemClient(system)

        client.request("GET", "/students")

        assert client.session.headers["X-Tenant"] == "escola-1"
        assert http_mock.call_args.kwargs["timeout"] == 3

    def test_non_2xx_raises_with_status(self, http_mock):
        http_mock.return_value = fake_response(422, {"error": "invalid"})

        with pytest.raises(ExternalConnectionError) as exc:
            SchoolSystemClient(make_system()).request("POST", "/students", json={})
        assert exc.value.status_code == 422

    def test_network_error_is_wrapped(self, http_mock):
        http_mock.side_effect = requests.Timeout("read timed out")

        with pytest.raises(ExternalConnectionError) as exc:
            SchoolSystemClient(make_system()).request("GET", "/students")
        assert "read timed out" in exc.value.message

    def test_401_without_refresh_token_is_not_retried(self, http_mock):
        http_mock.return_value = fake_response(401, {"error": "unauthorized"})

        with pytest.raises(ExternalConnectionError):
            SchoolSystemClient(make_system()).request("GET", "/students")
        assert http_mock.call_count == 1

    def test_format_url_quotes_values_and_requires_them(self):
        assert SchoolSystemClient.format_url("/alunos/{external_id}", {"external_id": "a b"}) == "/alunos/a%20b"
        with pytest.raises(SyncEngineError):
            SchoolSystemClient.format_url("/alunos/{external_id}", {})

    def test_render_template_fields(self):
        template = {"aluno": {"nome": "{{name}}", "codigo": "{{ids.code}}"}, "texto": "Olá {{name}}"}
        rendered = SchoolSystemClient.render_template(template, {"name": "Ana", "ids": {"code": 7}})
        assert rendered == {"aluno": {"nome": "Ana", "codigo": 7}, "texto": "Olá Ana"}

    def test_extract_records(self):
        assert SchoolSystemClient.extract_records({"data": {"rows": [1, 2]}}, {"data_path": "data.rows"}) == [1, 2]
        assert SchoolSystemClient.extract_records({"id": 1}) == [{"id": 1}]
        with pytest.raises(ExternalConnectionError):
            SchoolSystemClient.extract_records({"data": {}}, {"data_path": "data.rows"})

    def test_context_manager_closes_its_own_session(self):
        with patch("requests.Session.close") as close:
            with SchoolSystemClient(make_system()):
                pass
        close.assert_called_once()

    def test_injected_session_is_left_open(self):
        session = MagicMock(spec=requests.Session)
        session.headers = {}

        with SchoolSystemClient(make_system(), session=session):
            pass
        session.close.assert_not_called()

    def test_sync_run_closes_the_client(self, db_session, school_system, students_endpoint,
                                        student_name_mapping, http_mock):
        http_mock.return_value = fake_response(201, {"id": "ext-42"})

        with patch("requests.Session.close") as close:
            _, result = SyncService(db_session).schedule_sync_task(
                school_system.id, "students", "export", data_id="stu-1",
                data_payload={"fullName": "Ana"}, execute_now=True)

        assert result["success"] is True
        close.assert_called_once()
