import os

# Settings lues à l'import de l'application : base en mémoire, worker désactivé
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SYNC_WORKER_ENABLED"] = "false"
os.environ["AUTO_CREATE_TABLES"] = "false"
os.environ["SECRET_KEY"] = "test-secret-key"

from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from app.main import app
from app.config import settings
from app.core.database import Base, get_db, get_session_factory
from app.models import SchoolSystem, SystemEndpoint, FieldMapping, User, UserRole
from app.models.enums import AuthType, SyncModule, SystemStatus, SystemType
from app.repositories.user_repository import UserRepository
from app.services.auth_service import AuthService


@pytest.fixture(scope="function")
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="function")
def db_session(session_factory) -> Session:
    """Session de test sur une base vierge"""
    session = session_factory()
    yield session
    session.close()


@pytest.fixture(scope="function")
def client(db_session: Session, session_factory):
    """TestClient avec la base de test et la fabrique de sessions des tâches d'arrière-plan"""

    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory

    with TestClient(app) as c:
        yield c

    app.dependency_overrides.clear()


def fake_response(status_code=200, json_data=None, text=None):
    """Réponse ``requests`` simulée"""
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = json_data
    response.text = text if text is not None else str(json_data)
    response.content = b"" if json_data is None and not text else b"{...}"
    return response


@pytest.fixture
def http_mock():
    """Intercepte tous les appels sortants de requests.Session"""
    with patch("requests.Session.request") as mock_request:
        yield mock_request


@pytest.fixture
def school_system(db_session) -> SchoolSystem:
    system = SchoolSystem(
        school_id=1,
        name="Sistema Acadêmico",
        system_type=SystemType.ACADEMIC_MANAGEMENT,
        base_url="https://erp.example.com/api",
        auth_type=AuthType.APIKEY,
        api_key="secret-api-key",
        status=SystemStatus.ACTIVE,
    )
    db_session.add(system)
    db_session.commit()
    db_session.refresh(system)
    return system


@pytest.fixture
def students_endpoint(db_session, school_system) -> SystemEndpoint:
    endpoint = SystemEndpoint(
        system_id=school_system.id,
        name="students",
        url_template="/students",
        method="POST",
        module_key=SyncModule.STUDENTS,
        response_template={"id_field": "id", "data_path": "items"},
    )
    db_session.add(endpoint)
    db_session.commit()
    db_session.refresh(endpoint)
    return endpoint


@pytest.fixture
def student_name_mapping(db_session, school_system) -> FieldMapping:
    mapping = FieldMapping(
        system_id=school_system.id,
        module_key=SyncModule.STUDENTS,
        internal_field="fullName",
        external_field="student_name",
        is_required=True,
    )
    db_session.add(mapping)
    db_session.commit()
    db_session.refresh(mapping)
    return mapping


def _user(db_session, username, role) -> User:
    user = User(
        username=username,
        email=f"{username}@example.com",
        hashed_password="not-used-in-tests",
        is_active=True,
        role=role,
        school_id=1,
    )
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


def _token_headers(db_session, user: User):
    auth_service = AuthService(UserRepository(db_session), settings.SECRET_KEY, settings.ALGORITHM)
    token = auth_service.create_access_token({"sub": user.username, "role": user.role.value})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_headers(db_session):
    return _token_headers(db_session, _user(db_session, "admin", UserRole.ADMIN))


@pytest.fixture
def school_headers(db_session):
    return _token_headers(db_session, _user(db_session, "escola", UserRole.SCHOOL))


@pytest.fixture
def student_headers(db_session):
    return _token_headers(db_session, _user(db_session, "aluno", UserRole.STUDENT))
