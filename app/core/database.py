# app/core/database.py
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from sqlalchemy.pool import StaticPool
from typing import Callable, Generator

Base = declarative_base()


class DatabaseManager:
    """Singleton pour la gestion de la base de données"""
    _instance = None
    _engine = None
    _session_factory = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(DatabaseManager, cls).__new__(cls)
        return cls._instance

    def __init__(self):
        if self._engine is None:
            self._initialize_database()

    def _initialize_database(self):
        """Initialise la connexion à la base de données"""
        database_url = self._get_database_url()

        if database_url.startswith("sqlite"):
            engine_options = {"connect_args": {"check_same_thread": False}}
            if database_url in ("sqlite://", "sqlite:///:memory:"):
                engine_options["poolclass"] = StaticPool
        else:
            engine_options = {"pool_pre_ping": True, "pool_recycle": 300}

        self._engine = create_engine(database_url, echo=False, **engine_options)

        self._session_factory = sessionmaker(
            autocommit=False,
            autoflush=False,
            bind=self._engine
        )

    def _get_database_url(self) -> str:
        """Construit l'URL de la base de données"""
        from app.config import settings

        return settings.database_url

    @property
    def engine(self):
        return self._engine

    def get_session(self) -> Session:
        """Retourne une nouvelle session de base de données"""
        return self._session_factory()

    def create_tables(self):
        """Crée toutes les tables"""
        import app.models  # noqa: F401  enregistre les modèles dans Base.metadata
        Base.metadata.create_all(bind=self._engine)

    def drop_tables(self):
        """Supprime toutes les tables"""
        Base.metadata.drop_all(bind=self._engine)


# Instance singleton
db_manager = DatabaseManager()


def get_db() -> Generator[Session, None, None]:
    """Générateur de session pour l'injection de dépendances FastAPI"""
    db = db_manager.get_session()
    try:
        yield db
    finally:
        db.close()


def get_session_factory() -> Callable[[], Session]:
    """Fabrique de sessions pour les traitements hors requête (tâches d'arrière-plan, worker)"""
    return db_manager.get_session
