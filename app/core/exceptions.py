from typing import Any, Dict, List, Optional


class SyncEngineError(Exception):
    """Erreur de base du moteur d'intégration"""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(SyncEngineError):
    """Système, tâche, endpoint ou mapping introuvable"""

    def __init__(self, resource: str, identifier: Any):
        super().__init__(f"{resource} avec l'ID {identifier} non trouvé")
        self.resource = resource
        self.identifier = identifier


class RequestValidationFailed(SyncEngineError):
    """Données de requête invalides, avec détail par champ"""

    def __init__(self, message: str, errors: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message)
        self.errors = errors or []


class UnknownTransformationError(RequestValidationFailed):
    def __init__(self, name: str):
        super().__init__(
            f"Fonction de transformation inconnue: {name}",
            errors=[{"field": "transformation", "message": f"inconnue: {name}"}]
        )
        self.name = name


class MappingError(SyncEngineError):
    """Un champ requis est absent ou invalide pendant la traduction"""

    def __init__(self, field: str, reason: str = "champ requis absent"):
        super().__init__(f"Erreur de mapping sur le champ '{field}': {reason}")
        self.field = field
        self.reason = reason


class ExternalConnectionError(SyncEngineError):
    """Échec de l'appel HTTP vers le système externe (réseau, auth, statut non-2xx)"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class PersistenceError(SyncEngineError):
    """L'écriture durable en base a échoué"""
