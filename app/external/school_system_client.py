import re
import logging
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional

import requests

from app.config import settings
from app.core.exceptions import ExternalConnectionError, SyncEngineError
from app.core.field_mapping import get_path, MISSING
from app.models.base import utcnow
from app.models.enums import AuthType

logger = logging.getLogger(__name__)

_PLACEHOLDER = re.compile(r"\{(\w+)\}")
_RECORD_TOKEN = "{{record}}"
_FIELD_TOKEN = re.compile(r"\{\{\s*([\w.]+)\s*\}\}")

TOKEN_LIFETIME = timedelta(hours=24)


class SchoolSystemClient:
    """Client HTTP vers un système scolaire externe.

    Une session ``requests`` par système ; l'authentification (clé d'API,
    bearer, basic) et les en-têtes supplémentaires viennent de la
    configuration du système. Toute erreur réseau ou réponse non-2xx est
    levée en ExternalConnectionError.
    """

    def __init__(self, system, timeout: Optional[float] = None,
                 session: Optional[requests.Session] = None,
                 on_token_refreshed: Optional[Callable[[Any], None]] = None):
        self.system = system
        options = system.connection_settings or {}
        self.timeout = options.get("timeout") or timeout or settings.SYNC_HTTP_TIMEOUT_SECONDS
        self.refresh_path = options.get("refresh_path", "/auth/refresh")
        self.on_token_refreshed = on_token_refreshed
        self._owns_session = session is None
        self.session = session or requests.Session()
        self.session.headers.update({"Content-Type": "application/json", "Accept": "application/json"})
        self.session.headers.update(options.get("headers") or {})

    def close(self) -> None:
        """Ferme la session HTTP si elle a été ouverte par le client"""
        if self._owns_session:
            self.session.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()

    # --- Construction des requêtes ---

    def _auth_headers(self) -> Dict[str, str]:
        auth_type = AuthType(self.system.auth_type or AuthType.NONE)
        if auth_type == AuthType.APIKEY and self.system.api_key:
            return {"X-Api-Key": self.system.api_key}
        if auth_type == AuthType.BEARER and self.system.auth_token:
            return {"Authorization": f"Bearer {self.system.auth_token}"}
        return {}

    def _auth(self):
        if self.system.auth_type == AuthType.BASIC and self.system.username:
            return (self.system.username, self.system.password or "")
        return None

    def build_url(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        if not self.system.base_url:
            raise ExternalConnectionError(f"Aucune URL de base configurée pour le système {self.system.id}")
        base = self.system.base_url.rstrip("/")
        if not path or path == "/":
            return base + "/"
        return f"{base}/{path.lstrip('/')}"

    @staticmethod
    def format_url(template: str, values: Dict[str, Any]) -> str:
        """Remplace les placeholders ``{external_id}``, ``{data_id}``..."""
        def replace(match):
            name = match.group(1)
            value = values.get(name)
            if value is None:
                raise SyncEngineError(f"Valeur manquante pour le paramètre d'URL '{name}' dans {template}")
            return requests.utils.quote(str(value), safe="")
        return _PLACEHOLDER.sub(replace, template)

    @staticmethod
    def render_template(template: Any, record: Dict[str, Any]) -> Any:
        """Rend un request_template : ``{{record}}`` insère l'enregistrement, ``{{champ}}`` une valeur"""
        if template is None:
            return record
        if isinstance(template, dict):
            return {key: SchoolSystemClient.render_template(value, record) for key, value in template.items()}
        if isinstance(template, list):
            return [SchoolSystemClient.render_template(value, record) for value in template]
        if isinstance(template, str):
            if template.strip() == _RECORD_TOKEN:
                return record
            whole = _FIELD_TOKEN.fullmatch(template.strip())
            if whole:
                value = get_path(record, whole.group(1))
                return None if value is MISSING else value

            def replace(match):
                value = get_path(record, match.group(1))
                return "" if value is MISSING or value is None else str(value)
            return _FIELD_TOKEN.sub(replace, template)
        return template

    # --- Exécution ---

    def request(self, method: str, path: str, params: Optional[Dict[str, Any]] = None,
                json: Any = None, headers: Optional[Dict[str, str]] = None,
                requires_auth: bool = True, _retry: bool = True) -> Any:
        url = self.build_url(path)
        request_headers = dict(headers or {})
        if requires_auth:
            request_headers.update(self._auth_headers())

        try:
            response = self.session.request(
                method.upper(),
                url,
                params=params,
                json=json,
                headers=request_headers,
                auth=self._auth() if requires_auth else None,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error(f"Erreur réseau vers {url}: {e}")
            raise ExternalConnectionError(f"Erreur de connexion vers {url}: {e}")

        if response.status_code == 401 and requires_auth and _retry and self.system.refresh_token:
            logger.info(f"Token expiré pour le système {self.system.id}, tentative de rafraîchissement")
            self.refresh_access_token()
            return self.request(method, path, params=params, json=json, headers=headers,
                                requires_auth=requires_auth, _retry=False)

        if not 200 <= response.status_code < 300:
            logger.error(f"Erreur API {method.upper()} {url}: {response.status_code}")
            raise ExternalConnectionError(
                f"Erreur HTTP {response.status_code} sur {method.upper()} {url}: {response.text[:200]}",
                status_code=response.status_code,
            )

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return {"raw": response.text}

    def refresh_access_token(self) -> str:
        """Échange le refresh token contre un nouveau token d'accès"""
        try:
            response = self.session.post(
                self.build_url(self.refresh_path),
                json={"refreshToken": self.system.refresh_token},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise ExternalConnectionError(f"Rafraîchissement du token impossible: {e}")

        if response.status_code != 200:
            raise ExternalConnectionError(
                f"Rafraîchissement du token refusé: {response.status_code}",
                status_code=response.status_code,
            )

        body = response.json() or {}
        token = body.get("token") or body.get("access_token")
        if not token:
            raise ExternalConnectionError("Réponse de rafraîchissement sans token")

        self.system.auth_token = token
        self.system.token_expires_at = utcnow() + TOKEN_LIFETIME
        if self.on_token_refreshed:
            self.on_token_refreshed(self.system)
        logger.info(f"Token rafraîchi pour le système {self.system.id}")
        return token

    def test_connection(self) -> Any:
        return self.request("GET", "/")

    def call_endpoint(self, endpoint, method: Optional[str] = None, record: Optional[Dict[str, Any]] = None,
                      url_values: Optional[Dict[str, Any]] = None,
                      params: Optional[Dict[str, Any]] = None, url_template: Optional[str] = None) -> Any:
        """Appelle un endpoint configuré : URL formatée, corps rendu depuis le template"""
        path = self.format_url(url_template or endpoint.url_template, url_values or {})
        http_method = (method or endpoint.method or "GET").upper()
        body = None
        if record is not None and http_method not in ("GET", "DELETE"):
            body = self.render_template(endpoint.request_template, record)
        return self.request(
            http_method,
            path,
            params=params,
            json=body,
            headers=endpoint.headers,
            requires_auth=endpoint.requires_auth if endpoint.requires_auth is not None else True,
        )

    @staticmethod
    def extract_id(response: Any, response_template: Optional[Dict[str, Any]] = None) -> Optional[str]:
        id_field = (response_template or {}).get("id_field", "id")
        if not isinstance(response, dict):
            return None
        value = get_path(response, id_field)
        if value is MISSING or value is None:
            return None
        return str(value)

    @staticmethod
    def extract_records(response: Any, response_template: Optional[Dict[str, Any]] = None) -> List[Any]:
        data_path = (response_template or {}).get("data_path")
        data = response
        if data_path:
            data = get_path(response, data_path) if isinstance(response, dict) else MISSING
            if data is MISSING:
                raise ExternalConnectionError(f"Chemin '{data_path}' absent de la réponse")
        if data is None:
            return []
        if isinstance(data, list):
            return data
        return [data]
