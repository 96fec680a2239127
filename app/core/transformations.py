import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from functools import wraps
from typing import Any, Callable, Dict, List, Optional

from app.core.exceptions import UnknownTransformationError
from app.models.enums import MappingDirection

# Registre global des transformations
TRANSFORMATIONS: Dict[str, Dict[str, Any]] = {}


def transformation(name: str, description: str, examples: Optional[List[str]] = None):
    """Décorateur pour enregistrer une fonction pure comme transformation de champ.

    La fonction reçoit (value, params, direction) et retourne la valeur traduite.
    Elle ne reçoit jamais None : les valeurs absentes sont gérées par l'appelant.
    """

    def decorator(func: Callable[[Any, Dict[str, Any], MappingDirection], Any]):
        TRANSFORMATIONS[name] = {
            "function": func,
            "description": description,
            "examples": examples or [],
        }

        @wraps(func)
        def wrapper(*args, **kwargs):
            return func(*args, **kwargs)

        return wrapper

    return decorator


def _digits(value: Any) -> str:
    return re.sub(r"\D", "", str(value))


@transformation("to_upper_case", "Met une chaîne en majuscules", ["ana -> ANA"])
def to_upper_case(value, params, direction):
    return value.upper() if isinstance(value, str) else value


@transformation("to_lower_case", "Met une chaîne en minuscules", ["ANA@X.COM -> ana@x.com"])
def to_lower_case(value, params, direction):
    return value.lower() if isinstance(value, str) else value


@transformation("strip", "Supprime les espaces en début et fin de chaîne")
def strip(value, params, direction):
    return value.strip() if isinstance(value, str) else value


@transformation(
    "format_date",
    "Convertit une date ISO vers params.format (export) et inversement (import)",
    ["2024-03-01 -> 01/03/2024"]
)
def format_date(value, params, direction):
    fmt = params.get("format", "%d/%m/%Y")
    if direction == MappingDirection.EXPORT:
        if isinstance(value, (date, datetime)):
            return value.strftime(fmt)
        return datetime.fromisoformat(str(value)).strftime(fmt)

    parsed = datetime.strptime(str(value), fmt)
    if params.get("keep_time"):
        return parsed.isoformat()
    return parsed.date().isoformat()


@transformation(
    "format_currency",
    "Formate un montant en devise (R$ 1.234,56) et le relit en nombre à l'import",
    ["1234.5 -> R$ 1.234,50"]
)
def format_currency(value, params, direction):
    symbol = params.get("symbol", "R$")
    if direction == MappingDirection.EXPORT:
        if isinstance(value, bool) or not isinstance(value, (int, float, Decimal)):
            return value
        formatted = f"{value:,.2f}".replace(",", "_").replace(".", ",").replace("_", ".")
        return f"{symbol} {formatted}"

    if isinstance(value, (int, float)):
        return float(value)
    cleaned = str(value).replace(symbol, "").strip()
    if "," in cleaned:
        # format brésilien : le point sépare les milliers, la virgule les décimales
        cleaned = cleaned.replace(".", "").replace(",", ".")
    try:
        return float(Decimal(cleaned))
    except InvalidOperation:
        raise ValueError(f"montant invalide: {value}")


@transformation("format_cpf", "Formate un CPF en 000.000.000-00 (export) ou en chiffres (import)")
def format_cpf(value, params, direction):
    cleaned = _digits(value)
    if direction == MappingDirection.IMPORT:
        return cleaned
    if len(cleaned) == 11:
        return f"{cleaned[:3]}.{cleaned[3:6]}.{cleaned[6:9]}-{cleaned[9:]}"
    return value


@transformation("format_phone", "Formate un téléphone en (00) 00000-0000 (export) ou en chiffres (import)")
def format_phone(value, params, direction):
    cleaned = _digits(value)
    if direction == MappingDirection.IMPORT:
        return cleaned
    if len(cleaned) == 11:
        return f"({cleaned[:2]}) {cleaned[2:7]}-{cleaned[7:]}"
    if len(cleaned) == 10:
        return f"({cleaned[:2]}) {cleaned[2:6]}-{cleaned[6:]}"
    return value


@transformation("digits_only", "Ne conserve que les chiffres")
def digits_only(value, params, direction):
    return _digits(value)


@transformation(
    "map_enum",
    "Traduit une valeur d'énumération via params.values (interne -> externe), inversé à l'import",
    ['{"values": {"active": "A", "inactive": "I"}}']
)
def map_enum(value, params, direction):
    values = params.get("values") or {}
    if direction == MappingDirection.IMPORT:
        values = {external: internal for internal, external in values.items()}
    key = value if isinstance(value, str) else str(value)
    if key in values:
        return values[key]
    if "default" in params:
        return params["default"]
    raise ValueError(f"valeur non traduisible: {value}")


@transformation("to_string", "Convertit la valeur en chaîne")
def to_string(value, params, direction):
    return str(value)


@transformation("to_int", "Convertit la valeur en entier")
def to_int(value, params, direction):
    if isinstance(value, bool):
        raise ValueError(f"entier invalide: {value}")
    return int(str(value).strip()) if not isinstance(value, (int, float)) else int(value)


class TransformationRegistry:
    """Accès en lecture au registre fermé des transformations"""

    def __init__(self, transformations: Optional[Dict[str, Dict[str, Any]]] = None):
        self.transformations = transformations if transformations is not None else TRANSFORMATIONS

    def names(self) -> List[str]:
        return sorted(self.transformations.keys())

    def describe(self) -> List[Dict[str, Any]]:
        return [
            {"name": name, "description": info["description"], "examples": info["examples"]}
            for name, info in sorted(self.transformations.items())
        ]

    def exists(self, name: str) -> bool:
        return name in self.transformations

    def validate(self, name: Optional[str]) -> None:
        """Rejette un nom inconnu au moment de la création du mapping"""
        if name and not self.exists(name):
            raise UnknownTransformationError(name)

    def apply(self, name: str, value: Any, params: Optional[Dict[str, Any]],
              direction: MappingDirection) -> Any:
        if not self.exists(name):
            raise UnknownTransformationError(name)
        func = self.transformations[name]["function"]
        return func(value, params or {}, MappingDirection(direction))


transformation_registry = TransformationRegistry()
