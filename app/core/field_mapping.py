"""Traduction d'un enregistrement entre représentation interne et externe.

``apply_mapping`` est une fonction pure : le résultat ne dépend que de
(record, mappings, direction) et l'enregistrement source n'est jamais modifié.
"""
import copy
import re
from typing import Any, Dict, Iterable, Optional, Tuple

from app.core.exceptions import MappingError, UnknownTransformationError
from app.core.transformations import transformation_registry
from app.models.enums import MappingDirection

MISSING = object()


def _attr(mapping: Any, name: str, default: Any = None) -> Any:
    if isinstance(mapping, dict):
        return mapping.get(name, default)
    return getattr(mapping, name, default)


def get_path(record: Dict[str, Any], path: str) -> Any:
    """Lit un champ, éventuellement imbriqué (student.name)"""
    if path in record:
        return record[path]
    current: Any = record
    for part in path.split("."):
        if not isinstance(current, dict) or part not in current:
            return MISSING
        current = current[part]
    return current


def set_path(record: Dict[str, Any], path: str, value: Any) -> None:
    parts = path.split(".")
    current = record
    for part in parts[:-1]:
        current = current.setdefault(part, {})
    current[parts[-1]] = value


def _fields(mapping: Any, direction: MappingDirection) -> Tuple[str, str]:
    internal = _attr(mapping, "internal_field")
    external = _attr(mapping, "external_field")
    if direction == MappingDirection.EXPORT:
        return internal, external
    return external, internal


def _check_rules(field: str, value: Any, rules: Optional[Dict[str, Any]]) -> None:
    if not rules:
        return
    if isinstance(value, str):
        if "min_length" in rules and len(value) < rules["min_length"]:
            raise MappingError(field, f"longueur minimale {rules['min_length']}")
        if "max_length" in rules and len(value) > rules["max_length"]:
            raise MappingError(field, f"longueur maximale {rules['max_length']}")
        if "pattern" in rules and not re.fullmatch(rules["pattern"], value):
            raise MappingError(field, f"ne respecte pas le format {rules['pattern']}")
    if "choices" in rules and value not in rules["choices"]:
        raise MappingError(field, f"valeur hors des choix autorisés: {value}")


def apply_mapping(record: Dict[str, Any], mappings: Iterable[Any], direction) -> Dict[str, Any]:
    """Traduit ``record`` selon ``mappings`` dans la direction donnée.

    Un champ requis absent (ou None) rejette tout l'enregistrement avec une
    MappingError qui nomme le champ source ; aucune sortie partielle.
    """
    direction = MappingDirection(direction)
    if not isinstance(record, dict):
        raise MappingError("<record>", "l'enregistrement doit être un objet JSON")

    result: Dict[str, Any] = {}
    for mapping in mappings:
        source, destination = _fields(mapping, direction)
        value = get_path(record, source)

        if value is MISSING or value is None:
            if _attr(mapping, "is_required", False):
                raise MappingError(source)
            continue

        value = copy.deepcopy(value)
        name = _attr(mapping, "transformation")
        if name:
            try:
                value = transformation_registry.apply(name, value, _attr(mapping, "transformation_params"), direction)
            except UnknownTransformationError as e:
                raise MappingError(source, e.message)
            except (ValueError, TypeError) as e:
                raise MappingError(source, f"transformation '{name}' impossible: {e}")

        _check_rules(source, value, _attr(mapping, "validation_rules"))
        set_path(result, destination, value)

    return result


def primary_key_field(mappings: Iterable[Any], direction) -> Optional[str]:
    """Champ (côté source) marqué comme clé primaire, s'il existe"""
    direction = MappingDirection(direction)
    for mapping in mappings:
        if _attr(mapping, "is_primary_key", False):
            return _fields(mapping, direction)[0]
    return None
