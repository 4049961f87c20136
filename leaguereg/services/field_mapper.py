"""
Maps client-submitted registration form fields onto Registration columns.

Two gates apply to every submitted field:

1. the job's form metadata maps the field name to a column (``dbColumn``,
   defaulting to the field name). Hidden and admin-only fields are never
   writable, whether posted under their field name or their column name;
2. the column must be in WRITABLE_FIELDS, a registry built once from the
   Registration columns. Identifiers, audit columns, money columns and
   back-office flags never make it into the registry.

Anything that fails either gate, or whose value cannot be converted, is
dropped silently.
"""

import json
import logging
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, FrozenSet, List, Mapping, Optional, Set

from leaguereg.database.models import Registration

logger = logging.getLogger(__name__)

_EXCLUDED_PREFIXES = ("b_uploaded_", "adn_", "regsaver_")
_ID_SUFFIX_ALLOWED = frozenset({"sport_assn_id"})
_TRUE_TOKENS = frozenset({"true", "yes", "1", "y", "on", "checked"})
_FALSE_TOKENS = frozenset({"false", "no", "0", "n", "off", ""})


class _Unconvertible(Exception):
    pass


def normalize_field_name(name: str) -> str:
    """Case- and underscore-insensitive key: "JerseySize" and "jersey_size" collide."""
    return name.replace("_", "").replace("-", "").strip().lower()


# --- value converters ---


def _to_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (list, dict)):
        return json.dumps(value)
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _to_int(value: Any) -> int:
    if isinstance(value, bool):
        raise _Unconvertible()
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            raise _Unconvertible()
    raise _Unconvertible()


def _to_float(value: Any) -> float:
    if isinstance(value, bool):
        raise _Unconvertible()
    try:
        return float(value)
    except (TypeError, ValueError):
        raise _Unconvertible()


def _to_decimal(value: Any) -> Decimal:
    if isinstance(value, bool) or value is None:
        raise _Unconvertible()
    try:
        return Decimal(str(value).strip())
    except InvalidOperation:
        raise _Unconvertible()


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        token = value.strip().lower()
        if token in _TRUE_TOKENS:
            return True
        if token in _FALSE_TOKENS:
            return False
    raise _Unconvertible()


def _to_datetime(value: Any) -> datetime:
    if not isinstance(value, str) or not value.strip():
        raise _Unconvertible()
    try:
        return datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        pass
    try:
        return datetime.strptime(value.strip(), "%m/%d/%Y")
    except ValueError:
        raise _Unconvertible()


def _to_date(value: Any) -> date:
    return _to_datetime(value).date()


_CONVERTERS: Dict[type, Callable[[Any], Any]] = {
    str: _to_str,
    int: _to_int,
    float: _to_float,
    Decimal: _to_decimal,
    bool: _to_bool,
    datetime: _to_datetime,
    date: _to_date,
}


@dataclass(frozen=True)
class WritableField:
    """A Registration attribute that form values may set."""

    attribute: str
    python_type: type
    nullable: bool

    def convert(self, value: Any) -> Any:
        if value is None:
            if self.nullable:
                return None
            raise _Unconvertible()
        return _CONVERTERS[self.python_type](value)


def is_form_writable(column) -> bool:
    """Allowlist rule for one Registration column."""
    name = column.key
    if column.info.get("form_writable") is False:
        return False
    if column.primary_key or column.foreign_keys:
        return False
    if name.endswith("_id") and name not in _ID_SUFFIX_ALLOWED:
        return False
    if name.startswith(_EXCLUDED_PREFIXES):
        return False
    try:
        python_type = column.type.python_type
    except NotImplementedError:
        return False
    return python_type in _CONVERTERS


def build_writable_fields() -> Dict[str, WritableField]:
    """Registry of form-writable Registration columns keyed by normalized name."""
    registry: Dict[str, WritableField] = {}
    for column in Registration.__table__.columns:
        if not is_form_writable(column):
            continue
        registry[normalize_field_name(column.key)] = WritableField(
            attribute=column.key,
            python_type=column.type.python_type,
            nullable=bool(column.nullable),
        )
    return registry


WRITABLE_FIELDS: Dict[str, WritableField] = build_writable_fields()


def _is_excluded_by_visibility(field: Mapping[str, Any]) -> bool:
    visibility = field.get("visibility")
    return isinstance(visibility, str) and visibility.lower() in ("hidden", "adminonly")


def _is_admin_only(field: Mapping[str, Any]) -> bool:
    for key, value in field.items():
        if key.lower() != "adminonly":
            continue
        if value is True:
            return True
        return isinstance(value, str) and value.strip().lower() == "true"
    return False


def iter_metadata_fields(metadata_json: Optional[str]) -> List[Mapping[str, Any]]:
    """The ``fields`` array of a job's form metadata; empty when absent or malformed."""
    if not metadata_json or not metadata_json.strip():
        return []
    try:
        metadata = json.loads(metadata_json)
    except (ValueError, TypeError):
        logger.debug("Ignoring malformed player profile metadata")
        return []
    if not isinstance(metadata, dict):
        return []
    fields = metadata.get("fields")
    if not isinstance(fields, list):
        return []
    return [f for f in fields if isinstance(f, dict)]


def is_client_visible(field: Mapping[str, Any]) -> bool:
    """False for hidden and admin-only metadata fields."""
    return not _is_excluded_by_visibility(field) and not _is_admin_only(field)


class FieldNameMap(dict):
    """
    Normalized field name -> dbColumn for client-visible fields.

    ``restricted`` holds the normalized names and columns of hidden and
    admin-only fields; those never resolve, not even by their raw name.
    """

    def __init__(self, *args, restricted: FrozenSet[str] = frozenset(), **kwargs):
        super().__init__(*args, **kwargs)
        self.restricted = restricted


def build_field_name_map(metadata_json: Optional[str]) -> FieldNameMap:
    """
    Map form field names to column names from job metadata.

    Args:
        metadata_json: Job.player_profile_metadata_json

    Returns:
        FieldNameMap of normalized field name -> dbColumn (or the field name itself)
    """
    name_map: Dict[str, str] = {}
    restricted: Set[str] = set()
    for field in iter_metadata_fields(metadata_json):
        name = field.get("name")
        if not isinstance(name, str) or not name.strip():
            continue
        db_column = field.get("dbColumn")
        if not isinstance(db_column, str) or not db_column.strip():
            db_column = name
        if not is_client_visible(field):
            restricted.update((normalize_field_name(name), normalize_field_name(db_column)))
            continue
        name_map[normalize_field_name(name)] = db_column

    # A visible field sharing a name or column with a restricted one stays writable
    visible = set(name_map) | {normalize_field_name(c) for c in name_map.values()}
    return FieldNameMap(name_map, restricted=frozenset(restricted - visible))


def resolve_target(incoming: str, name_map: Mapping[str, str]) -> Optional[WritableField]:
    """Metadata mapping first, then the raw field name, both checked against the registry."""
    key = normalize_field_name(incoming)
    mapped = name_map.get(key)
    if mapped is not None:
        target = WRITABLE_FIELDS.get(normalize_field_name(mapped))
        if target is not None:
            return target
    restricted = getattr(name_map, "restricted", frozenset())
    if key in restricted:
        return None
    target = WRITABLE_FIELDS.get(key)
    if target is not None and normalize_field_name(target.attribute) in restricted:
        return None
    return target


def apply_form_values(
    registration: Registration,
    form_values: Optional[Mapping[str, Any]],
    name_map: Mapping[str, str],
) -> List[str]:
    """
    Copy allowed form values onto a registration.

    Args:
        registration: Registration to update in place
        form_values: Raw submitted values keyed by client field name
        name_map: Output of build_field_name_map for the job

    Returns:
        Attribute names that were written
    """
    if not form_values:
        return []

    applied = []
    for incoming, raw in form_values.items():
        target = resolve_target(incoming, name_map)
        if target is None:
            continue
        try:
            value = target.convert(raw)
        except _Unconvertible:
            continue
        setattr(registration, target.attribute, value)
        applied.append(target.attribute)
    return applied
