"""
Server-side validation of player form values against a job's form metadata.

Form values are merged per player across all of that player's selections
(case-insensitive keys, last write wins) and then checked field by field.
"""

from dataclasses import dataclass, field as dc_field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence, Set

from leaguereg.models.schemas import PreSubmitValidationError, TeamSelection
from leaguereg.services.field_mapper import is_client_visible, iter_metadata_fields

REQUIRED_ERROR_MESSAGE = "Required"
_CHECKBOX_ACCEPTED = frozenset({"true", "yes", "1", "y", "on", "checked"})
_MISSING = object()


@dataclass
class FieldSchema:
    name: str
    required: bool
    type: str
    condition_field: Optional[str] = None
    condition_value: Any = _MISSING
    options: Set[str] = dc_field(default_factory=set)


def _is_required(field: Mapping[str, Any]) -> bool:
    if field.get("required") is True:
        return True
    validation = field.get("validation")
    if isinstance(validation, dict):
        return validation.get("required") is True or validation.get("requiredTrue") is True
    return False


def build_schemas(metadata_json: Optional[str]) -> List[FieldSchema]:
    """Validation schema for every client-visible metadata field."""
    schemas = []
    for field in iter_metadata_fields(metadata_json):
        name = field.get("name")
        if not isinstance(name, str) or not name.strip():
            continue
        if not is_client_visible(field):
            continue

        schema = FieldSchema(
            name=name,
            required=_is_required(field),
            type=str(field.get("type") or "text").lower(),
        )
        condition = field.get("condition")
        if isinstance(condition, dict) and isinstance(condition.get("field"), str) and "value" in condition:
            schema.condition_field = condition["field"]
            schema.condition_value = condition["value"]
        options = field.get("options")
        if isinstance(options, list):
            schema.options = {o.lower() for o in options if isinstance(o, str)}
        schemas.append(schema)
    return schemas


def _raw_str(value: Any) -> str:
    if value is None or value is _MISSING:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _is_present(value: Any) -> bool:
    return value is not _MISSING and value is not None and _raw_str(value).strip() != ""


def _condition_satisfied(schema: FieldSchema, values: Mapping[str, Any]) -> bool:
    if schema.condition_field is None:
        return True
    other = values.get(schema.condition_field.lower(), _MISSING)
    if other is _MISSING:
        return False
    return type(other) is type(schema.condition_value) and _raw_str(other) == _raw_str(schema.condition_value)


def _is_number(raw: str) -> bool:
    try:
        float(raw)
        return True
    except ValueError:
        return False


def _is_date(raw: str) -> bool:
    raw = raw.strip()
    try:
        datetime.fromisoformat(raw.replace("Z", "+00:00"))
        return True
    except ValueError:
        pass
    try:
        datetime.strptime(raw, "%m/%d/%Y")
        return True
    except ValueError:
        return False


def _check_field(schema: FieldSchema, value: Any) -> Optional[str]:
    """Error message for one field value, or None when it passes."""
    present = _is_present(value)
    raw = _raw_str(value).strip()

    if schema.type == "checkbox":
        if schema.required and raw.lower() not in _CHECKBOX_ACCEPTED:
            return REQUIRED_ERROR_MESSAGE
        return None

    if schema.type in ("text", "textarea"):
        return REQUIRED_ERROR_MESSAGE if schema.required and not raw else None

    if not present:
        return REQUIRED_ERROR_MESSAGE if schema.required else None

    if schema.type == "number" and not _is_number(raw):
        return "Must be a number"
    if schema.type == "date" and not _is_date(raw):
        return "Invalid date"
    if schema.type == "select" and schema.options and raw.lower() not in schema.options:
        return "Invalid option"
    if schema.type == "multiselect" and schema.options and isinstance(value, list):
        if any(_raw_str(item).lower() not in schema.options for item in value):
            return "Invalid option"
    return None


def merge_form_values(selections: Sequence[TeamSelection]) -> Dict[str, Dict[str, Any]]:
    """Per-player form values, keys lowercased, later selections overwrite earlier ones."""
    merged: Dict[str, Dict[str, Any]] = {}
    for selection in selections:
        values = merged.setdefault(selection.player_id, {})
        for key, value in (selection.form_values or {}).items():
            values[key.lower()] = value
    return merged


def validate_player_form_values(
    metadata_json: Optional[str], selections: Sequence[TeamSelection]
) -> List[PreSubmitValidationError]:
    """
    Validate submitted form values for every player in a batch.

    Args:
        metadata_json: Job.player_profile_metadata_json
        selections: The submitted team selections

    Returns:
        Validation errors; empty when everything passes or there is no schema
    """
    if not selections:
        return []
    schemas = build_schemas(metadata_json)
    if not schemas:
        return []

    errors = []
    for player_id, values in merge_form_values(selections).items():
        for schema in schemas:
            if not _condition_satisfied(schema, values):
                continue
            message = _check_field(schema, values.get(schema.name.lower(), _MISSING))
            if message:
                errors.append(
                    PreSubmitValidationError(player_id=player_id, field=schema.name, message=message)
                )
    return errors
