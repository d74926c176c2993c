"""
Custom field handling shared by the tools.

- extend_schema_with_custom_fields: adds one optional argument per configured field to a pydantic model.
- extend_filters_with_custom_fields: turns argument values into Planfix list filters.
- extend_post_body_with_custom_fields: turns argument values into customFieldData entries,
  skipping values the record already holds unless force_update is set.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Literal, Mapping, MutableMapping, Optional, Tuple, Type, Union

from pydantic import BaseModel, Field, create_model

from custom_fields_config import CustomField

logger = logging.getLogger("planfix-mcp.custom-fields")

PlanfixFilter = Dict[str, Any]
RemoteRecord = Mapping[str, Any]

# Planfix filter type for "custom field equals" per target entity
CUSTOM_FIELD_FILTER_TYPES = {"task": 102, "contact": 4101, "user": 9111}
FILTERABLE_FIELD_TYPES = ("string", "number", "boolean", "enum")

FILTER_TYPE_CODES = {
    (target, field_type): code
    for target, code in CUSTOM_FIELD_FILTER_TYPES.items()
    for field_type in FILTERABLE_FIELD_TYPES
}

_MISSING = object()


def is_absent(value: Any) -> bool:
    """None, "" and [] mean "not provided"; 0 and False are real values."""
    if value is None:
        return True
    if isinstance(value, str):
        return value == ""
    if isinstance(value, (list, tuple)):
        return len(value) == 0
    return False


# ---------------------------------------------------------------------------
# Schema extension
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FieldKind:
    kind: str  # "string" | "number" | "enum"
    values: Tuple[str, ...] = ()

    def annotation(self) -> Any:
        if self.kind == "number":
            return Optional[Union[int, float]]
        if self.kind == "enum":
            return Optional[Literal[self.values]]
        return Optional[str]


STRING_KIND = FieldKind("string")
NUMBER_KIND = FieldKind("number")


def field_kind(field: CustomField) -> FieldKind:
    if field.type == "number":
        return NUMBER_KIND
    if field.type == "enum" and field.values:
        return FieldKind("enum", tuple(field.values))
    return STRING_KIND


def field_kinds(fields: Iterable[CustomField]) -> Dict[str, FieldKind]:
    """argName -> FieldKind for every field that has an argName (later duplicates win)."""
    return {f.arg_name: field_kind(f) for f in fields if f.arg_name}


def _argument_names(model: Type[BaseModel]) -> set:
    names = set()
    for name, info in model.model_fields.items():
        names.add(name)
        if info.alias:
            names.add(info.alias)
    return names


def extend_schema_with_custom_fields(
    base: Type[BaseModel],
    fields: Iterable[CustomField],
    model_name: Optional[str] = None,
) -> Type[BaseModel]:
    """
    Return a subclass of `base` with one optional property per custom field (keyed by argName).
    `base` itself is left untouched; argNames that clash with a base property are skipped.
    """
    fields = list(fields)
    ids = {f.arg_name: f.id for f in fields if f.arg_name}
    taken = _argument_names(base)
    definitions: Dict[str, Any] = {}
    for arg_name, kind in field_kinds(fields).items():
        attribute = f"custom_field_{ids[arg_name]}"
        if arg_name in taken or attribute in base.model_fields:
            logger.warning("Custom field argName %r clashes with an argument of %s, skipped", arg_name, base.__name__)
            continue
        definitions[attribute] = (kind.annotation(), Field(default=None, alias=arg_name))
    return create_model(model_name or base.__name__, __base__=base, **definitions)


# ---------------------------------------------------------------------------
# Filters
# ---------------------------------------------------------------------------

def extend_filters_with_custom_fields(
    filters: List[PlanfixFilter],
    args: Mapping[str, Any],
    fields: Iterable[CustomField],
    target: str,
) -> None:
    """Append an "equal" filter for every custom field with a value in args."""
    for field in fields:
        if not field.arg_name:
            continue
        type_code = FILTER_TYPE_CODES.get((target, field.type))
        if type_code is None:
            logger.warning("Unsupported custom field type for %s filter: field %s, type %r", target, field.id, field.type)
            continue
        value = args.get(field.arg_name)
        if is_absent(value):
            continue
        filters.append({
            "type": type_code,
            "field": int(field.id),
            "operator": "equal",
            "value": value,
        })


# ---------------------------------------------------------------------------
# Post bodies
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DirectoryRef:
    """Reference to a directory entry (or any Planfix object) by id."""
    id: int

    def to_dict(self) -> Dict[str, int]:
        return {"id": self.id}


FieldValue = Union[str, int, float, bool, DirectoryRef, List[Any]]


def _serialize(value: Any) -> Any:
    if isinstance(value, DirectoryRef):
        return value.to_dict()
    if isinstance(value, (list, tuple)):
        return [_serialize(v) for v in value]
    return value


@dataclass(frozen=True)
class CustomFieldDataEntry:
    field_id: int
    value: FieldValue

    def to_dict(self) -> Dict[str, Any]:
        return {"field": {"id": self.field_id}, "value": _serialize(self.value)}


def find_custom_field_value(record: Optional[RemoteRecord], field_id: int) -> Any:
    """Current value of a custom field in a fetched task/contact, or _MISSING."""
    if not record:
        return _MISSING
    for entry in record.get("customFieldData") or []:
        if not isinstance(entry, Mapping):
            continue
        field = entry.get("field") or {}
        if field.get("id") == field_id:
            return entry.get("value")
    return _MISSING


def read_custom_field_values(record: Optional[RemoteRecord], fields: Iterable[CustomField]) -> Dict[str, Any]:
    """argName -> value for configured fields present in the record."""
    result = {}
    for field in fields:
        if not field.arg_name:
            continue
        value = find_custom_field_value(record, int(field.id))
        if value is not _MISSING and value is not None:
            result[field.arg_name] = value
    return result


def _normalize(value: Any) -> Any:
    if isinstance(value, DirectoryRef):
        return value.id
    if isinstance(value, Mapping):
        if "id" in value:
            return value["id"]
        return json.dumps(value, sort_keys=True, default=str)
    if isinstance(value, (list, tuple)):
        return json.dumps([_normalize(v) for v in value], default=str)
    return value


def _as_set(value: Any) -> frozenset:
    items = value if isinstance(value, (list, tuple, set, frozenset)) else [value]
    return frozenset(_normalize(v) for v in items if not is_absent(v))


def values_equal(field: CustomField, candidate: Any, current: Any) -> bool:
    """Enum and list values compare as sets (order and duplicates ignored), scalars directly."""
    if current is _MISSING:
        return False
    if field.type == "enum" or isinstance(candidate, (list, tuple)) or isinstance(current, (list, tuple)):
        return _as_set(candidate) == _as_set(current)
    return _normalize(candidate) == _normalize(current)


def resolve_candidate(args: Mapping[str, Any], field: CustomField) -> Any:
    """Argument value if given, else the field default, else None."""
    value = args.get(field.arg_name)
    if not is_absent(value):
        return value
    return None if is_absent(field.default) else field.default


def build_custom_field_entries(
    args: Mapping[str, Any],
    fields: Iterable[CustomField],
    current_record: Optional[RemoteRecord] = None,
    force_update: bool = False,
) -> List[CustomFieldDataEntry]:
    """
    Entries to send for the given fields. Without current_record every resolved value is sent
    (create). With it, values equal to what the record holds are skipped unless force_update.
    """
    entries = []
    for field in fields:
        if not field.arg_name:
            continue
        candidate = resolve_candidate(args, field)
        if candidate is None:
            continue
        if current_record is not None and not force_update:
            current = find_custom_field_value(current_record, int(field.id))
            if values_equal(field, candidate, current):
                logger.debug("Custom field %s unchanged, skipped", field.id)
                continue
        entries.append(CustomFieldDataEntry(int(field.id), candidate))
    return entries


def extend_post_body_with_custom_fields(
    body: MutableMapping[str, Any],
    args: Mapping[str, Any],
    fields: Iterable[CustomField],
    current_record: Optional[RemoteRecord] = None,
    force_update: bool = False,
) -> None:
    """Append customFieldData entries to body in place; existing entries are kept."""
    fields = list(fields)
    if not fields:
        return
    entries = build_custom_field_entries(args, fields, current_record, force_update)
    if not entries:
        return
    body["customFieldData"] = list(body.get("customFieldData") or []) + [e.to_dict() for e in entries]
