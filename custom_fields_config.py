"""
Custom field configuration loader.

Field definitions come from two places:
- YAML lists in environment variables (one per collection), e.g.
  PLANFIX_LEAD_TASK_FIELDS="- id: 1\n  argName: budget\n  type: number"
- a YAML file (--config=<path> > PLANFIX_CONFIG > ./data/config.yml) with
  top-level keys leadTaskFields, contactFields, userFields.

Both sources are merged per collection by field id: file properties override
env properties of the same field, fields present in only one source are kept.
Broken or missing sources count as empty; loading never raises.
"""

import os
import sys
import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

logger = logging.getLogger("planfix-mcp.config")

DEFAULT_CONFIG_PATH = "./data/config.yml"
CONFIG_PATH_ENV = "PLANFIX_CONFIG"
CONFIG_PATH_ARG = "--config="

# collection key in the YAML file -> environment variable with the same list
COLLECTIONS = {
    "leadTaskFields": "PLANFIX_LEAD_TASK_FIELDS",
    "contactFields": "PLANFIX_CONTACT_FIELDS",
    "userFields": "PLANFIX_USER_FIELDS",
}

FIELD_TYPES = ("string", "number", "boolean", "enum")


class CustomField(BaseModel):
    """One configured Planfix custom field, addressed in tool arguments by arg_name."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    id: int
    arg_name: str = Field(default="", alias="argName")
    name: Optional[str] = None
    type: Optional[str] = None
    values: Tuple[str, ...] = ()
    default: Optional[Any] = None

    @field_validator("arg_name", mode="before")
    @classmethod
    def _arg_name_to_str(cls, value: Any) -> str:
        return "" if value is None else str(value).strip()

    @field_validator("type", mode="before")
    @classmethod
    def _type_to_str(cls, value: Any) -> Optional[str]:
        return None if value is None else str(value).strip()

    @field_validator("values", mode="before")
    @classmethod
    def _values_to_strings(cls, value: Any) -> Tuple[str, ...]:
        if value is None:
            return ()
        if isinstance(value, (list, tuple)):
            return tuple(str(v) for v in value if v is not None)
        return (str(value),)


class CustomFieldsConfig(BaseModel):
    """Merged field collections. Built once at startup and passed to the tools."""

    model_config = ConfigDict(frozen=True)

    lead_task_fields: Tuple[CustomField, ...] = ()
    contact_fields: Tuple[CustomField, ...] = ()
    user_fields: Tuple[CustomField, ...] = ()
    config_path: Optional[str] = None


def get_config_path(
    argv: Optional[Sequence[str]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> str:
    """Resolve the YAML config path: --config=<path> > PLANFIX_CONFIG > default."""
    argv = sys.argv if argv is None else argv
    environ = os.environ if environ is None else environ
    for arg in argv:
        if arg.startswith(CONFIG_PATH_ARG):
            return arg[len(CONFIG_PATH_ARG):]
    return environ.get(CONFIG_PATH_ENV) or DEFAULT_CONFIG_PATH


def parse_env_fields(name: str, environ: Optional[Mapping[str, str]] = None) -> List[Dict[str, Any]]:
    """Parse a YAML list of field definitions from an environment variable. [] on absence or error."""
    environ = os.environ if environ is None else environ
    raw = environ.get(name)
    if not raw:
        return []
    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        logger.warning("Ignoring %s: invalid YAML (%s)", name, e)
        return []
    return [f for f in data if isinstance(f, dict)] if isinstance(data, list) else []


def read_config_file(path: str) -> Dict[str, Any]:
    """Read the YAML config file. {} when the file is missing or malformed."""
    if not os.path.isfile(path):
        return {}
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        logger.warning("Ignoring config file %s: %s", path, e)
        return {}
    return data if isinstance(data, dict) else {}


def _field_id(raw: Mapping[str, Any]) -> Optional[int]:
    value = raw.get("id")
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def merge_fields(
    env_fields: Sequence[Mapping[str, Any]],
    file_fields: Sequence[Mapping[str, Any]],
) -> List[CustomField]:
    """
    Union of both lists keyed by numeric id; for the same id, file properties
    replace env properties one by one (shallow), unspecified ones survive.
    """
    merged: Dict[int, Dict[str, Any]] = {}
    for source in (env_fields, file_fields):
        for raw in source:
            if not isinstance(raw, Mapping):
                continue
            field_id = _field_id(raw)
            if field_id is None:
                logger.warning("Skipping custom field without numeric id: %r", dict(raw))
                continue
            merged[field_id] = {**merged.get(field_id, {}), **raw, "id": field_id}

    result = []
    for field_id, raw in merged.items():
        try:
            result.append(CustomField.model_validate(raw))
        except ValidationError as e:
            logger.warning("Skipping custom field %s: %s", field_id, e)
    return result


def load_custom_fields_config(
    argv: Optional[Sequence[str]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> CustomFieldsConfig:
    path = get_config_path(argv, environ)
    file_data = read_config_file(path)

    collections = {}
    for key, env_name in COLLECTIONS.items():
        env_fields = parse_env_fields(env_name, environ)
        file_fields = file_data.get(key)
        if not isinstance(file_fields, list):
            file_fields = []
        collections[key] = tuple(merge_fields(env_fields, file_fields))

    config = CustomFieldsConfig(
        lead_task_fields=collections["leadTaskFields"],
        contact_fields=collections["contactFields"],
        user_fields=collections["userFields"],
        config_path=path,
    )
    logger.info(
        "Custom fields loaded from %s: %d lead task, %d contact, %d user",
        path,
        len(config.lead_task_fields),
        len(config.contact_fields),
        len(config.user_fields),
    )
    return config
