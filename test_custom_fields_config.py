"""
Tests for custom field configuration loading (env YAML + config file merge).

Run: pytest test_custom_fields_config.py -v
"""

import logging

from custom_fields_config import (
    CustomField,
    get_config_path,
    load_custom_fields_config,
    merge_fields,
    parse_env_fields,
    read_config_file,
)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

ENV_LEAD_TASK_FIELDS = """
- id: 1
  argName: budget
  type: number
  name: Budget
- id: 2
  argName: city
"""

CONFIG_FILE = """
leadTaskFields:
  - id: 1
    argName: budgetUsd
  - id: 3
    argName: segment
    type: enum
    values: [small, large]
contactFields:
  - id: 10
    argName: source
    default: site
"""


def _by_id(fields):
    return {f.id: f for f in fields}


# ---------------------------------------------------------------------------
# Config path
# ---------------------------------------------------------------------------

def test_config_path_cli_argument_wins():
    path = get_config_path(["main.py", "--config=/etc/planfix.yml"], {"PLANFIX_CONFIG": "/tmp/other.yml"})
    assert path == "/etc/planfix.yml"


def test_config_path_from_env():
    assert get_config_path(["main.py"], {"PLANFIX_CONFIG": "/tmp/other.yml"}) == "/tmp/other.yml"


def test_config_path_default():
    assert get_config_path([], {}) == "./data/config.yml"


# ---------------------------------------------------------------------------
# Sources
# ---------------------------------------------------------------------------

def test_parse_env_fields():
    fields = parse_env_fields("PLANFIX_LEAD_TASK_FIELDS", {"PLANFIX_LEAD_TASK_FIELDS": ENV_LEAD_TASK_FIELDS})
    assert [f["id"] for f in fields] == [1, 2]
    assert fields[0]["argName"] == "budget"


def test_parse_env_fields_absent_or_broken():
    assert parse_env_fields("PLANFIX_LEAD_TASK_FIELDS", {}) == []
    assert parse_env_fields("X", {"X": "- id: [unclosed"}) == []
    assert parse_env_fields("X", {"X": "just a string"}) == []


def test_read_config_file_missing(tmp_path):
    assert read_config_file(str(tmp_path / "nope.yml")) == {}


def test_read_config_file_malformed(tmp_path):
    path = tmp_path / "config.yml"
    path.write_text("leadTaskFields: [\n  - id: 1", encoding="utf-8")
    assert read_config_file(str(path)) == {}


# ---------------------------------------------------------------------------
# Merge
# ---------------------------------------------------------------------------

def test_merge_file_overrides_env_per_property():
    merged = _by_id(merge_fields(
        [{"id": 1, "argName": "budget", "type": "number", "name": "Budget"}],
        [{"id": 1, "argName": "budgetUsd"}],
    ))
    assert merged[1].arg_name == "budgetUsd"
    # properties only set in env survive
    assert merged[1].type == "number"
    assert merged[1].name == "Budget"


def test_merge_keeps_fields_from_both_sources():
    merged = _by_id(merge_fields([{"id": 1, "argName": "a"}], [{"id": "2", "argName": "b"}]))
    assert set(merged) == {1, 2}


def test_merge_file_values_replace_env_values():
    merged = _by_id(merge_fields(
        [{"id": 4, "argName": "tier", "type": "enum", "values": ["a", "b"]}],
        [{"id": 4, "values": ["a"]}],
    ))
    assert merged[4].values == ("a",)
    assert merged[4].type == "enum"


def test_merge_skips_fields_without_id(caplog):
    with caplog.at_level(logging.WARNING, logger="planfix-mcp.config"):
        merged = merge_fields([{"argName": "noId"}, {"id": "abc", "argName": "bad"}], [])
    assert merged == []
    assert "without numeric id" in caplog.text


def test_custom_field_coercion():
    field = CustomField.model_validate({"id": "7", "argName": " tag ", "type": "enum", "values": ["a", 2, None]})
    assert field.id == 7
    assert field.arg_name == "tag"
    assert field.values == ("a", "2")


# ---------------------------------------------------------------------------
# Full load
# ---------------------------------------------------------------------------

def test_load_custom_fields_config(tmp_path):
    path = tmp_path / "config.yml"
    path.write_text(CONFIG_FILE, encoding="utf-8")
    environ = {
        "PLANFIX_LEAD_TASK_FIELDS": ENV_LEAD_TASK_FIELDS,
        "PLANFIX_USER_FIELDS": "- id: 20\n  argName: department",
    }

    config = load_custom_fields_config([f"--config={path}"], environ)

    lead = _by_id(config.lead_task_fields)
    assert set(lead) == {1, 2, 3}
    assert lead[1].arg_name == "budgetUsd"
    assert lead[1].type == "number"
    assert lead[3].values == ("small", "large")
    assert _by_id(config.contact_fields)[10].default == "site"
    assert _by_id(config.user_fields)[20].arg_name == "department"
    assert config.config_path == str(path)


def test_load_twice_gives_same_config(tmp_path):
    path = tmp_path / "config.yml"
    path.write_text(CONFIG_FILE, encoding="utf-8")
    environ = {"PLANFIX_LEAD_TASK_FIELDS": ENV_LEAD_TASK_FIELDS}

    first = load_custom_fields_config([f"--config={path}"], environ)
    second = load_custom_fields_config([f"--config={path}"], environ)

    assert first == second
    ids = [f.id for f in second.lead_task_fields]
    assert sorted(ids) == [1, 2, 3]


def test_load_without_any_source(tmp_path):
    config = load_custom_fields_config([f"--config={tmp_path / 'missing.yml'}"], {})
    assert config.lead_task_fields == ()
    assert config.contact_fields == ()
    assert config.user_fields == ()


def test_load_with_non_list_collection(tmp_path):
    path = tmp_path / "config.yml"
    path.write_text("leadTaskFields: nope\ncontactFields:\n  - id: 5\n    argName: x\n", encoding="utf-8")
    config = load_custom_fields_config([f"--config={path}"], {})
    assert config.lead_task_fields == ()
    assert [f.id for f in config.contact_fields] == [5]
