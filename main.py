"""
Planfix MCP Server

Model Context Protocol server for Planfix CRM lead operations.
- Contacts: planfix_search_contact, planfix_create_contact, planfix_update_contact
- Users: planfix_search_manager
- Lead tasks: planfix_search_task, planfix_search_lead_task, planfix_create_lead_task,
  planfix_update_lead_task, planfix_add_to_lead_task, planfix_create_task, planfix_create_comment
- Sell tasks: planfix_create_sell_task, planfix_get_child_tasks
- Lookups: planfix_search_project, planfix_search_company, planfix_search_directory,
  planfix_search_directory_entry
- Reports: planfix_reports_list, planfix_get_report_fields
- planfix_request (generic API call)

Contact, user and lead task tools accept configured custom fields as extra arguments
(see custom_fields_config.py); their input schemas are built when the server starts.
"""

import re
import json
import random
import logging
from dataclasses import dataclass
from datetime import datetime
from functools import partial
from typing import Any, Awaitable, Callable, Dict, List, Literal, Mapping, Optional, Tuple, Type

from fastmcp import FastMCP
from fastmcp.tools import Tool
from fastmcp.tools.tool import ToolResult
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from config import (
    LOG_FORMAT,
    LOG_LEVEL,
    PLANFIX_CONTACT_TEMPLATE_ID,
    PLANFIX_DRY_RUN,
    PLANFIX_FIELD_IDS,
    PLANFIX_LEAD_SOURCE_VALUE,
    PLANFIX_LEAD_TEMPLATE_ID,
    PLANFIX_SELL_TEMPLATE_ID,
    PLANFIX_SERVICE_MATRIX_VALUE,
)
from custom_fields import (
    CustomFieldDataEntry,
    DirectoryRef,
    extend_filters_with_custom_fields,
    extend_post_body_with_custom_fields,
    extend_schema_with_custom_fields,
    read_custom_field_values,
)
from custom_fields_config import CustomField, CustomFieldsConfig, load_custom_fields_config
from planfix_client import (
    PlanfixAPIError,
    get_comment_url,
    get_contact_url,
    get_task_url,
    get_user_url,
    planfix_request,
)
from planfix_directory import (
    find_directory_entry,
    get_directory_fields,
    get_or_create_directory_entry,
    search_directory,
)
from planfix_objects import get_field_directory_id

logger = logging.getLogger("planfix-mcp")

EMPTY_CUSTOM_FIELDS = CustomFieldsConfig()

REPORTS_CACHE_TIME = 3600
REPORT_FIELDS_CACHE_TIME = 600
PAGE_SIZE = 100

# Planfix list filter types
FILTER_CONTACT_NAME = 4001
FILTER_CONTACT_PHONE = 4003
FILTER_CONTACT_IS_COMPANY = 4006
FILTER_CONTACT_EMAIL = 4026
FILTER_CONTACT_CUSTOM_FIELD = 4101
FILTER_CONTACT_TELEGRAM = 4226
FILTER_USER_EMAIL = 9003
FILTER_TASK_NAME = 8
FILTER_TASK_TEMPLATE = 51
FILTER_TASK_CUSTOM_CONTACT = 108
FILTER_PROJECT_NAME = 5001

PHONE_RE = re.compile(r"^[+\d\s\-()]{5,}$")

# ---------------------------------------------------------------------------
# System Instructions
# ---------------------------------------------------------------------------

SYSTEM_INSTRUCTIONS = """
# Planfix MCP Server

## Lead workflow
- Use `planfix_add_to_lead_task` for an incoming lead: it finds or creates the contact,
  then creates the lead task or comments on the existing one.
- Use the search tools to check what already exists before creating anything.
- Pass names in two languages when known: `name` (original) and `nameTranslated`.

## Custom fields
Extra arguments in the input schemas of contact, manager and lead task tools are
Planfix custom fields configured for this account. Enum fields accept only the listed values.

## Updates
Update tools never overwrite a filled value unless `forceUpdate` is true.
"""

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _mock_id() -> int:
    return 55500000 + random.randint(0, 9999)


def _to_html(text: str) -> str:
    return text.replace("\n", "<br>")


def split_name(full_name: str) -> Tuple[str, str]:
    """'John Smith Jr' -> ('John', 'Smith Jr')."""
    parts = (full_name or "").split()
    if not parts:
        return "", ""
    return parts[0], " ".join(parts[1:])


def strip_at(handle: str) -> str:
    return handle[1:] if handle.startswith("@") else handle


def _set_if_changed(body: Dict[str, Any], key: str, value: str, current: Optional[str], force: bool) -> None:
    """Write a scalar attribute only when it is empty on the record (or force) and differs."""
    current = current or ""
    if (force or not current) and value != current:
        body[key] = value


# ---------------------------------------------------------------------------
# Tool registry
# ---------------------------------------------------------------------------

class PlanfixInput(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PlanfixOutput(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    error: Optional[str] = None


ToolHandler = Callable[[Dict[str, Any]], Awaitable[Dict[str, Any]]]


@dataclass(frozen=True)
class ToolSpec:
    name: str
    description: str
    input_model: Type[BaseModel]
    output_model: Type[BaseModel]
    handler: ToolHandler


async def call_tool(spec: ToolSpec, arguments: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Validate arguments against the tool's input model and run its handler."""
    try:
        parsed = spec.input_model.model_validate(dict(arguments or {}))
    except ValidationError as e:
        logger.warning("Invalid arguments for %s: %s", spec.name, e)
        return {
            "error": f"Invalid arguments for {spec.name}",
            "validationErrors": [
                {"loc": list(err["loc"]), "msg": err["msg"], "type": err["type"]}
                for err in e.errors()
            ],
        }
    args = parsed.model_dump(by_alias=True)
    try:
        return await spec.handler(args)
    except PlanfixAPIError as e:
        logger.error(f"{spec.name} failed: {e.message}")
        return {"error": e.message}
    except Exception as e:
        logger.exception(spec.name)
        return {"error": f"Unexpected error: {str(e)}"}


class PlanfixTool(Tool):
    """MCP tool backed by a ToolSpec; schemas come from the spec's pydantic models."""

    spec: ToolSpec = Field(exclude=True)

    @classmethod
    def from_spec(cls, spec: ToolSpec) -> "PlanfixTool":
        return cls(
            name=spec.name,
            description=spec.description,
            parameters=spec.input_model.model_json_schema(by_alias=True),
            output_schema=spec.output_model.model_json_schema(by_alias=True),
            spec=spec,
        )

    async def run(self, arguments: Dict[str, Any]) -> ToolResult:
        result = await call_tool(self.spec, arguments)
        return ToolResult(
            content=json.dumps(result, ensure_ascii=False, default=str),
            structured_content=result,
        )


# ---------------------------------------------------------------------------
# Contacts
# ---------------------------------------------------------------------------

class SearchContactInput(PlanfixInput):
    name: Optional[str] = None
    name_translated: Optional[str] = Field(default=None, description="Translate name and place here")
    phone: Optional[str] = None
    email: Optional[str] = None
    telegram: Optional[str] = None


class SearchContactOutput(PlanfixOutput):
    contact_id: Optional[int] = None
    url: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    found: Optional[bool] = None


def _contact_fields_param(contact_fields: Tuple[CustomField, ...]) -> str:
    fields = "id,name,midname,lastname,email,phone,description,group"
    if PLANFIX_FIELD_IDS["telegram_custom"]:
        fields += f",{PLANFIX_FIELD_IDS['telegram_custom']}"
    elif PLANFIX_FIELD_IDS["telegram"]:
        fields += ",telegram"
    for field in contact_fields:
        if field.arg_name:
            fields += f",{field.id}"
    return fields


def _contact_search_filters(args: Mapping[str, Any], contact_fields: Tuple[CustomField, ...]) -> List[List[Dict[str, Any]]]:
    """Filter sets to try one after another, most specific first."""
    name = args.get("name")
    name_translated = args.get("nameTranslated")
    phone = args.get("phone")
    email = args.get("email")
    telegram = args.get("telegram")

    # a telegram handle or free text passed as phone
    if phone and (phone.startswith("@") or not PHONE_RE.match(phone)):
        phone = ""

    attempts: List[List[Dict[str, Any]]] = []
    if email:
        attempts.append([{"type": FILTER_CONTACT_EMAIL, "operator": "equal", "value": email}])
    if phone:
        attempts.append([{"type": FILTER_CONTACT_PHONE, "operator": "equal", "value": phone}])
    # first and last name only
    for value in (name, name_translated):
        if value and " " in value.strip():
            attempts.append([{"type": FILTER_CONTACT_NAME, "operator": "equal", "value": value}])
    if telegram:
        handle = strip_at(telegram.strip()).lower()
        telegram_custom = PLANFIX_FIELD_IDS["telegram_custom"]
        if telegram_custom:
            for value in (handle, f"@{handle}"):
                attempts.append([{
                    "type": FILTER_CONTACT_CUSTOM_FIELD,
                    "field": telegram_custom,
                    "operator": "equal",
                    "value": value,
                }])
        elif PLANFIX_FIELD_IDS["telegram"]:
            attempts.append([{"type": FILTER_CONTACT_TELEGRAM, "operator": "equal", "value": handle}])

    custom_filters: List[Dict[str, Any]] = []
    extend_filters_with_custom_fields(custom_filters, args, contact_fields, "contact")
    if custom_filters:
        attempts.append(custom_filters)
    return attempts


async def search_contact_logic(
    args: Mapping[str, Any],
    custom_fields: CustomFieldsConfig = EMPTY_CUSTOM_FIELDS,
) -> Dict[str, Any]:
    """
    Search a contact by email, phone, full name, translated name, telegram and contact custom fields,
    stopping at the first filter that finds something.
    """
    contact_fields = custom_fields.contact_fields
    post_body = {"offset": 0, "pageSize": PAGE_SIZE, "fields": _contact_fields_param(contact_fields)}
    for filters in _contact_search_filters(args, contact_fields):
        try:
            result = await planfix_request("contact/list", {**post_body, "filters": filters})
        except PlanfixAPIError as e:
            logger.error(f"Contact search failed: {e.message}")
            return {"contactId": 0, "error": e.message, "found": False}
        contacts = result.get("contacts") or []
        if contacts:
            contact = contacts[0]
            return {
                "contactId": contact["id"],
                "url": get_contact_url(contact["id"]),
                "firstName": contact.get("name"),
                "lastName": contact.get("lastname"),
                "found": True,
                **read_custom_field_values(contact, contact_fields),
            }
    return {"contactId": 0, "url": "", "found": False}


class CreateContactInput(PlanfixInput):
    name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    telegram: Optional[str] = None


class CreateContactOutput(PlanfixOutput):
    contact_id: Optional[int] = None
    url: Optional[str] = None


async def create_contact_logic(
    args: Mapping[str, Any],
    custom_fields: CustomFieldsConfig = EMPTY_CUSTOM_FIELDS,
) -> Dict[str, Any]:
    if PLANFIX_DRY_RUN:
        mock_id = _mock_id()
        logger.info(f"[DRY RUN] Would create contact with name: {args.get('name') or 'N/A'}, email: {args.get('email') or 'N/A'}")
        return {"contactId": mock_id, "url": f"https://example.com/contact/{mock_id}"}

    first_name, last_name = split_name(args.get("name") or "")
    body: Dict[str, Any] = {
        "template": {"id": PLANFIX_CONTACT_TEMPLATE_ID},
        "name": first_name,
        "lastname": last_name,
        "phones": [],
        "customFieldData": [],
    }
    if args.get("email"):
        body["email"] = args["email"]
    if args.get("phone"):
        body["phones"].append({"type": 1, "number": args["phone"]})
    if args.get("telegram"):
        normalized = "@" + strip_at(args["telegram"].strip())
        if PLANFIX_FIELD_IDS["telegram_custom"]:
            body["customFieldData"].append(
                CustomFieldDataEntry(PLANFIX_FIELD_IDS["telegram_custom"], normalized).to_dict()
            )
        elif PLANFIX_FIELD_IDS["telegram"]:
            body["telegram"] = normalized
    extend_post_body_with_custom_fields(body, args, custom_fields.contact_fields)

    try:
        result = await planfix_request("contact/", body)
    except PlanfixAPIError as e:
        logger.error(f"Contact creation failed: {e.message}")
        return {"contactId": 0, "error": e.message}
    contact_id = result.get("id")
    return {"contactId": contact_id, "url": get_contact_url(contact_id)}


class UpdateContactInput(PlanfixInput):
    contact_id: int
    name: Optional[str] = None
    telegram: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    force_update: Optional[bool] = Field(default=None, description="Overwrite values that are already filled")


class UpdateContactOutput(PlanfixOutput):
    contact_id: Optional[int] = None
    url: Optional[str] = None


async def update_contact_logic(
    args: Mapping[str, Any],
    custom_fields: CustomFieldsConfig = EMPTY_CUSTOM_FIELDS,
) -> Dict[str, Any]:
    """
    Fill the contact with new data. Filled attributes are kept unless forceUpdate,
    a new phone is appended to the existing ones. Nothing is sent when nothing changed.
    """
    contact_id = args["contactId"]
    if PLANFIX_DRY_RUN:
        logger.info(f"[DRY RUN] Would update contact {contact_id}")
        return {"contactId": contact_id, "url": get_contact_url(contact_id)}

    force = bool(args.get("forceUpdate"))
    contact_fields = custom_fields.contact_fields
    telegram_custom = PLANFIX_FIELD_IDS["telegram_custom"]
    telegram_field = PLANFIX_FIELD_IDS["telegram"]

    fields = "id,name,lastname,email,phones"
    if telegram_custom or contact_fields:
        fields += ",customFieldData"
    if telegram_field and not telegram_custom:
        fields += ",telegram"

    try:
        result = await planfix_request(f"contact/{contact_id}", {"fields": fields}, method="GET")
        contact = result.get("contact") or {}
        body: Dict[str, Any] = {}

        if args.get("name"):
            first_name, last_name = split_name(args["name"])
            _set_if_changed(body, "name", first_name, contact.get("name"), force)
            _set_if_changed(body, "lastname", last_name, contact.get("lastname"), force)
        if args.get("email") is not None:
            _set_if_changed(body, "email", args["email"], contact.get("email"), force)

        if args.get("telegram") is not None:
            normalized = strip_at(args["telegram"].strip())
            if telegram_custom:
                current = ""
                for entry in contact.get("customFieldData") or []:
                    if (entry.get("field") or {}).get("id") == telegram_custom and isinstance(entry.get("value"), str):
                        current = strip_at(entry["value"])
                if (force or not current) and normalized != current:
                    body.setdefault("customFieldData", []).append(
                        CustomFieldDataEntry(telegram_custom, "@" + normalized).to_dict()
                    )
            elif telegram_field:
                current = strip_at(contact.get("telegram") or "")
                if (force or not current) and normalized != current:
                    body["telegram"] = "@" + normalized

        phone = args.get("phone")
        if phone:
            phones = contact.get("phones") or []
            if not any(p.get("number") == phone for p in phones):
                body["phones"] = [*phones, {"number": phone, "type": 1}]

        extend_post_body_with_custom_fields(body, args, contact_fields, current_record=contact, force_update=force)

        if not body:
            logger.info(f"Contact {contact_id} is up to date")
            return {"contactId": contact_id, "url": get_contact_url(contact_id)}
        await planfix_request(f"contact/{contact_id}", body)
    except PlanfixAPIError as e:
        logger.error(f"Contact update failed: {e.message}")
        return {"contactId": 0, "error": e.message}
    return {"contactId": contact_id, "url": get_contact_url(contact_id)}


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------

class SearchManagerInput(PlanfixInput):
    email: str


class SearchManagerOutput(PlanfixOutput):
    manager_id: Optional[int] = None
    url: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    found: Optional[bool] = None


async def search_manager_logic(
    args: Mapping[str, Any],
    custom_fields: CustomFieldsConfig = EMPTY_CUSTOM_FIELDS,
) -> Dict[str, Any]:
    email = args.get("email")
    user_fields = custom_fields.user_fields
    filters = [{"type": FILTER_USER_EMAIL, "operator": "equal", "value": email}]
    extend_filters_with_custom_fields(filters, args, user_fields, "user")
    body = {
        "offset": 0,
        "pageSize": PAGE_SIZE,
        "fields": "id,name,midname,lastname,email,customFieldData",
        "filters": filters,
    }
    try:
        result = await planfix_request("user/list", body)
    except PlanfixAPIError as e:
        logger.error(f"Manager search failed: {e.message}")
        return {
            "managerId": 0,
            "error": f"An error occurred while searching for the manager: {e.message}",
            "found": False,
        }

    users = result.get("users") or []
    if users and users[0].get("id"):
        manager = users[0]
        return {
            "managerId": manager["id"],
            "url": get_user_url(manager["id"]),
            "firstName": manager.get("name"),
            "lastName": manager.get("lastname"),
            "found": True,
            **read_custom_field_values(manager, user_fields),
        }
    return {"managerId": 0, "error": f"No manager found with email: {email}", "found": False}


# ---------------------------------------------------------------------------
# Lookups: projects, companies, directories
# ---------------------------------------------------------------------------

class SearchProjectInput(PlanfixInput):
    name: str


class SearchProjectOutput(PlanfixOutput):
    project_id: Optional[int] = None
    name: Optional[str] = None
    found: Optional[bool] = None


async def search_project_logic(args: Mapping[str, Any]) -> Dict[str, Any]:
    body = {
        "offset": 0,
        "pageSize": PAGE_SIZE,
        "filters": [{"type": FILTER_PROJECT_NAME, "operator": "equal", "value": args.get("name")}],
        "fields": "id,name,description",
    }
    try:
        result = await planfix_request("project/list", body)
    except PlanfixAPIError as e:
        logger.error(f"Project search failed: {e.message}")
        return {"projectId": 0, "error": e.message, "found": False}
    projects = result.get("projects") or []
    if projects:
        return {"projectId": projects[0]["id"], "name": projects[0].get("name"), "found": True}
    return {"projectId": 0, "found": False}


class SearchCompanyInput(PlanfixInput):
    name: Optional[str] = None


class SearchCompanyOutput(PlanfixOutput):
    contact_id: Optional[int] = None
    url: Optional[str] = None
    name: Optional[str] = None


async def search_company_logic(args: Mapping[str, Any]) -> Dict[str, Any]:
    name = args.get("name")
    if not name:
        return {"contactId": 0, "url": ""}
    body = {
        "offset": 0,
        "pageSize": PAGE_SIZE,
        "isCompany": True,
        "fields": "id,name",
        "filters": [
            {"type": FILTER_CONTACT_IS_COMPANY, "operator": "equal", "value": True},
            {"type": FILTER_CONTACT_NAME, "operator": "equal", "value": name},
        ],
    }
    try:
        result = await planfix_request("contact/list", body)
    except PlanfixAPIError as e:
        logger.error(f"Company search failed: {e.message}")
        return {"contactId": 0, "error": e.message}
    contacts = result.get("contacts") or []
    if not contacts:
        return {"contactId": 0, "url": ""}
    company = contacts[0]
    return {"contactId": company["id"], "url": get_contact_url(company["id"]), "name": company.get("name")}


class SearchDirectoryInput(PlanfixInput):
    name: str


class SearchDirectoryOutput(PlanfixOutput):
    directory_id: Optional[int] = None
    name: Optional[str] = None
    found: Optional[bool] = None


async def search_directory_logic(args: Mapping[str, Any]) -> Dict[str, Any]:
    directory = await search_directory(args["name"])
    if directory:
        return {"directoryId": directory["id"], "name": directory.get("name"), "found": True}
    return {"directoryId": 0, "found": False}


class SearchDirectoryEntryInput(PlanfixInput):
    directory: str = Field(description="Directory name")
    entry: str = Field(description="Entry name")


class SearchDirectoryEntryOutput(PlanfixOutput):
    entry_id: Optional[int] = None
    found: Optional[bool] = None


async def search_directory_entry_logic(args: Mapping[str, Any]) -> Dict[str, Any]:
    directory = await search_directory(args["directory"])
    if not directory:
        return {"entryId": 0, "found": False, "error": "Directory not found"}
    if not await get_directory_fields(directory["id"]):
        return {"entryId": 0, "found": False, "error": "Directory fields not found"}
    entry_id = await find_directory_entry(directory["id"], args["entry"])
    if entry_id:
        return {"entryId": entry_id, "found": True}
    return {"entryId": 0, "found": False}


# ---------------------------------------------------------------------------
# Lead tasks
# ---------------------------------------------------------------------------

class SearchTaskInput(PlanfixInput):
    task_title: Optional[str] = None
    client_id: Optional[int] = None


class SearchTaskOutput(PlanfixOutput):
    task_id: Optional[int] = None
    assignees: Optional[Any] = None
    description: Optional[str] = None
    url: Optional[str] = None
    total_tasks: Optional[int] = None
    found: Optional[bool] = None


async def search_task_logic(args: Mapping[str, Any]) -> Dict[str, Any]:
    """Lead template task by client first, then by exact title."""
    client_id = args.get("clientId")
    task_title = args.get("taskTitle")
    template_filter = {"type": FILTER_TASK_TEMPLATE, "operator": "equal", "value": PLANFIX_LEAD_TEMPLATE_ID}
    post_body = {"offset": 0, "pageSize": PAGE_SIZE, "fields": "id,name,description,template,assignees"}

    attempts = []
    if client_id:
        attempts.append({
            "type": FILTER_TASK_CUSTOM_CONTACT,
            "field": PLANFIX_FIELD_IDS["client"],
            "operator": "equal",
            "value": f"contact:{client_id}",
        })
    if task_title:
        attempts.append({"type": FILTER_TASK_NAME, "operator": "equal", "value": task_title})

    for task_filter in attempts:
        try:
            result = await planfix_request("task/list", {**post_body, "filters": [template_filter, task_filter]})
        except PlanfixAPIError as e:
            logger.error(f"Task search failed: {e.message}")
            return {"taskId": 0, "error": f"Error searching for tasks: {e.message}", "found": False}
        tasks = result.get("tasks") or []
        if tasks:
            task = tasks[0]
            return {
                "taskId": task["id"],
                "assignees": task.get("assignees"),
                "description": task.get("description"),
                "url": get_task_url(task["id"]),
                "totalTasks": len(tasks),
                "found": True,
            }
    return {"taskId": 0, "url": "", "totalTasks": 0, "found": False}


class UserDataInput(PlanfixInput):
    name: Optional[str] = None
    name_translated: Optional[str] = Field(default=None, description="Translate name and place here")
    phone: Optional[str] = None
    email: Optional[str] = None
    telegram: Optional[str] = None
    company: Optional[str] = None


class SearchLeadTaskInput(UserDataInput):
    client_id: Optional[int] = None


class SearchLeadTaskOutput(PlanfixOutput):
    task_id: Optional[int] = None
    url: Optional[str] = None
    client_id: Optional[int] = None
    client_url: Optional[str] = None
    assignees: Optional[Any] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    agency_id: Optional[int] = None
    total_tasks: Optional[int] = None
    found: Optional[bool] = None


async def search_lead_task_logic(
    args: Mapping[str, Any],
    custom_fields: CustomFieldsConfig = EMPTY_CUSTOM_FIELDS,
) -> Dict[str, Any]:
    """Contact (unless clientId is given), then its lead task, then the agency by company name."""
    logger.info(f"Searching lead task by user data: {json.dumps(dict(args), ensure_ascii=False, default=str)}")
    client_id = args.get("clientId")
    contact: Dict[str, Any] = {}
    if client_id is None:
        contact = await search_contact_logic(args, custom_fields)
        client_id = contact.get("contactId") or 0

    task_id = 0
    total_tasks = 0
    assignees: Any = {"users": []}
    if client_id > 0:
        result = await search_task_logic({"clientId": client_id})
        task_id = result.get("taskId") or 0
        total_tasks = result.get("totalTasks") or 0
        if isinstance(result.get("assignees"), dict) and isinstance(result["assignees"].get("users"), list):
            assignees = result["assignees"]

    agency_id = None
    if args.get("company"):
        company = await search_company_logic({"name": args["company"]})
        agency_id = company.get("contactId") or None

    return {
        "taskId": task_id,
        "url": get_task_url(task_id),
        "clientId": client_id,
        "clientUrl": get_contact_url(client_id),
        "assignees": assignees,
        "firstName": contact.get("firstName"),
        "lastName": contact.get("lastName"),
        "agencyId": agency_id,
        "totalTasks": total_tasks,
        "found": task_id > 0,
    }


async def resolve_lead_source(lead_source: Optional[str]) -> Optional[int]:
    """Directory entry key for a lead source name; None when it cannot be resolved."""
    if not lead_source or not PLANFIX_FIELD_IDS["lead_source"]:
        return None
    directory_id = await get_field_directory_id(
        object_id=PLANFIX_LEAD_TEMPLATE_ID, field_id=PLANFIX_FIELD_IDS["lead_source"]
    )
    if not directory_id:
        logger.warning("Lead source field %s is not backed by a directory", PLANFIX_FIELD_IDS["lead_source"])
        return None
    key = await find_directory_entry(directory_id, lead_source)
    if key is None:
        logger.warning("Lead source %r not found in directory %s", lead_source, directory_id)
    return key


async def resolve_tags(tags: Optional[List[str]]) -> List[int]:
    """Directory entry keys for tags, creating missing entries."""
    if not tags or not PLANFIX_FIELD_IDS["tags"]:
        return []
    directory_id = await get_field_directory_id(
        object_id=PLANFIX_LEAD_TEMPLATE_ID, field_id=PLANFIX_FIELD_IDS["tags"]
    )
    if not directory_id:
        logger.warning("Tags field %s is not backed by a directory", PLANFIX_FIELD_IDS["tags"])
        return []
    keys = []
    for tag in tags:
        key = await get_or_create_directory_entry(directory_id, tag)
        if key is not None:
            keys.append(key)
    return keys


async def _lead_task_references(args: Mapping[str, Any], with_default_source: bool) -> Tuple[List[CustomField], Dict[str, Any]]:
    """
    Built-in lead task fields holding references (client, manager, agency, lead source, tags)
    as CustomField definitions plus their values, so they go through the same post body path
    as configured custom fields.
    """
    fields: List[CustomField] = []
    values: Dict[str, Any] = {}

    def add(key: str, arg_name: str, value: Any) -> None:
        field_id = PLANFIX_FIELD_IDS[key]
        if not field_id or value is None:
            return
        fields.append(CustomField(id=field_id, argName=arg_name))
        values[arg_name] = value

    if args.get("clientId"):
        add("client", "clientId", DirectoryRef(args["clientId"]))
    if args.get("managerId"):
        add("manager", "managerId", DirectoryRef(args["managerId"]))
    if args.get("agencyId"):
        add("agency", "agencyId", DirectoryRef(args["agencyId"]))

    lead_source = await resolve_lead_source(args.get("leadSource"))
    if lead_source is None and with_default_source and PLANFIX_LEAD_SOURCE_VALUE:
        lead_source = PLANFIX_LEAD_SOURCE_VALUE
    if lead_source is not None:
        add("lead_source", "leadSource", DirectoryRef(lead_source))

    if not PLANFIX_DRY_RUN:
        tag_keys = await resolve_tags(args.get("tags"))
        if tag_keys:
            add("tags", "tags", [DirectoryRef(key) for key in tag_keys])
    return fields, values


class CreateLeadTaskInput(PlanfixInput):
    name: str
    description: str
    client_id: int
    manager_id: Optional[int] = None
    agency_id: Optional[int] = None
    project: Optional[str] = None
    lead_source: Optional[str] = None
    tags: Optional[List[str]] = None


class CreateLeadTaskOutput(PlanfixOutput):
    task_id: Optional[int] = None
    url: Optional[str] = None


async def create_lead_task_logic(
    args: Mapping[str, Any],
    custom_fields: CustomFieldsConfig = EMPTY_CUSTOM_FIELDS,
) -> Dict[str, Any]:
    name = args.get("name") or ""
    description = args.get("description") or ""
    project = args.get("project")

    project_id = 0
    if project:
        project_result = await search_project_logic({"name": project})
        if project_result.get("found"):
            project_id = project_result["projectId"]
        else:
            description = f"{description}\nProject: {project}"

    body: Dict[str, Any] = {
        "template": {"id": PLANFIX_LEAD_TEMPLATE_ID},
        "name": name,
        "description": _to_html(description),
        "customFieldData": [],
    }
    if project_id:
        body["project"] = {"id": project_id}

    reference_fields, reference_values = await _lead_task_references(args, with_default_source=True)
    extend_post_body_with_custom_fields(body, reference_values, reference_fields)
    extend_post_body_with_custom_fields(body, args, custom_fields.lead_task_fields)

    if PLANFIX_DRY_RUN:
        mock_id = _mock_id()
        logger.info(f"[DRY RUN] Would create lead task: {name}")
        return {"taskId": mock_id, "url": f"https://example.com/task/{mock_id}"}

    try:
        result = await planfix_request("task/", body)
    except PlanfixAPIError as e:
        logger.error(f"Lead task creation failed: {e.message}")
        request = json.dumps(body, ensure_ascii=False, default=str)
        return {"taskId": 0, "error": f"Error creating task: {e.message}, request: {request}"}
    task_id = result.get("id")
    return {"taskId": task_id, "url": get_task_url(task_id)}


class UpdateLeadTaskInput(PlanfixInput):
    task_id: int
    name: Optional[str] = None
    description: Optional[str] = None
    manager_id: Optional[int] = None
    manager_email: Optional[str] = None
    agency_id: Optional[int] = None
    project: Optional[str] = None
    lead_source: Optional[str] = None
    tags: Optional[List[str]] = None
    force_update: Optional[bool] = Field(default=None, description="Overwrite values that are already filled")


class UpdateLeadTaskOutput(PlanfixOutput):
    task_id: Optional[int] = None
    url: Optional[str] = None


async def update_lead_task_logic(
    args: Mapping[str, Any],
    custom_fields: CustomFieldsConfig = EMPTY_CUSTOM_FIELDS,
) -> Dict[str, Any]:
    """
    Update a lead task with the values that differ from the stored ones
    (all given values when forceUpdate). Nothing is sent when nothing changed.
    """
    task_id = args["taskId"]
    force = bool(args.get("forceUpdate"))
    if PLANFIX_DRY_RUN:
        logger.info(f"[DRY RUN] Would update lead task {task_id}")
        return {"taskId": task_id, "url": get_task_url(task_id)}

    try:
        result = await planfix_request(
            f"task/{task_id}", {"fields": "id,name,description,customFieldData"}, method="GET"
        )
        task = result.get("task") or {}
        body: Dict[str, Any] = {}

        if args.get("name") is not None and (force or args["name"] != task.get("name")):
            body["name"] = args["name"]
        description = args.get("description")
        if description is not None:
            html = _to_html(description)
            if force or html != task.get("description"):
                body["description"] = html

        if not args.get("managerId") and args.get("managerEmail"):
            manager = await search_manager_logic({"email": args["managerEmail"]}, custom_fields)
            args = {**args, "managerId": manager.get("managerId") or None}

        reference_fields, reference_values = await _lead_task_references(args, with_default_source=False)
        extend_post_body_with_custom_fields(body, reference_values, reference_fields, current_record=task, force_update=force)

        project = args.get("project")
        if project:
            project_result = await search_project_logic({"name": project})
            if project_result.get("found"):
                body["project"] = {"id": project_result["projectId"]}
            elif description is not None:
                body["description"] = f"{body.get('description') or _to_html(description)}<br>Project: {project}"

        extend_post_body_with_custom_fields(
            body, args, custom_fields.lead_task_fields, current_record=task, force_update=force
        )

        if not body:
            logger.info(f"Lead task {task_id} is up to date")
            return {"taskId": task_id, "url": get_task_url(task_id)}
        await planfix_request(f"task/{task_id}", body)
    except PlanfixAPIError as e:
        logger.error(f"Lead task update failed: {e.message}")
        return {"taskId": 0, "error": e.message}
    return {"taskId": task_id, "url": get_task_url(task_id)}


class CommentRecipients(PlanfixInput):
    users: Optional[List[Dict[str, str]]] = Field(default=None, description='e.g. [{"id": "user:1"}]')
    groups: Optional[List[Dict[str, int]]] = None
    roles: Optional[List[str]] = Field(default=None, description="assignee, participant, auditor, assigner")


class CreateCommentInput(PlanfixInput):
    task_id: int
    description: str
    recipients: Optional[CommentRecipients] = None
    silent: Optional[bool] = Field(default=None, description="Don't notify recipients")


class CreateCommentOutput(PlanfixOutput):
    comment_id: Optional[int] = None
    url: Optional[str] = None


async def create_comment_logic(args: Mapping[str, Any]) -> Dict[str, Any]:
    task_id = args["taskId"]
    description = args.get("description") or ""
    if PLANFIX_DRY_RUN:
        mock_id = _mock_id()
        logger.info(f"[DRY RUN] Would create comment for task {task_id} with description: {description}")
        return {"commentId": mock_id}

    recipients = args.get("recipients")
    if args.get("silent"):
        recipients = None
    elif recipients:
        recipients = {k: v for k, v in recipients.items() if v is not None} or None
    if not args.get("silent") and not recipients:
        recipients = {"roles": ["assignee"]}

    body = {"description": _to_html(description), "recipients": recipients}
    try:
        result = await planfix_request(f"task/{task_id}/comments/", body)
    except PlanfixAPIError as e:
        logger.error(f"Comment creation failed: {e.message}")
        return {"commentId": 0, "error": f"Error creating comment: {e.message}"}
    comment_id = result.get("id")
    return {"commentId": comment_id, "url": get_comment_url(task_id, comment_id)}


# ---------------------------------------------------------------------------
# Add lead to task (orchestration)
# ---------------------------------------------------------------------------

USER_DATA_LABELS = {
    "name": "Name",
    "phone": "Phone",
    "email": "Email",
    "telegram": "Telegram",
    "company": "Company",
}


def generate_description(
    user_data: Mapping[str, Any],
    title: Optional[str],
    description: Optional[str],
    task_title: Optional[str],
) -> str:
    lines: List[str] = []
    if title and title != task_title:
        lines.extend([title, ""])
    if description:
        lines.extend([description, ""])

    user_lines = [f"{label}: {user_data[key]}" for key, label in USER_DATA_LABELS.items() if user_data.get(key)]
    if user_lines:
        if lines:
            lines.append("")
        lines.extend(user_lines)

    if not lines:
        return f"Lead from {datetime.now():%Y-%m-%d %H:%M}"
    return "\n".join(lines)


class AddToLeadTaskInput(UserDataInput):
    title: Optional[str] = None
    description: Optional[str] = None
    manager_email: Optional[str] = None
    project: Optional[str] = None
    lead_source: Optional[str] = None
    tags: Optional[List[str]] = None


class AddToLeadTaskOutput(PlanfixOutput):
    task_id: Optional[int] = None
    client_id: Optional[int] = None
    url: Optional[str] = None
    client_url: Optional[str] = None
    assignees: Optional[Any] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    agency_id: Optional[int] = None


async def add_to_lead_task_logic(
    args: Mapping[str, Any],
    custom_fields: CustomFieldsConfig = EMPTY_CUSTOM_FIELDS,
) -> Dict[str, Any]:
    """
    Find the client and their lead task; create the contact and the task when missing,
    otherwise comment on the task and update it.
    """
    user_data = {key: args.get(key) for key in ("name", "nameTranslated", "phone", "email", "telegram", "company")}
    if PLANFIX_DRY_RUN:
        task_id, client_id = _mock_id(), _mock_id()
        logger.info(f"[DRY RUN] Would process lead task for {user_data['name'] or 'unnamed client'}")
        return {
            "taskId": task_id,
            "clientId": client_id,
            "url": get_task_url(task_id),
            "clientUrl": get_contact_url(client_id),
            "assignees": {"users": []},
        }

    search = await search_lead_task_logic({**args, "clientId": None}, custom_fields)
    task_id = search.get("taskId") or 0
    client_id = search.get("clientId") or 0
    assignees = search.get("assignees")
    agency_id = search.get("agencyId")

    task_title = args.get("title") or f"{user_data['name'] or ''} - client work".strip()
    description = generate_description(user_data, args.get("title"), args.get("description"), task_title)

    if not client_id:
        if not user_data["name"]:
            user_data["name"] = user_data["telegram"] or user_data["phone"] or user_data["email"] or ""
        created = await create_contact_logic({**args, **user_data}, custom_fields)
        client_id = created.get("contactId") or 0
    if client_id:
        await update_contact_logic({**args, **user_data, "contactId": client_id, "forceUpdate": False}, custom_fields)
    if client_id and not task_id and user_data["name"] and " " in user_data["name"]:
        found = await search_task_logic({"taskTitle": task_title})
        task_id = found.get("taskId") or 0
        assignees = found.get("assignees")

    comment_id = None
    if not task_id:
        manager_id = None
        if args.get("managerEmail"):
            manager = await search_manager_logic({"email": args["managerEmail"]}, custom_fields)
            manager_id = manager.get("managerId") or None
        created_task = await create_lead_task_logic(
            {
                **args,
                "name": task_title,
                "description": description,
                "clientId": client_id,
                "managerId": manager_id,
                "agencyId": agency_id,
            },
            custom_fields,
        )
        if created_task.get("error"):
            return {"taskId": 0, "clientId": 0, "error": created_task["error"]}
        task_id = created_task.get("taskId") or 0
        assignees = {"users": [{"id": f"user:{manager_id}"}] if manager_id else []}
    else:
        comment = await create_comment_logic({"taskId": task_id, "description": description})
        comment_id = comment.get("commentId") or None
        if comment_id:
            logger.info(f"Comment {comment_id} added to task {task_id}")
        updated = await update_lead_task_logic(
            {**args, "taskId": task_id, "name": None, "description": None, "forceUpdate": False},
            custom_fields,
        )
        if updated.get("error"):
            return {"taskId": 0, "clientId": 0, "error": updated["error"]}

    return {
        "taskId": task_id,
        "clientId": client_id,
        "url": get_comment_url(task_id, comment_id) if comment_id else get_task_url(task_id),
        "clientUrl": get_contact_url(client_id),
        "assignees": assignees,
        "firstName": search.get("firstName"),
        "lastName": search.get("lastName"),
        "agencyId": agency_id,
    }


class CreateTaskInput(PlanfixInput):
    object: Optional[str] = None
    title: str = Field(description="Task title")
    description: Optional[str] = None
    name: Optional[str] = None
    name_translated: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    telegram: Optional[str] = None
    lead_source: Optional[str] = None
    project: Optional[str] = None
    agency: Optional[str] = None
    referral: Optional[str] = None
    manager_email: Optional[str] = None
    tags: Optional[List[str]] = None


async def create_task_logic(
    args: Mapping[str, Any],
    custom_fields: CustomFieldsConfig = EMPTY_CUSTOM_FIELDS,
) -> Dict[str, Any]:
    """planfix_add_to_lead_task with plain text arguments: agency is the client's company."""
    lines = []
    if args.get("leadSource"):
        lines.append(f"Source: {args['leadSource']}")
    if args.get("referral"):
        lines.append(f"Referral: {args['referral']}")
    if args.get("managerEmail"):
        lines.append(f"Manager: {args['managerEmail']}")
    if args.get("description"):
        lines.append(args["description"])

    lead = {key: value for key, value in args.items() if key not in ("agency", "referral", "object")}
    lead["company"] = args.get("agency")
    lead["description"] = "\n".join(lines)
    return await add_to_lead_task_logic(lead, custom_fields)


# ---------------------------------------------------------------------------
# Sell tasks & subtasks
# ---------------------------------------------------------------------------

FILTER_TASK_PARENT = 73

DEFAULT_SELL_TASK_NAME = "Sale from bot"
DEFAULT_SELL_TASK_DESCRIPTION = "Sell task for the client"


class CreateSellTaskInput(PlanfixInput):
    client_id: int
    lead_task_id: int = Field(description="Lead task to put the sell task under")
    agency_id: Optional[int] = None
    assignees: Optional[List[int]] = Field(default=None, description="Planfix user ids")
    name: str
    description: str
    project: Optional[str] = None


class CreateSellTaskOutput(PlanfixOutput):
    task_id: Optional[int] = None
    url: Optional[str] = None


def _reference(key: str, value: Optional[int]) -> Optional[Dict[str, Any]]:
    field_id = PLANFIX_FIELD_IDS.get(key)
    if not field_id or not value:
        return None
    return CustomFieldDataEntry(field_id, DirectoryRef(value)).to_dict()


async def create_sell_task_logic(args: Mapping[str, Any]) -> Dict[str, Any]:
    """Task from the sell template, created as a subtask of the lead task."""
    client_id = args["clientId"]
    lead_task_id = args["leadTaskId"]
    if PLANFIX_DRY_RUN:
        mock_id = _mock_id()
        logger.info(f"[DRY RUN] Would create sell task for client {client_id} under lead task {lead_task_id}")
        return {"taskId": mock_id, "url": f"https://example.com/task/{mock_id}"}

    name = args.get("name") or DEFAULT_SELL_TASK_NAME
    description = args.get("description") or DEFAULT_SELL_TASK_DESCRIPTION
    project = args.get("project")

    project_id = 0
    if project:
        project_result = await search_project_logic({"name": project})
        if project_result.get("found"):
            project_id = project_result["projectId"]
        else:
            description = f"{description}\nProject: {project}"

    references = [
        _reference("client", client_id),
        _reference("agency", args.get("agencyId")),
        _reference("lead_source", PLANFIX_LEAD_SOURCE_VALUE),
        _reference("service_matrix", PLANFIX_SERVICE_MATRIX_VALUE),
    ]
    body: Dict[str, Any] = {
        "template": {"id": PLANFIX_SELL_TEMPLATE_ID},
        "name": name,
        "description": _to_html(description),
        "parent": {"id": lead_task_id},
        "customFieldData": [entry for entry in references if entry],
    }
    if project_id:
        body["project"] = {"id": project_id}
    if args.get("assignees"):
        body["assignees"] = {"users": [{"id": f"user:{user_id}"} for user_id in args["assignees"]]}

    try:
        result = await planfix_request("task/", body)
    except PlanfixAPIError as e:
        logger.error(f"Sell task creation failed: {e.message}")
        return {"taskId": 0, "error": f"Error creating sell task: {e.message}"}
    task_id = result.get("id")
    return {"taskId": task_id, "url": get_task_url(task_id)}


class GetChildTasksInput(PlanfixInput):
    parent_task_id: int
    recursive: Optional[bool] = Field(default=None, description="Include subtasks of subtasks")


class ChildTask(PlanfixOutput):
    id: int
    name: Optional[str] = None
    description: Optional[str] = None
    status: Optional[str] = None
    assignees: Optional[Any] = None
    url: Optional[str] = None
    parent_task_id: int


class GetChildTasksOutput(PlanfixOutput):
    tasks: Optional[List[ChildTask]] = None
    total_count: Optional[int] = None


async def _fetch_child_tasks(parent_task_id: int) -> Tuple[List[Dict[str, Any]], int]:
    result = await planfix_request(
        "task/list",
        {
            "parent": {"id": parent_task_id},
            "offset": 0,
            "pageSize": PAGE_SIZE,
            "fields": "id,name,description,assignees,status",
            "filters": [{"type": FILTER_TASK_PARENT, "operator": "eq", "value": parent_task_id}],
        },
    )
    tasks = [
        {
            "id": task["id"],
            "name": task.get("name"),
            "url": get_task_url(task["id"]),
            "description": task.get("description"),
            "assignees": task.get("assignees"),
            "status": (task.get("status") or {}).get("name"),
            "parentTaskId": parent_task_id,
        }
        for task in result.get("tasks") or []
    ]
    total = (result.get("pagination") or {}).get("count") or 0
    return tasks, total


async def get_child_tasks_logic(args: Mapping[str, Any]) -> Dict[str, Any]:
    parent_task_id = args["parentTaskId"]
    try:
        tasks, total = await _fetch_child_tasks(parent_task_id)
        if not args.get("recursive"):
            return {"tasks": tasks, "totalCount": total}

        seen = {parent_task_id}
        queue = list(tasks)
        while queue:
            parent = queue.pop(0)
            if parent["id"] in seen:
                continue
            seen.add(parent["id"])
            nested, _ = await _fetch_child_tasks(parent["id"])
            tasks.extend(nested)
            queue.extend(nested)
    except PlanfixAPIError as e:
        logger.error(f"Child tasks of {parent_task_id} failed: {e.message}")
        return {"tasks": [], "totalCount": 0, "error": e.message}
    return {"tasks": tasks, "totalCount": len(tasks)}


# ---------------------------------------------------------------------------
# Reports & generic request
# ---------------------------------------------------------------------------

class ReportsListInput(PlanfixInput):
    pass


class ReportsListOutput(PlanfixOutput):
    reports: Optional[List[Dict[str, Any]]] = None


async def reports_list_logic(args: Mapping[str, Any]) -> Dict[str, Any]:
    try:
        result = await planfix_request(
            "report/list",
            {"offset": 0, "pageSize": PAGE_SIZE, "fields": "id,name"},
            cache_time=REPORTS_CACHE_TIME,
        )
    except PlanfixAPIError as e:
        logger.error(f"Listing reports failed: {e.message}")
        return {"reports": [], "error": f"Error listing reports: {e.message}"}
    return {"reports": result.get("reports") or []}


class GetReportFieldsInput(PlanfixInput):
    report_id: int


class GetReportFieldsOutput(PlanfixOutput):
    id: Optional[int] = None
    name: Optional[str] = None
    fields: Optional[List[Dict[str, Any]]] = None


async def get_report_fields_logic(args: Mapping[str, Any]) -> Dict[str, Any]:
    report_id = args["reportId"]
    try:
        result = await planfix_request(
            f"report/{report_id}",
            {"fields": "id,name,fields"},
            method="GET",
            cache_time=REPORT_FIELDS_CACHE_TIME,
        )
    except PlanfixAPIError as e:
        logger.error(f"Getting report fields failed: {e.message}")
        return {"id": report_id, "name": "", "fields": [], "error": f"Error getting report fields: {e.message}"}

    # Planfix answers with "repost" on some accounts
    report = result.get("report") or result.get("repost")
    if not report:
        message = result.get("message") or "Failed to fetch report fields"
        return {"id": report_id, "name": "", "fields": [], "error": f"Error getting report fields: {message}"}
    return {"id": report.get("id"), "name": report.get("name"), "fields": report.get("fields") or []}


class PlanfixRequestInput(PlanfixInput):
    method: Literal["GET", "POST"] = Field(default="POST", description="HTTP method to use for the request")
    path: str = Field(description='API endpoint path (e.g., "contact/list")')
    body: Optional[Dict[str, Any]] = Field(default=None, description="Request body as planfix request object")
    cache_time: Optional[int] = Field(default=None, description="Cache TTL in seconds")


class PlanfixRequestOutput(PlanfixOutput):
    pass


async def planfix_request_logic(args: Mapping[str, Any]) -> Dict[str, Any]:
    method = args.get("method") or "POST"
    path = args["path"]
    try:
        result = await planfix_request(path, args.get("body") or {}, method=method, cache_time=args.get("cacheTime") or 0)
    except PlanfixAPIError as e:
        return {"success": False, "error": e.message, "path": path, "method": method}
    return result if isinstance(result, dict) else {"result": result}


# ---------------------------------------------------------------------------
# MCP Server
# ---------------------------------------------------------------------------

def build_tool_specs(custom_fields: CustomFieldsConfig = EMPTY_CUSTOM_FIELDS) -> List[ToolSpec]:
    """All tools, with input/output models extended by the configured custom fields."""
    contact_fields = custom_fields.contact_fields
    lead_task_fields = custom_fields.lead_task_fields
    user_fields = custom_fields.user_fields

    def with_fields(handler: Callable[..., Awaitable[Dict[str, Any]]]) -> ToolHandler:
        return partial(handler, custom_fields=custom_fields)

    add_to_lead_task_input = extend_schema_with_custom_fields(
        extend_schema_with_custom_fields(AddToLeadTaskInput, contact_fields),
        lead_task_fields,
    )
    create_task_input = extend_schema_with_custom_fields(
        extend_schema_with_custom_fields(CreateTaskInput, contact_fields),
        lead_task_fields,
    )

    return [
        ToolSpec(
            "planfix_search_contact",
            "Search for a contact in Planfix by name, phone, email, or telegram. "
            "Use name in 2 languages: Russian and English.",
            extend_schema_with_custom_fields(SearchContactInput, contact_fields),
            extend_schema_with_custom_fields(SearchContactOutput, contact_fields),
            with_fields(search_contact_logic),
        ),
        ToolSpec(
            "planfix_create_contact",
            "Create a new contact in Planfix",
            extend_schema_with_custom_fields(CreateContactInput, contact_fields),
            CreateContactOutput,
            with_fields(create_contact_logic),
        ),
        ToolSpec(
            "planfix_update_contact",
            "Update a contact in Planfix with new data",
            extend_schema_with_custom_fields(UpdateContactInput, contact_fields),
            UpdateContactOutput,
            with_fields(update_contact_logic),
        ),
        ToolSpec(
            "planfix_search_manager",
            "Search for a manager in Planfix by email",
            extend_schema_with_custom_fields(SearchManagerInput, user_fields),
            extend_schema_with_custom_fields(SearchManagerOutput, user_fields),
            with_fields(search_manager_logic),
        ),
        ToolSpec(
            "planfix_search_task",
            "Search for a task in Planfix by title or client ID",
            SearchTaskInput,
            SearchTaskOutput,
            search_task_logic,
        ),
        ToolSpec(
            "planfix_search_lead_task",
            "Search Planfix task by user data. Use name in 2 languages: Russian and English.",
            extend_schema_with_custom_fields(SearchLeadTaskInput, contact_fields),
            SearchLeadTaskOutput,
            with_fields(search_lead_task_logic),
        ),
        ToolSpec(
            "planfix_create_lead_task",
            "Create a new lead task in Planfix",
            extend_schema_with_custom_fields(CreateLeadTaskInput, lead_task_fields),
            CreateLeadTaskOutput,
            with_fields(create_lead_task_logic),
        ),
        ToolSpec(
            "planfix_update_lead_task",
            "Update a lead task in Planfix",
            extend_schema_with_custom_fields(UpdateLeadTaskInput, lead_task_fields),
            UpdateLeadTaskOutput,
            with_fields(update_lead_task_logic),
        ),
        ToolSpec(
            "planfix_add_to_lead_task",
            "Create or update Planfix contact, task, and comment for a lead.",
            add_to_lead_task_input,
            AddToLeadTaskOutput,
            with_fields(add_to_lead_task_logic),
        ),
        ToolSpec(
            "planfix_create_task",
            "Create a task using textual parameters",
            create_task_input,
            AddToLeadTaskOutput,
            with_fields(create_task_logic),
        ),
        ToolSpec(
            "planfix_create_sell_task",
            "Create a sell task in Planfix",
            CreateSellTaskInput,
            CreateSellTaskOutput,
            create_sell_task_logic,
        ),
        ToolSpec(
            "planfix_get_child_tasks",
            "Get all child tasks of a specific parent task in Planfix",
            GetChildTasksInput,
            GetChildTasksOutput,
            get_child_tasks_logic,
        ),
        ToolSpec(
            "planfix_create_comment",
            "Create a comment for a task in Planfix",
            CreateCommentInput,
            CreateCommentOutput,
            create_comment_logic,
        ),
        ToolSpec(
            "planfix_search_project",
            "Search for a project in Planfix by name",
            SearchProjectInput,
            SearchProjectOutput,
            search_project_logic,
        ),
        ToolSpec(
            "planfix_search_company",
            "Search for a company in Planfix by name",
            SearchCompanyInput,
            SearchCompanyOutput,
            search_company_logic,
        ),
        ToolSpec(
            "planfix_search_directory",
            "Search for a Planfix directory by name",
            SearchDirectoryInput,
            SearchDirectoryOutput,
            search_directory_logic,
        ),
        ToolSpec(
            "planfix_search_directory_entry",
            "Search for directory entry id by directory name and entry name",
            SearchDirectoryEntryInput,
            SearchDirectoryEntryOutput,
            search_directory_entry_logic,
        ),
        ToolSpec(
            "planfix_reports_list",
            "List all available reports in Planfix with their IDs and names",
            ReportsListInput,
            ReportsListOutput,
            reports_list_logic,
        ),
        ToolSpec(
            "planfix_get_report_fields",
            "Get fields of a specific report in Planfix",
            GetReportFieldsInput,
            GetReportFieldsOutput,
            get_report_fields_logic,
        ),
        ToolSpec(
            "planfix_request",
            "Make a generic request to the Planfix API with the specified method, path, and body. "
            "Use when swagger.json was read.",
            PlanfixRequestInput,
            PlanfixRequestOutput,
            planfix_request_logic,
        ),
    ]


def create_server(custom_fields: Optional[CustomFieldsConfig] = None) -> FastMCP:
    custom_fields = custom_fields or EMPTY_CUSTOM_FIELDS
    server = FastMCP("Planfix", instructions=SYSTEM_INSTRUCTIONS)
    for spec in build_tool_specs(custom_fields):
        server.add_tool(PlanfixTool.from_spec(spec))
    return server


# ---------------------------------------------------------------------------
# Entry Point
# ---------------------------------------------------------------------------

def run() -> None:
    """Entry point for console script planfix-mcp."""
    logging.basicConfig(level=LOG_LEVEL, format=LOG_FORMAT)
    logger.info("Starting Planfix MCP Server...")
    create_server(load_custom_fields_config()).run()


if __name__ == "__main__":
    run()
