"""MCP tool definitions.

Each tool maps one resource operation onto a JSON input schema. Tool
dictionaries follow the MCP shape (``name``, ``description``,
``inputSchema``) plus private keys: ``_method`` is the HTTP method the tool
ultimately issues (used to filter tools by ``ALLOWED_HTTP_METHODS``) and
``_handler`` is the coroutine that runs it against a session.

Example:
    >>> generator = ToolGenerator(allowed_methods=["GET"])
    >>> [t["name"] for t in generator.generate_tools()][:2]
    ['get_collection', 'get_collection_member']
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable

from pydantic import ValidationError

from . import operations as ops
from .exceptions import InvalidArgumentError
from .logging_config import get_logger
from .models import (
    CollectionType,
    MutationOptions,
    RecurInterval,
    RefreshType,
    RuleType,
    optional_reference,
    reference,
)
from .session import Session

logger = get_logger(__name__)

Handler = Callable[[Session, dict[str, Any]], Awaitable[Any]]

SESSION_TOOLS = ("connect", "disconnect")


# Schema fragments


def _string(description: str, enum: list[str] | None = None) -> dict[str, Any]:
    schema: dict[str, Any] = {"type": "string", "description": description}
    if enum:
        schema["enum"] = enum
    return schema


def _bool(description: str) -> dict[str, Any]:
    return {"type": "boolean", "description": description, "default": False}


def _ref_props(prefix: str, label: str, id_type: str = "string") -> dict[str, Any]:
    id_key = {"device": "resource_id", "script": "script_guid"}.get(prefix, f"{prefix}_id")
    return {
        f"{prefix}_name": _string(f"{label} name (supports * and ? wildcards where noted)"),
        id_key: {"type": id_type, "description": f"{label} id"},
    }


def _mutation_props(high_impact: bool = False, pass_thru: bool = False) -> dict[str, Any]:
    props = {"what_if": _bool("Describe the change without making it")}
    if high_impact:
        props["force"] = _bool("Confirm this destructive action")
    if pass_thru:
        props["pass_thru"] = _bool("Return the removed items")
    return props


def _schedule_props() -> dict[str, Any]:
    return {
        "refresh_type": _string("Membership refresh type", [r.value for r in RefreshType]),
        "refresh_days": {"type": "integer", "minimum": 0, "maximum": 31, "description": "Periodic refresh interval, days"},
        "refresh_hours": {"type": "integer", "minimum": 0, "maximum": 23, "description": "Periodic refresh interval, hours"},
        "refresh_minutes": {"type": "integer", "minimum": 0, "maximum": 59, "description": "Periodic refresh interval, minutes"},
    }


def _schema(properties: dict[str, Any], required: list[str] | None = None) -> dict[str, Any]:
    schema: dict[str, Any] = {"type": "object", "properties": properties}
    if required:
        schema["required"] = required
    return schema


# Argument helpers


def _options(args: dict[str, Any]) -> MutationOptions:
    return MutationOptions(
        what_if=bool(args.get("what_if", False)),
        force=bool(args.get("force", False)),
    )


def _device_id(value: Any) -> Any:
    if isinstance(value, str) and value.strip().isdigit():
        return int(value)
    return value


def _collection_ref(args: dict[str, Any], prefix: str = "collection", required: bool = True):
    build = reference if required else optional_reference
    return build(
        name=args.get(f"{prefix}_name"),
        id=args.get(f"{prefix}_id"),
        label=prefix.replace("_", " "),
    )


def _device_ref(args: dict[str, Any], required: bool = True):
    build = reference if required else optional_reference
    return build(
        name=args.get("device_name"),
        id=_device_id(args.get("resource_id")),
        label="device",
    )


def _primary_ref(args: dict[str, Any], id_key: str, label: str, id_cast=None):
    resource_id = args.get(id_key)
    if id_cast is not None and resource_id is not None:
        resource_id = id_cast(resource_id)
    return optional_reference(
        name=args.get("name"),
        id=resource_id,
        input_object=args.get("input_object"),
        label=label,
    )


def _schedule(args: dict[str, Any]) -> RecurInterval | None:
    spans = {k: args.get(f"refresh_{k}") for k in ("days", "hours", "minutes")}
    if all(v is None for v in spans.values()):
        return None
    try:
        return RecurInterval(**{k: v or 0 for k, v in spans.items()})
    except ValidationError as e:
        problems = "; ".join(
            f"refresh_{err['loc'][0]}: {err['msg']}" for err in e.errors()
        )
        raise InvalidArgumentError(f"Invalid refresh schedule ({problems})") from e


def _number(args: dict[str, Any], key: str, default: Any, cast=float) -> Any:
    value = args.get(key)
    if value is None:
        return default
    try:
        return cast(value)
    except (TypeError, ValueError) as e:
        raise InvalidArgumentError(f"Argument '{key}' must be a number, got {value!r}") from e


def _required(args: dict[str, Any], key: str) -> Any:
    value = args.get(key)
    if value in (None, ""):
        raise InvalidArgumentError(f"Missing required argument '{key}'")
    return value


# Handlers


async def _get_collection(session: Session, args: dict[str, Any]) -> Any:
    ref = _primary_ref(args, "collection_id", "collection")
    return await ops.get_collection(session, ref, args.get("collection_type"))


async def _new_collection(session: Session, args: dict[str, Any]) -> Any:
    return await ops.new_collection(
        session,
        name=_required(args, "name"),
        limiting_collection=_collection_ref(args, "limiting_collection"),
        collection_type=args.get("collection_type") or CollectionType.DEVICE,
        refresh_type=args.get("refresh_type") or RefreshType.MANUAL,
        comment=args.get("comment"),
        refresh_schedule=_schedule(args),
        options=_options(args),
    )


async def _set_collection(session: Session, args: dict[str, Any]) -> Any:
    return await ops.set_collection(
        session,
        reference(
            name=args.get("name"),
            id=args.get("collection_id"),
            input_object=args.get("input_object"),
            label="collection",
        ),
        new_name=args.get("new_name"),
        comment=args.get("comment"),
        refresh_type=args.get("refresh_type"),
        refresh_schedule=_schedule(args),
        limiting_collection=_collection_ref(args, "limiting_collection", required=False),
        options=_options(args),
    )


async def _remove_collection(session: Session, args: dict[str, Any]) -> Any:
    return await ops.remove_collection(
        session,
        reference(
            name=args.get("name"),
            id=args.get("collection_id"),
            input_object=args.get("input_object"),
            label="collection",
        ),
        options=_options(args),
        pass_thru=bool(args.get("pass_thru")),
    )


async def _get_collection_member(session: Session, args: dict[str, Any]) -> Any:
    return await ops.get_collection_member(
        session, _collection_ref(args), name=args.get("member_name")
    )


async def _invoke_collection_update(session: Session, args: dict[str, Any]) -> Any:
    requested = await ops.invoke_collection_update(
        session, _collection_ref(args), options=_options(args)
    )
    return {"refresh_requested": requested}


async def _get_membership_rule(session: Session, args: dict[str, Any]) -> Any:
    return await ops.get_membership_rule(
        session,
        _collection_ref(args),
        rule_type=args.get("rule_type"),
        rule_name=args.get("rule_name"),
    )


async def _add_membership_rule(session: Session, args: dict[str, Any]) -> Any:
    rule_type = RuleType.parse(_required(args, "rule_type"))
    collection = _collection_ref(args)
    options = _options(args)
    if rule_type == RuleType.DIRECT:
        return await ops.add_direct_rule(
            session, collection, _device_ref(args), args.get("rule_name"), options
        )
    if rule_type == RuleType.QUERY:
        return await ops.add_query_rule(
            session,
            collection,
            _required(args, "rule_name"),
            _required(args, "query_expression"),
            options,
        )
    target = _collection_ref(args, "target_collection")
    if rule_type == RuleType.INCLUDE:
        return await ops.add_include_rule(session, collection, target, options)
    return await ops.add_exclude_rule(session, collection, target, options)


async def _remove_membership_rule(session: Session, args: dict[str, Any]) -> Any:
    rule_type = RuleType.parse(_required(args, "rule_type"))
    if rule_type == RuleType.DIRECT:
        target = _device_ref(args, required=False)
    else:
        target = _collection_ref(args, "target_collection", required=False)
    return await ops.remove_membership_rule(
        session,
        _collection_ref(args),
        rule_type,
        rule_name=args.get("rule_name"),
        target_ref=target,
        options=_options(args),
        pass_thru=bool(args.get("pass_thru")),
    )


async def _get_device(session: Session, args: dict[str, Any]) -> Any:
    return await ops.get_device(session, _primary_ref(args, "resource_id", "device", _device_id))


async def _get_collection_variable(session: Session, args: dict[str, Any]) -> Any:
    return await ops.get_collection_variable(
        session, _collection_ref(args), args.get("variable_name")
    )


async def _new_collection_variable(session: Session, args: dict[str, Any]) -> Any:
    return await ops.new_collection_variable(
        session,
        _collection_ref(args),
        _required(args, "variable_name"),
        str(args.get("value") or ""),
        bool(args.get("is_masked", False)),
        _options(args),
    )


async def _set_collection_variable(session: Session, args: dict[str, Any]) -> Any:
    return await ops.set_collection_variable(
        session,
        _collection_ref(args),
        _required(args, "variable_name"),
        args.get("value"),
        args.get("is_masked"),
        _options(args),
    )


async def _remove_collection_variable(session: Session, args: dict[str, Any]) -> Any:
    return await ops.remove_collection_variable(
        session,
        _collection_ref(args),
        _required(args, "variable_name"),
        _options(args),
        bool(args.get("pass_thru")),
    )


async def _get_device_variable(session: Session, args: dict[str, Any]) -> Any:
    return await ops.get_device_variable(session, _device_ref(args), args.get("variable_name"))


async def _new_device_variable(session: Session, args: dict[str, Any]) -> Any:
    return await ops.new_device_variable(
        session,
        _device_ref(args),
        _required(args, "variable_name"),
        str(args.get("value") or ""),
        bool(args.get("is_masked", False)),
        _options(args),
    )


async def _set_device_variable(session: Session, args: dict[str, Any]) -> Any:
    return await ops.set_device_variable(
        session,
        _device_ref(args),
        _required(args, "variable_name"),
        args.get("value"),
        args.get("is_masked"),
        _options(args),
    )


async def _remove_device_variable(session: Session, args: dict[str, Any]) -> Any:
    return await ops.remove_device_variable(
        session,
        _device_ref(args),
        _required(args, "variable_name"),
        _options(args),
        bool(args.get("pass_thru")),
    )


async def _get_script(session: Session, args: dict[str, Any]) -> Any:
    return await ops.get_script(session, _primary_ref(args, "script_guid", "script"))


async def _invoke_script(session: Session, args: dict[str, Any]) -> Any:
    script = reference(
        name=args.get("script_name"), id=args.get("script_guid"), label="script"
    )
    devices = [reference(id=_device_id(r), label="device") for r in args.get("resource_ids") or []]
    devices += [reference(name=n, label="device") for n in args.get("device_names") or []]
    return await ops.invoke_script(
        session,
        script,
        collection_ref=_collection_ref(args, required=False),
        devices=devices or None,
        parameters=args.get("parameters"),
        options=_options(args),
    )


async def _get_script_execution_status(session: Session, args: dict[str, Any]) -> Any:
    return await ops.get_script_execution_status(session, _required(args, "operation_id"))


async def _wait_script_execution(session: Session, args: dict[str, Any]) -> Any:
    return await ops.wait_script_execution(
        session,
        _required(args, "operation_id"),
        expected_results=_number(args, "expected_results", 1, int),
        interval=_number(args, "interval", 5.0),
        timeout=_number(args, "timeout", 300.0),
    )


# Table


def _tool(
    name: str,
    description: str,
    method: str,
    handler: Handler | None,
    properties: dict[str, Any],
    required: list[str] | None = None,
) -> dict[str, Any]:
    return {
        "name": name,
        "description": description,
        "inputSchema": _schema(properties, required),
        "_method": method,
        "_handler": handler,
    }


def _variable_props(parent: str, label: str, mutation: dict[str, Any], value: bool = False):
    props = {
        **(_ref_props(parent, label, "integer" if parent == "device" else "string")),
        "variable_name": _string("Variable name; letters, digits, '_' and '-'"),
    }
    if value:
        props["value"] = _string("Variable value")
        props["is_masked"] = {"type": "boolean", "description": "Hide the value from readers"}
    return {**props, **mutation}


def _tool_table() -> list[dict[str, Any]]:
    collection_props = {
        "name": _string("Collection name (supports * and ? wildcards)"),
        "collection_id": _string("Collection id, e.g. SMS00001"),
        "input_object": {"type": "object", "description": "A collection returned by another tool"},
    }
    rule_types = [r.value for r in RuleType]
    return [
        _tool(
            "connect",
            "Connect to a Configuration Manager Admin Service and make it the active session.",
            "GET",
            None,
            {
                "host": _string("SMS Provider host; defaults to CMAS_HOST"),
                "username": _string("User name (DOMAIN\\user); defaults to CMAS_USERNAME"),
                "password": _string("Password; defaults to CMAS_PASSWORD"),
                "domain": _string("Windows domain"),
                "skip_certificate_check": _bool("Skip TLS certificate validation"),
            },
        ),
        _tool("disconnect", "Forget the active Admin Service session.", "GET", None, {}),
        _tool(
            "get_collection",
            "List collections by name (wildcards allowed) or id; all collections when neither is given.",
            "GET",
            _get_collection,
            {
                **collection_props,
                "collection_type": _string("Only this type", [t.value for t in CollectionType]),
            },
        ),
        _tool(
            "get_collection_member",
            "List the members of a collection.",
            "GET",
            _get_collection_member,
            {**_ref_props("collection", "Collection"), "member_name": _string("Member name filter (wildcards allowed)")},
        ),
        _tool(
            "get_membership_rule",
            "List a collection's membership rules.",
            "GET",
            _get_membership_rule,
            {
                **_ref_props("collection", "Collection"),
                "rule_type": _string("Only rules of this type", rule_types),
                "rule_name": _string("Rule name filter (wildcards allowed)"),
            },
        ),
        _tool(
            "get_device",
            "List devices by name (wildcards allowed) or resource id.",
            "GET",
            _get_device,
            {
                "name": _string("Device name (supports * and ? wildcards)"),
                "resource_id": {"type": "integer", "description": "Resource id"},
                "input_object": {"type": "object", "description": "A device returned by another tool"},
            },
        ),
        _tool(
            "get_collection_variable",
            "List a collection's variables. Masked values are never returned.",
            "GET",
            _get_collection_variable,
            _variable_props("collection", "Collection", {}),
        ),
        _tool(
            "get_device_variable",
            "List a device's variables. Masked values are never returned.",
            "GET",
            _get_device_variable,
            _variable_props("device", "Device", {}),
        ),
        _tool(
            "get_script",
            "List Run Scripts by name (wildcards allowed) or guid.",
            "GET",
            _get_script,
            {
                "name": _string("Script name (supports * and ? wildcards)"),
                "script_guid": _string("Script guid"),
                "input_object": {"type": "object", "description": "A script returned by another tool"},
            },
        ),
        _tool(
            "get_script_execution_status",
            "Per-device results of a script operation. Unknown ids return status 'error' with not_found.",
            "GET",
            _get_script_execution_status,
            {"operation_id": {"type": "integer", "description": "Operation id from invoke_script"}},
            ["operation_id"],
        ),
        _tool(
            "wait_script_execution",
            "Poll a script operation until the expected number of devices reported or the timeout passes.",
            "GET",
            _wait_script_execution,
            {
                "operation_id": {"type": "integer", "description": "Operation id from invoke_script"},
                "expected_results": {"type": "integer", "minimum": 1, "default": 1},
                "interval": {"type": "number", "description": "Seconds between polls", "default": 5},
                "timeout": {"type": "number", "description": "Give up after this many seconds", "default": 300},
            },
            ["operation_id"],
        ),
        _tool(
            "new_collection",
            "Create a collection limited to an existing collection.",
            "POST",
            _new_collection,
            {
                "name": _string("New collection name"),
                **_ref_props("limiting_collection", "Limiting collection"),
                "collection_type": _string("Collection type", [t.value for t in CollectionType]),
                "comment": _string("Comment"),
                **_schedule_props(),
                **_mutation_props(),
            },
            ["name"],
        ),
        _tool(
            "invoke_collection_update",
            "Ask the site to re-evaluate a collection's membership now.",
            "POST",
            _invoke_collection_update,
            {**_ref_props("collection", "Collection"), **_mutation_props()},
        ),
        _tool(
            "add_membership_rule",
            "Add a direct, query, include or exclude membership rule to a collection.",
            "POST",
            _add_membership_rule,
            {
                **_ref_props("collection", "Collection"),
                "rule_type": _string("Rule type", rule_types),
                "rule_name": _string("Rule name (required for query rules)"),
                "query_expression": _string("WQL query (query rules)"),
                **_ref_props("device", "Device (direct rules)", "integer"),
                **_ref_props("target_collection", "Included or excluded collection"),
                **_mutation_props(),
            },
            ["rule_type"],
        ),
        _tool(
            "invoke_script",
            "Run an approved script on a collection or on devices. Returns an operation id without waiting.",
            "POST",
            _invoke_script,
            {
                **_ref_props("script", "Script"),
                **_ref_props("collection", "Target collection"),
                "resource_ids": {"type": "array", "items": {"type": "integer"}, "description": "Target device ids"},
                "device_names": {"type": "array", "items": {"type": "string"}, "description": "Target device names"},
                "parameters": {"type": "object", "additionalProperties": {"type": "string"}},
                **_mutation_props(high_impact=True),
            },
        ),
        _tool(
            "set_collection",
            "Change a collection's name, comment, refresh settings or limiting collection.",
            "PATCH",
            _set_collection,
            {
                **collection_props,
                "new_name": _string("New collection name"),
                "comment": _string("Comment"),
                **_schedule_props(),
                **_ref_props("limiting_collection", "Limiting collection"),
                **_mutation_props(),
            },
        ),
        _tool(
            "new_collection_variable",
            "Create a collection variable.",
            "PATCH",
            _new_collection_variable,
            _variable_props("collection", "Collection", _mutation_props(), value=True),
            ["variable_name"],
        ),
        _tool(
            "set_collection_variable",
            "Change a collection variable's value or mask flag.",
            "PATCH",
            _set_collection_variable,
            _variable_props("collection", "Collection", _mutation_props(), value=True),
            ["variable_name"],
        ),
        _tool(
            "new_device_variable",
            "Create a device variable.",
            "PATCH",
            _new_device_variable,
            _variable_props("device", "Device", _mutation_props(), value=True),
            ["variable_name"],
        ),
        _tool(
            "set_device_variable",
            "Change a device variable's value or mask flag.",
            "PATCH",
            _set_device_variable,
            _variable_props("device", "Device", _mutation_props(), value=True),
            ["variable_name"],
        ),
        _tool(
            "remove_collection",
            "Delete a collection, or all collections matching a wildcard name. Built-in collections are refused.",
            "DELETE",
            _remove_collection,
            {**collection_props, **_mutation_props(high_impact=True, pass_thru=True)},
        ),
        _tool(
            "remove_membership_rule",
            "Remove membership rules by rule name (wildcards allowed) or target.",
            "DELETE",
            _remove_membership_rule,
            {
                **_ref_props("collection", "Collection"),
                "rule_type": _string("Rule type", rule_types),
                "rule_name": _string("Rule name (wildcards allowed)"),
                **_ref_props("device", "Device (direct rules)", "integer"),
                **_ref_props("target_collection", "Included or excluded collection"),
                **_mutation_props(high_impact=True, pass_thru=True),
            },
            ["rule_type"],
        ),
        _tool(
            "remove_collection_variable",
            "Remove a collection variable, or all matching a wildcard name.",
            "DELETE",
            _remove_collection_variable,
            _variable_props("collection", "Collection", _mutation_props(high_impact=True, pass_thru=True)),
            ["variable_name"],
        ),
        _tool(
            "remove_device_variable",
            "Remove a device variable, or all matching a wildcard name.",
            "DELETE",
            _remove_device_variable,
            _variable_props("device", "Device", _mutation_props(high_impact=True, pass_thru=True)),
            ["variable_name"],
        ),
    ]


class ToolGenerator:
    """Build the tool list, keeping only tools whose method is allowed.

    Attributes:
        allowed_methods: HTTP methods whose tools are exposed.
    """

    def __init__(self, allowed_methods: list[str] | None = None) -> None:
        self.allowed_methods = [m.upper() for m in (allowed_methods or ["GET"])]

    def generate_tools(self) -> list[dict[str, Any]]:
        tools = [
            t for t in _tool_table()
            if t["name"] in SESSION_TOOLS or t["_method"] in self.allowed_methods
        ]
        logger.info(
            "Generated tools",
            extra={"tool_count": len(tools), "allowed_methods": self.allowed_methods},
        )
        return tools
