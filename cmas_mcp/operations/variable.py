"""Collection and device variables.

Collection variables live in the ``CollectionVariables`` array of
``SMS_CollectionSettings``; device variables in the ``MachineVariables``
array of ``SMS_MachineSettings``. A settings object only exists once a
variable (or another setting) has been defined, so the first variable is
created with POST and later changes PATCH the whole array.

Masked variables are write-only: the provider returns them with an
obscured value, and results built here never echo a masked value back.
Stored masked entries are re-sent without a ``Value`` so the provider
keeps the secret it already holds.
"""

from __future__ import annotations

from typing import Any

from .. import odata
from ..exceptions import AlreadyExistsError, ApiError, NotFoundError
from ..models import (
    ById,
    ByName,
    ByObject,
    CollectionVariable,
    DeviceVariable,
    MutationOptions,
    ResourceKind,
)
from ..resolver import ResourceResolver
from ..session import Session
from .base import require_any, should_process, validate_variable_name

Reference = ByName | ById | ByObject


class VariableScope:
    """Where a family of variables is stored and how results are shaped."""

    def __init__(
        self,
        kind: ResourceKind,
        settings_class: str,
        key_property: str,
        variables_property: str,
        variable_type: str,
        label: str,
    ) -> None:
        self.kind = kind
        self.settings_class = settings_class
        self.key_property = key_property
        self.variables_property = variables_property
        self.variable_type = variable_type
        self.label = label

    def settings_path(self, parent_id: Any) -> str:
        return odata.keyed_path(self.settings_class, parent_id)

    def new_settings_body(
        self, session: Session, parent_id: Any, variables: list[dict[str, Any]]
    ) -> dict[str, Any]:
        body = {
            self.key_property: parent_id,
            "LocaleID": 1033,
            self.variables_property: variables,
        }
        if self.kind is ResourceKind.DEVICE:
            body["SourceSite"] = session.site_code
        return body

    def to_result(self, parent: dict[str, Any], raw: dict[str, Any]) -> Any:
        data = {
            "Name": raw.get("Name"),
            "Value": None if raw.get("IsMasked") else raw.get("Value"),
            "IsMasked": bool(raw.get("IsMasked")),
        }
        if self.kind is ResourceKind.COLLECTION:
            return CollectionVariable(
                **data,
                collection_id=parent["CollectionID"],
                collection_name=parent.get("Name"),
            )
        return DeviceVariable(
            **data,
            resource_id=int(parent["ResourceId"]),
            resource_name=parent.get("Name"),
        )

    def variable_body(self, name: str, value: str | None, is_masked: bool) -> dict[str, Any]:
        return {
            "@odata.type": f"#AdminService.{self.variable_type}",
            "Name": name,
            "Value": value if value is not None else "",
            "IsMasked": is_masked,
        }

    def stored_body(self, raw: dict[str, Any]) -> dict[str, Any]:
        """Body for an unchanged variable in a PATCHed array."""
        body = self.variable_body(raw.get("Name"), raw.get("Value"), bool(raw.get("IsMasked")))
        if body["IsMasked"]:
            del body["Value"]
        return body


COLLECTION_SCOPE = VariableScope(
    kind=ResourceKind.COLLECTION,
    settings_class="SMS_CollectionSettings",
    key_property="CollectionID",
    variables_property="CollectionVariables",
    variable_type="SMS_CollectionVariable",
    label="Collection variable",
)

DEVICE_SCOPE = VariableScope(
    kind=ResourceKind.DEVICE,
    settings_class="SMS_MachineSettings",
    key_property="ResourceID",
    variables_property="MachineVariables",
    variable_type="SMS_MachineVariable",
    label="Device variable",
)


async def _load(
    session: Session, scope: VariableScope, parent_ref: Reference
) -> tuple[dict[str, Any], dict[str, Any] | None, list[dict[str, Any]]]:
    """Resolve the parent and read its settings object.

    Raises:
        NotFoundError: If the parent cannot be resolved.
    """
    parent = await ResourceResolver(session).resolve_parent(parent_ref, scope.kind)
    parent_id = parent[scope.kind.id_property]
    try:
        response = await session.invoke("GET", scope.settings_path(parent_id))
    except ApiError as e:
        if e.status_code != 404:
            raise
        response = None
    items = odata.values(response)
    settings = items[0] if items else None
    variables = list((settings or {}).get(scope.variables_property) or [])
    return parent, settings, variables


def _find(variables: list[dict[str, Any]], name: str) -> list[dict[str, Any]]:
    return [v for v in variables if odata.wildcard_match(name, v.get("Name"))]


def _stored(scope: VariableScope, variables: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return [scope.stored_body(v) for v in variables]


async def _save(
    session: Session,
    scope: VariableScope,
    parent_id: Any,
    settings: dict[str, Any] | None,
    variables: list[dict[str, Any]],
) -> None:
    if settings is None:
        await session.invoke(
            "POST",
            odata.class_path(scope.settings_class),
            body=scope.new_settings_body(session, parent_id, variables),
        )
    else:
        await session.invoke(
            "PATCH",
            scope.settings_path(parent_id),
            body={scope.variables_property: variables},
        )


async def get_variable(
    session: Session,
    scope: VariableScope,
    parent_ref: Reference,
    name: str | None = None,
) -> list[Any]:
    """List a parent's variables, optionally filtered by (wildcard) name.

    A parent without variables, or a name that matches nothing, yields an
    empty list.

    Raises:
        NotFoundError: If the parent cannot be resolved.
    """
    parent, _, variables = await _load(session, scope, parent_ref)
    if name:
        variables = _find(variables, name)
    return [scope.to_result(parent, v) for v in variables]


async def new_variable(
    session: Session,
    scope: VariableScope,
    parent_ref: Reference,
    name: str,
    value: str,
    is_masked: bool = False,
    options: MutationOptions | None = None,
) -> Any:
    """Create a variable on a collection or device.

    Raises:
        InvalidArgumentError: For an invalid variable name.
        NotFoundError: If the parent cannot be resolved.
        AlreadyExistsError: If the parent already has a variable ``name``.
    """
    validate_variable_name(name)
    parent, settings, variables = await _load(session, scope, parent_ref)
    parent_id = parent[scope.kind.id_property]
    if _find(variables, name):
        raise AlreadyExistsError(scope.label, name)

    target = f"{parent.get('Name')} ({parent_id})"
    if not should_process(options, f"New {scope.label.lower()} '{name}'", target):
        return None

    variables = _stored(scope, variables) + [scope.variable_body(name, value, is_masked)]
    await _save(session, scope, parent_id, settings, variables)
    session.logger.info(
        f"Created {scope.label.lower()}",
        extra={"variable_name": name, "parent_id": parent_id, "is_masked": is_masked},
    )
    return scope.to_result(parent, {"Name": name, "Value": value, "IsMasked": is_masked})


async def set_variable(
    session: Session,
    scope: VariableScope,
    parent_ref: Reference,
    name: str,
    value: str | None = None,
    is_masked: bool | None = None,
    options: MutationOptions | None = None,
) -> Any:
    """Change a variable's value and/or mask flag.

    Raises:
        InvalidArgumentError: If neither value nor is_masked is supplied,
            or the name is invalid.
        NotFoundError: If the parent or the variable does not exist.
    """
    require_any(scope.label.lower(), value=value, is_masked=is_masked)
    validate_variable_name(name)
    parent, settings, variables = await _load(session, scope, parent_ref)
    parent_id = parent[scope.kind.id_property]
    matches = _find(variables, name)
    if not matches:
        raise NotFoundError(scope.label, name)

    target = f"{parent.get('Name')} ({parent_id})"
    if not should_process(options, f"Set {scope.label.lower()} '{name}'", target):
        return None

    current = matches[0]
    was_masked = bool(current.get("IsMasked"))
    masked = was_masked if is_masked is None else is_masked
    updated = scope.variable_body(current["Name"], value, masked)
    if value is None:
        if was_masked:
            # keep the stored secret; the value read back is obscured
            del updated["Value"]
        else:
            updated["Value"] = current.get("Value") or ""
    variables = [updated if v is current else scope.stored_body(v) for v in variables]
    await _save(session, scope, parent_id, settings, variables)
    return scope.to_result(parent, updated)


async def remove_variable(
    session: Session,
    scope: VariableScope,
    parent_ref: Reference,
    name: str,
    options: MutationOptions | None = None,
    pass_thru: bool = False,
) -> list[Any] | None:
    """Remove one variable, or every variable matching a wildcard name.

    Returns:
        The removed variables when ``pass_thru`` is set, otherwise None.

    Raises:
        NotFoundError: If the parent cannot be resolved, or an exact name
            matches nothing.
    """
    if not odata.has_wildcard(name):
        validate_variable_name(name)
    parent, settings, variables = await _load(session, scope, parent_ref)
    parent_id = parent[scope.kind.id_property]
    matches = _find(variables, name)
    if not matches and not odata.has_wildcard(name):
        raise NotFoundError(scope.label, name)

    target = f"{parent.get('Name')} ({parent_id})"
    confirmed = [
        v for v in matches
        if should_process(
            options,
            f"Remove {scope.label.lower()} '{v.get('Name')}'",
            target,
            high_impact=True,
        )
    ]
    if confirmed:
        remaining = [v for v in variables if not any(v is c for c in confirmed)]
        await _save(session, scope, parent_id, settings, _stored(scope, remaining))
    removed = [scope.to_result(parent, v) for v in confirmed]
    return removed if pass_thru else None


# Collection-scoped wrappers


async def get_collection_variable(
    session: Session, collection_ref: Reference, name: str | None = None
) -> list[CollectionVariable]:
    return await get_variable(session, COLLECTION_SCOPE, collection_ref, name)


async def new_collection_variable(
    session: Session,
    collection_ref: Reference,
    name: str,
    value: str,
    is_masked: bool = False,
    options: MutationOptions | None = None,
) -> CollectionVariable | None:
    return await new_variable(
        session, COLLECTION_SCOPE, collection_ref, name, value, is_masked, options
    )


async def set_collection_variable(
    session: Session,
    collection_ref: Reference,
    name: str,
    value: str | None = None,
    is_masked: bool | None = None,
    options: MutationOptions | None = None,
) -> CollectionVariable | None:
    return await set_variable(
        session, COLLECTION_SCOPE, collection_ref, name, value, is_masked, options
    )


async def remove_collection_variable(
    session: Session,
    collection_ref: Reference,
    name: str,
    options: MutationOptions | None = None,
    pass_thru: bool = False,
) -> list[CollectionVariable] | None:
    return await remove_variable(
        session, COLLECTION_SCOPE, collection_ref, name, options, pass_thru
    )


# Device-scoped wrappers


async def get_device_variable(
    session: Session, device_ref: Reference, name: str | None = None
) -> list[DeviceVariable]:
    return await get_variable(session, DEVICE_SCOPE, device_ref, name)


async def new_device_variable(
    session: Session,
    device_ref: Reference,
    name: str,
    value: str,
    is_masked: bool = False,
    options: MutationOptions | None = None,
) -> DeviceVariable | None:
    return await new_variable(
        session, DEVICE_SCOPE, device_ref, name, value, is_masked, options
    )


async def set_device_variable(
    session: Session,
    device_ref: Reference,
    name: str,
    value: str | None = None,
    is_masked: bool | None = None,
    options: MutationOptions | None = None,
) -> DeviceVariable | None:
    return await set_variable(
        session, DEVICE_SCOPE, device_ref, name, value, is_masked, options
    )


async def remove_device_variable(
    session: Session,
    device_ref: Reference,
    name: str,
    options: MutationOptions | None = None,
    pass_thru: bool = False,
) -> list[DeviceVariable] | None:
    return await remove_variable(
        session, DEVICE_SCOPE, device_ref, name, options, pass_thru
    )
