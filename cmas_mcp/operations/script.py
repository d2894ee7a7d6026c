"""Run Scripts: lookup, dispatch and execution status.

Scripts are dispatched as client operation type 135 through
``SMS_ClientOperation.InitiateClientOperationEx``. Its ``Param`` argument is
a base64 encoded ``ScriptContent`` document that pins the script version
and hash, plus the parameter set and its SHA256 hash. Dispatch returns an
operation id immediately; per-device results appear in
``SMS_ScriptsExecutionStatus`` as clients report back.
"""

from __future__ import annotations

import asyncio
import base64
import hashlib
from typing import Any

from lxml import etree

from .. import odata
from ..exceptions import ApiError, InvalidArgumentError
from ..models import (
    ById,
    ByName,
    ByObject,
    MutationOptions,
    ResourceKind,
    Script,
    ScriptExecution,
    ScriptResourceResult,
    ScriptStatusFound,
    ScriptStatusNotFound,
    ScriptStatusResult,
)
from ..resolver import ResourceResolver
from ..session import Session
from .base import clean, should_process
from .collection import first_object

Reference = ByName | ById | ByObject

KIND = ResourceKind.SCRIPT
RUN_SCRIPT_OPERATION = 135
APPROVED = 3
# Device targets are addressed through All Systems.
ALL_SYSTEMS = "SMS00001"
STATUS_CLASS = "SMS_ScriptsExecutionStatus"


async def get_script(session: Session, ref: Reference | None = None) -> list[Script]:
    """Return the scripts matching ``ref`` (all when None)."""
    matches = await ResourceResolver(session).find(ref, KIND)
    return [Script.model_validate(clean(m)) for m in matches]


def _parameters_xml(parameters: dict[str, str]) -> str:
    root = etree.Element("ScriptParameters")
    for name, value in parameters.items():
        etree.SubElement(
            root,
            "ScriptParameter",
            ParameterGroupGuid="",
            ParameterGroupName="PG_",
            ParameterName=name,
            ParameterDataType="System.String",
            ParameterVisibility="0",
            ParameterType="0",
            ParameterValue=str(value),
        )
    return etree.tostring(root, encoding="unicode")


def build_script_content(script: dict[str, Any], parameters: dict[str, str]) -> str:
    """Return the base64 ``Param`` payload for a Run Script operation."""
    parameters_xml = _parameters_xml(parameters)
    parameters_hash = hashlib.sha256(parameters_xml.encode("utf-16-le")).hexdigest().upper()

    content = etree.Element("ScriptContent", ScriptGuid=script["ScriptGuid"])
    etree.SubElement(content, "ScriptVersion").text = str(script.get("ScriptVersion") or "1")
    etree.SubElement(content, "ScriptType").text = str(script.get("ScriptType") or 0)
    script_hash = etree.SubElement(content, "ScriptHash", ScriptHashAlg="SHA256")
    script_hash.text = script.get("ScriptHash") or ""
    content.append(etree.fromstring(parameters_xml))
    group_hash = etree.SubElement(content, "ParameterGroupHash", ParameterHashAlg="SHA256")
    group_hash.text = parameters_hash

    document = etree.tostring(content, encoding="unicode")
    return base64.b64encode(document.encode("utf-8")).decode("ascii")


async def invoke_script(
    session: Session,
    script_ref: Reference,
    collection_ref: Reference | None = None,
    devices: list[Reference] | None = None,
    parameters: dict[str, str] | None = None,
    options: MutationOptions | None = None,
) -> ScriptExecution | None:
    """Dispatch a script to a collection or to a set of devices.

    Returns as soon as the site accepts the operation; poll with
    :func:`get_script_execution_status`.

    Returns:
        The dispatched execution, or None under what-if.

    Raises:
        InvalidArgumentError: Unless exactly one of ``collection_ref`` and
            ``devices`` is given, or if the script is not approved.
        NotFoundError: If the script, collection or a device cannot be
            resolved.
        ConfirmationRequiredError: Without ``force``.
    """
    if (collection_ref is None) == (not devices):
        raise InvalidArgumentError(
            "Specify exactly one of a collection or a list of devices as the script target"
        )
    parameters = {str(k): str(v) for k, v in (parameters or {}).items()}

    resolver = ResourceResolver(session)
    script_guid = await resolver.resolve_one(script_ref, KIND)
    script = await resolver.ensure_exists(KIND, script_guid)
    approval = script.get("ApprovalState")
    if approval is not None and approval != APPROVED:
        raise InvalidArgumentError(
            f"Script '{script.get('ScriptName')}' is not approved (ApprovalState={approval})"
        )

    resource_ids: list[int] = []
    if collection_ref is not None:
        collection = await resolver.resolve_parent(collection_ref, ResourceKind.COLLECTION)
        collection_id = collection["CollectionID"]
        target = f"collection {collection.get('Name')} ({collection_id})"
    else:
        for device_ref in devices or []:
            resource_id = await resolver.resolve_one(device_ref, ResourceKind.DEVICE)
            resource_ids.append(int(resource_id))
        collection_id = ALL_SYSTEMS
        target = f"devices {', '.join(str(r) for r in resource_ids)}"

    action = f"Invoke script '{script.get('ScriptName')}'"
    if not should_process(options, action, target, high_impact=True):
        return None

    body = {
        "Type": RUN_SCRIPT_OPERATION,
        "TargetCollectionID": collection_id,
        "TargetResourceIDs": resource_ids,
        "RandomizationWindow": 0,
        "Param": build_script_content(script, parameters),
    }
    response = await session.invoke(
        "POST", "wmi/SMS_ClientOperation.InitiateClientOperationEx", body=body
    )
    result = first_object(response) or {}
    operation_id = result.get("OperationID")
    if operation_id is None:
        raise ApiError(
            f"Script dispatch returned no operation id (ReturnValue={result.get('ReturnValue')})"
        )

    session.logger.info(
        "Dispatched script",
        extra={"operation_id": operation_id, "script_guid": script_guid},
    )
    return ScriptExecution(
        operation_id=int(operation_id),
        script_guid=str(script_guid),
        script_name=script.get("ScriptName") or "",
        collection_id=collection_id if collection_ref is not None else None,
        target_resource_ids=resource_ids,
        input_parameters=parameters,
    )


async def get_script_execution_status(
    session: Session, operation_id: int | str
) -> ScriptStatusResult:
    """Return the per-device results of a script operation.

    An unknown operation id produces a :class:`ScriptStatusNotFound`
    result instead of an exception.

    Raises:
        InvalidArgumentError: If ``operation_id`` is not an integer.
    """
    try:
        operation_id = int(operation_id)
    except (TypeError, ValueError) as e:
        raise InvalidArgumentError(f"Invalid operation id: {operation_id!r}") from e

    try:
        response = await session.invoke(
            "GET",
            odata.class_path(STATUS_CLASS),
            params=odata.filter_params(odata.eq("ClientOperationId", operation_id)),
        )
    except ApiError as e:
        if e.status_code != 404:
            raise
        response = None

    rows = odata.values(response)
    if not rows:
        return ScriptStatusNotFound(operation_id=operation_id)
    return ScriptStatusFound(
        operation_id=operation_id,
        results=[ScriptResourceResult.model_validate(clean(r)) for r in rows],
    )


async def wait_script_execution(
    session: Session,
    operation_id: int | str,
    expected_results: int = 1,
    interval: float = 5.0,
    timeout: float = 300.0,
) -> ScriptStatusResult:
    """Poll until ``expected_results`` devices have reported, or time runs out.

    Returns the last status seen, which may still be not-found or partial.
    """
    if interval <= 0 or timeout <= 0:
        raise InvalidArgumentError("interval and timeout must be positive")
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while True:
        status = await get_script_execution_status(session, operation_id)
        if isinstance(status, ScriptStatusFound) and len(status.results) >= expected_results:
            return status
        if loop.time() + interval > deadline:
            return status
        await asyncio.sleep(interval)
