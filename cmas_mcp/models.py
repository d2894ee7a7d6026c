"""Typed models for Admin Service resources.

Admin Service objects use WMI property names (``CollectionID``,
``LimitToCollectionID``, ...). Models accept those names as aliases and
expose snake_case attributes; ``to_api`` methods produce request bodies.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, computed_field, field_validator

from .exceptions import InvalidArgumentError

Id = Union[str, int]


class ResourceKind(Enum):
    """Resource kinds that can be referenced by name."""

    COLLECTION = ("Collection", "SMS_Collection", "CollectionID", "Name")
    DEVICE = ("Device", "SMS_R_System", "ResourceId", "Name")
    SCRIPT = ("Script", "SMS_Scripts", "ScriptGuid", "ScriptName")

    def __init__(
        self, label: str, class_name: str, id_property: str, name_property: str
    ) -> None:
        self.label = label
        self.class_name = class_name
        self.id_property = id_property
        self.name_property = name_property


# Resource references


class ByName(BaseModel):
    model_config = ConfigDict(frozen=True)

    by: Literal["name"] = "name"
    name: str

    def __str__(self) -> str:
        return self.name


class ById(BaseModel):
    model_config = ConfigDict(frozen=True)

    by: Literal["id"] = "id"
    id: Id

    def __str__(self) -> str:
        return str(self.id)


class ByObject(BaseModel):
    """A previously returned object (model or mapping) carrying its own id."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    by: Literal["object"] = "object"
    obj: Any

    def id_for(self, kind: ResourceKind) -> Id:
        """Return the object's id for ``kind``.

        Raises:
            InvalidArgumentError: If the object carries no id for that kind.
        """
        data = self.obj
        if isinstance(data, BaseModel):
            data = data.model_dump(by_alias=True)
        if isinstance(data, dict):
            # WMI property names are case-insensitive (ResourceID vs ResourceId)
            folded = {str(k).lower(): v for k, v in data.items()}
            for key in (kind.id_property, _snake(kind.id_property), "id"):
                if folded.get(key.lower()) not in (None, ""):
                    return folded[key.lower()]
        raise InvalidArgumentError(
            f"Input object does not carry a {kind.label} id ({kind.id_property})"
        )

    def __str__(self) -> str:
        return repr(self.obj)


ResourceReference = Annotated[Union[ByName, ById, ByObject], Field(discriminator="by")]


def reference(
    name: str | None = None,
    id: Id | None = None,
    input_object: Any = None,
    label: str = "resource",
) -> ByName | ById | ByObject:
    """Build a reference from mutually exclusive identifying parameters.

    Raises:
        InvalidArgumentError: Unless exactly one of name, id, input_object
            is supplied.
    """
    supplied = [
        p for p, v in (("name", name), ("id", id), ("input_object", input_object))
        if v not in (None, "")
    ]
    if len(supplied) != 1:
        if supplied:
            detail = f"got {', '.join(supplied)}"
        else:
            detail = "got none"
        raise InvalidArgumentError(
            f"Specify exactly one of name, id or input_object for the {label} ({detail})",
            {"label": label, "supplied": supplied},
        )
    if name not in (None, ""):
        return ByName(name=name)
    if id not in (None, ""):
        return ById(id=id)
    return ByObject(obj=input_object)


def optional_reference(
    name: str | None = None,
    id: Id | None = None,
    input_object: Any = None,
    label: str = "resource",
) -> ByName | ById | ByObject | None:
    """Like :func:`reference`, but returns None when nothing is supplied."""
    if all(v in (None, "") for v in (name, id, input_object)):
        return None
    return reference(name=name, id=id, input_object=input_object, label=label)


def _snake(name: str) -> str:
    out = []
    for i, char in enumerate(name):
        if char.isupper() and i and not name[i - 1].isupper():
            out.append("_")
        out.append(char.lower())
    return "".join(out)


# Collections


class CollectionType(str, Enum):
    USER = "User"
    DEVICE = "Device"

    @property
    def api_value(self) -> int:
        return _COLLECTION_TYPE_API[self]

    @classmethod
    def parse(cls, value: Any) -> "CollectionType":
        if isinstance(value, cls):
            return value
        if isinstance(value, int):
            for member, code in _COLLECTION_TYPE_API.items():
                if code == value:
                    return member
        if isinstance(value, str):
            for member in cls:
                if member.value.lower() == value.lower():
                    return member
        raise InvalidArgumentError(f"Unknown collection type: {value!r}")


_COLLECTION_TYPE_API = {CollectionType.USER: 1, CollectionType.DEVICE: 2}


class RefreshType(str, Enum):
    MANUAL = "Manual"
    PERIODIC = "Periodic"
    CONTINUOUS = "Continuous"
    BOTH = "Both"

    @property
    def api_value(self) -> int:
        return _REFRESH_TYPE_API[self]

    @classmethod
    def parse(cls, value: Any) -> "RefreshType":
        if isinstance(value, cls):
            return value
        if isinstance(value, int):
            for member, code in _REFRESH_TYPE_API.items():
                if code == value:
                    return member
        if isinstance(value, str):
            for member in cls:
                if member.value.lower() == value.lower():
                    return member
        raise InvalidArgumentError(f"Unknown refresh type: {value!r}")


_REFRESH_TYPE_API = {
    RefreshType.MANUAL: 1,
    RefreshType.PERIODIC: 2,
    RefreshType.CONTINUOUS: 4,
    RefreshType.BOTH: 6,
}


class RecurInterval(BaseModel):
    """Periodic refresh schedule (``SMS_ST_RecurInterval``)."""

    days: int = Field(default=0, ge=0, le=31)
    hours: int = Field(default=0, ge=0, le=23)
    minutes: int = Field(default=0, ge=0, le=59)
    start_time: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc).replace(microsecond=0)
    )

    def to_api(self) -> dict[str, Any]:
        if not (self.days or self.hours or self.minutes):
            raise InvalidArgumentError(
                "A refresh schedule needs a non-zero days, hours or minutes span"
            )
        return {
            "@odata.type": "#AdminService.SMS_ST_RecurInterval",
            "DaySpan": self.days,
            "HourSpan": self.hours,
            "MinuteSpan": self.minutes,
            "StartTime": self.start_time.isoformat(),
            "IsGMT": self.start_time.tzinfo is not None,
        }


class Collection(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = Field(alias="CollectionID")
    name: str = Field(alias="Name")
    collection_type: CollectionType = Field(
        default=CollectionType.DEVICE, alias="CollectionType"
    )
    limiting_collection_id: str | None = Field(default=None, alias="LimitToCollectionID")
    limiting_collection_name: str | None = Field(
        default=None, alias="LimitToCollectionName"
    )
    refresh_type: RefreshType = Field(default=RefreshType.MANUAL, alias="RefreshType")
    comment: str | None = Field(default=None, alias="Comment")
    refresh_schedule: list[dict[str, Any]] | None = Field(
        default=None, alias="RefreshSchedule"
    )
    member_count: int | None = Field(default=None, alias="MemberCount")
    is_built_in: bool | None = Field(default=None, alias="IsBuiltIn")

    @field_validator("collection_type", mode="before")
    @classmethod
    def _parse_collection_type(cls, v: Any) -> CollectionType:
        return CollectionType.parse(v)

    @field_validator("refresh_type", mode="before")
    @classmethod
    def _parse_refresh_type(cls, v: Any) -> RefreshType:
        return RefreshType.parse(v)


class CollectionMember(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    collection_id: str = Field(alias="CollectionID")
    resource_id: int = Field(alias="ResourceID")
    name: str | None = Field(default=None, alias="Name")
    domain: str | None = Field(default=None, alias="Domain")
    site_code: str | None = Field(default=None, alias="SiteCode")
    is_client: bool | None = Field(default=None, alias="IsClient")
    is_direct: bool | None = Field(default=None, alias="IsDirect")


class Device(BaseModel):
    """An ``SMS_R_System`` resource; unmodeled properties are kept as extras."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    resource_id: int = Field(alias="ResourceId")
    name: str | None = Field(default=None, alias="Name")
    domain: str | None = Field(default=None, alias="ResourceDomainORWorkgroup")
    client: int | None = Field(default=None, alias="Client")
    active: int | None = Field(default=None, alias="Active")
    operating_system: str | None = Field(
        default=None, alias="OperatingSystemNameandVersion"
    )


# Membership rules


class RuleType(str, Enum):
    DIRECT = "Direct"
    QUERY = "Query"
    INCLUDE = "Include"
    EXCLUDE = "Exclude"

    @property
    def odata_type(self) -> str:
        return f"#AdminService.{self.class_name}"

    @property
    def class_name(self) -> str:
        return _RULE_CLASSES[self]

    @classmethod
    def parse(cls, value: Any) -> "RuleType":
        if isinstance(value, cls):
            return value
        text = str(value)
        for member, class_name in _RULE_CLASSES.items():
            if text.lower() in (member.value.lower(), class_name.lower()):
                return member
            if text.endswith(class_name):
                return member
        raise InvalidArgumentError(f"Unknown membership rule type: {value!r}")


_RULE_CLASSES = {
    RuleType.DIRECT: "SMS_CollectionRuleDirect",
    RuleType.QUERY: "SMS_CollectionRuleQuery",
    RuleType.INCLUDE: "SMS_CollectionRuleIncludeCollection",
    RuleType.EXCLUDE: "SMS_CollectionRuleExcludeCollection",
}


class _Rule(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    collection_id: str | None = None
    rule_name: str | None = Field(default=None, alias="RuleName")

    def _base(self, rule_type: RuleType) -> dict[str, Any]:
        body: dict[str, Any] = {"@odata.type": rule_type.odata_type}
        if self.rule_name:
            body["RuleName"] = self.rule_name
        return body


class DirectRule(_Rule):
    rule_type: Literal["Direct"] = "Direct"
    resource_id: int = Field(alias="ResourceID")
    resource_class_name: str = Field(default="SMS_R_System", alias="ResourceClassName")

    def to_api(self) -> dict[str, Any]:
        return {
            **self._base(RuleType.DIRECT),
            "ResourceClassName": self.resource_class_name,
            "ResourceID": self.resource_id,
        }


class QueryRule(_Rule):
    rule_type: Literal["Query"] = "Query"
    rule_name: str = Field(alias="RuleName")
    query_expression: str = Field(alias="QueryExpression")
    query_id: int | None = Field(default=None, alias="QueryID")

    def to_api(self) -> dict[str, Any]:
        return {
            **self._base(RuleType.QUERY),
            "QueryExpression": self.query_expression,
        }


class IncludeRule(_Rule):
    rule_type: Literal["Include"] = "Include"
    include_collection_id: str = Field(alias="IncludeCollectionID")

    def to_api(self) -> dict[str, Any]:
        return {
            **self._base(RuleType.INCLUDE),
            "IncludeCollectionID": self.include_collection_id,
        }


class ExcludeRule(_Rule):
    rule_type: Literal["Exclude"] = "Exclude"
    exclude_collection_id: str = Field(alias="ExcludeCollectionID")

    def to_api(self) -> dict[str, Any]:
        return {
            **self._base(RuleType.EXCLUDE),
            "ExcludeCollectionID": self.exclude_collection_id,
        }


MembershipRule = Annotated[
    Union[DirectRule, QueryRule, IncludeRule, ExcludeRule],
    Field(discriminator="rule_type"),
]

_membership_rule_adapter: TypeAdapter[Any] = TypeAdapter(MembershipRule)


def rule_from_api(data: dict[str, Any], collection_id: str | None = None) -> Any:
    """Build a rule variant from an API object with an ``@odata.type``."""
    rule_type = RuleType.parse(data.get("@odata.type") or data.get("__CLASS", ""))
    payload = {k: v for k, v in data.items() if not k.startswith(("@", "__"))}
    payload["rule_type"] = rule_type.value
    payload["collection_id"] = collection_id
    return _membership_rule_adapter.validate_python(payload)


def rule_target(rule: Any) -> Any:
    """The value a rule points at: resource id, query, or collection id."""
    if isinstance(rule, DirectRule):
        return rule.resource_id
    if isinstance(rule, QueryRule):
        return rule.query_expression
    if isinstance(rule, IncludeRule):
        return rule.include_collection_id
    return rule.exclude_collection_id


# Variables


class Variable(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str = Field(alias="Name")
    value: str | None = Field(default=None, alias="Value")
    is_masked: bool = Field(default=False, alias="IsMasked")

    def to_api(self) -> dict[str, Any]:
        return {
            "@odata.type": "#AdminService.SMS_CollectionVariable",
            "Name": self.name,
            "Value": self.value or "",
            "IsMasked": self.is_masked,
        }


class CollectionVariable(Variable):
    collection_id: str
    collection_name: str | None = None


class DeviceVariable(Variable):
    resource_id: int
    resource_name: str | None = None

    def to_api(self) -> dict[str, Any]:
        body = super().to_api()
        body["@odata.type"] = "#AdminService.SMS_MachineVariable"
        return body


# Scripts


class Script(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    script_guid: str = Field(alias="ScriptGuid")
    script_name: str = Field(alias="ScriptName")
    script_version: str | None = Field(default=None, alias="ScriptVersion")
    script_hash: str | None = Field(default=None, alias="ScriptHash")
    script_hash_algorithm: str | None = Field(default=None, alias="ScriptHashAlgorithm")
    approval_state: int | None = Field(default=None, alias="ApprovalState")
    author: str | None = Field(default=None, alias="Author")
    parameter_list: str | None = Field(default=None, alias="ParamsDefinition")


class ScriptExecution(BaseModel):
    operation_id: int
    script_guid: str
    script_name: str
    collection_id: str | None = None
    target_resource_ids: list[int] = Field(default_factory=list)
    input_parameters: dict[str, str] = Field(default_factory=dict)
    status: str = "Dispatched"


class ScriptResourceResult(BaseModel):
    """One device's row from ``SMS_ScriptsExecutionStatus``."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    resource_id: int | None = Field(default=None, alias="ResourceId")
    device_name: str | None = Field(default=None, alias="DeviceName")
    collection_id: str | None = Field(default=None, alias="CollectionId")
    script_guid: str | None = Field(default=None, alias="ScriptGuid")
    script_name: str | None = Field(default=None, alias="ScriptName")
    execution_state: int | None = Field(default=None, alias="ScriptExecutionState")
    exit_code: int | None = Field(default=None, alias="ScriptExitCode")
    output: str | None = Field(default=None, alias="ScriptOutput")
    last_update_time: str | None = Field(default=None, alias="LastUpdateTime")

    @property
    def succeeded(self) -> bool:
        return self.execution_state == 0


class ScriptStatusFound(BaseModel):
    status: Literal["ok"] = "ok"
    operation_id: int
    results: list[ScriptResourceResult]

    @computed_field
    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.succeeded)

    @computed_field
    @property
    def failed(self) -> int:
        return len(self.results) - self.succeeded


class ScriptStatusNotFound(BaseModel):
    status: Literal["error"] = "error"
    operation_id: int
    not_found: Literal[True] = True
    message: str = ""

    def model_post_init(self, context: Any, /) -> None:
        if not self.message:
            self.message = f"Script execution operation '{self.operation_id}' not found"


ScriptStatusResult = Union[ScriptStatusFound, ScriptStatusNotFound]


class MutationOptions(BaseModel):
    """Cross-cutting flags for mutating operations.

    Attributes:
        what_if: Log the intended action and skip the mutating call.
        force: Confirm high-impact actions without prompting.
    """

    what_if: bool = False
    force: bool = False
