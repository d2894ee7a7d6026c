"""Pytest configuration and fixtures for CMAS MCP Server tests.

``FakeAdminService`` answers Admin Service requests from in-memory WMI
class tables through ``httpx.MockTransport`` and records every request, so
tests can assert both results and how many calls were made.
"""

import copy
import itertools
import json
import re
from typing import Any, Dict, List, Optional

import httpx
import pytest
import pytest_asyncio

from cmas_mcp.config import AdminServiceConfig, Config, ServerConfig
from cmas_mcp.session import open_session

HOST = "sccm.example.com"

KEY_PROPERTIES = {
    "SMS_Collection": "CollectionID",
    "SMS_R_System": "ResourceId",
    "SMS_Scripts": "ScriptGuid",
    "SMS_CollectionSettings": "CollectionID",
    "SMS_MachineSettings": "ResourceID",
}

PATH_PATTERN = re.compile(
    r"^/AdminService/wmi/(?P<cls>\w+)(?:\.(?P<static>\w+))?"
    r"(?:\((?P<key>[^)]*)\))?(?:/AdminService\.(?P<action>\w+))?$"
)
CLAUSE_PATTERN = re.compile(
    r"^(?:(?P<func>startswith|endswith|contains)\((?P<fprop>\w+),(?P<fval>'.*')\)"
    r"|(?P<prop>\w+) eq (?P<val>.+))$"
)

SCRIPT_GUID = "6A3C1D47-2B8E-4F0A-9C55-0E7D2A1B3C4D"
DRAFT_SCRIPT_GUID = "0F9E8D7C-6B5A-4938-8271-605F4E3D2C1B"

VARIABLE_ARRAYS = ("CollectionVariables", "MachineVariables")
OBSCURED_VALUE = "********"


def _literal(text: str) -> Any:
    text = text.strip()
    if text.startswith("'") and text.endswith("'"):
        return text[1:-1].replace("''", "'")
    if text in ("true", "false"):
        return text == "true"
    return int(text)


def _public(obj: Dict[str, Any]) -> Dict[str, Any]:
    """Copy of a stored instance as the provider returns it: masked values obscured."""
    shown = copy.deepcopy(obj)
    for prop in VARIABLE_ARRAYS:
        for variable in shown.get(prop) or []:
            if variable.get("IsMasked"):
                variable["Value"] = OBSCURED_VALUE
    return shown


def _matches(obj: Dict[str, Any], expression: Optional[str]) -> bool:
    if not expression:
        return True
    for clause in expression.split(" and "):
        m = CLAUSE_PATTERN.match(clause.strip())
        if m is None:
            raise AssertionError(f"Unsupported filter clause: {clause}")
        if m.group("func"):
            actual = str(obj.get(m.group("fprop")) or "").lower()
            expected = _literal(m.group("fval")).lower()
            func = m.group("func")
            if func == "startswith" and not actual.startswith(expected):
                return False
            if func == "endswith" and not actual.endswith(expected):
                return False
            if func == "contains" and expected not in actual:
                return False
        else:
            actual = obj.get(m.group("prop"))
            expected = _literal(m.group("val"))
            if isinstance(expected, str):
                if str(actual or "").lower() != expected.lower():
                    return False
            elif actual != expected:
                return False
    return True


class FakeAdminService:
    """In-memory Admin Service behind an ``httpx.MockTransport``.

    Attributes:
        tables: WMI class name -> list of instances.
        requests: Every request seen, as dicts with method, path, params, body.
        fail_auth: Answer every request with 401.
        unreachable: Raise a transport error for every request.
    """

    def __init__(self) -> None:
        self.tables: Dict[str, List[Dict[str, Any]]] = {}
        self.requests: List[Dict[str, Any]] = []
        self.fail_auth = False
        self.unreachable = False
        self.refreshed: List[str] = []
        self.client_operations: List[Dict[str, Any]] = []
        self._collection_ids = itertools.count(100)
        self._operation_ids = itertools.count(16777300)
        self.transport = httpx.MockTransport(self.handle)

    # Fixture helpers

    def add(self, class_name: str, **properties: Any) -> Dict[str, Any]:
        obj = {"__CLASS": class_name, **properties}
        self.tables.setdefault(class_name, []).append(obj)
        return obj

    def get(self, class_name: str, key: Any) -> Optional[Dict[str, Any]]:
        key_prop = KEY_PROPERTIES[class_name]
        for obj in self.tables.get(class_name, []):
            if str(obj.get(key_prop)).lower() == str(key).lower():
                return obj
        return None

    def reset_requests(self) -> None:
        self.requests.clear()

    def calls(self, method: Optional[str] = None) -> List[Dict[str, Any]]:
        return [r for r in self.requests if method is None or r["method"] == method]

    @property
    def mutations(self) -> List[Dict[str, Any]]:
        return [r for r in self.requests if r["method"] != "GET"]

    # Transport

    def handle(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else None
        path = request.url.path
        params = dict(request.url.params)
        self.requests.append(
            {"method": request.method, "path": path, "params": params, "body": body}
        )
        if self.unreachable:
            raise httpx.ConnectError("connection refused", request=request)
        if self.fail_auth:
            return httpx.Response(401, text="Unauthorized")

        m = PATH_PATTERN.match(path)
        if m is None:
            return self._error(404, f"No route for {path}")
        class_name = m.group("cls")
        key = m.group("key")
        if key is not None:
            key = _literal(key)

        if m.group("static"):
            return self._static_action(class_name, m.group("static"), body)
        if m.group("action"):
            return self._instance_action(class_name, key, m.group("action"), body)
        if request.method == "GET":
            return self._get(class_name, key, params.get("$filter"))
        if request.method == "POST":
            return self._create(class_name, body)
        if request.method == "PATCH":
            return self._update(class_name, key, body)
        if request.method == "DELETE":
            return self._delete(class_name, key)
        return self._error(405, "Method not allowed")

    def _error(self, status: int, message: str) -> httpx.Response:
        return httpx.Response(status, json={"error": {"code": str(status), "message": message}})

    def _ok(self, items: List[Dict[str, Any]]) -> httpx.Response:
        return httpx.Response(
            200,
            json={"@odata.context": "https://fake/$metadata", "value": [_public(i) for i in items]},
        )

    def _get(self, class_name: str, key: Any, expression: Optional[str]) -> httpx.Response:
        if key is not None:
            obj = self.get(class_name, key)
            if obj is None:
                return self._error(404, f"{class_name} instance not found")
            return self._ok([obj])
        rows = [o for o in self.tables.get(class_name, []) if _matches(o, expression)]
        return self._ok(rows)

    def _create(self, class_name: str, body: Dict[str, Any]) -> httpx.Response:
        obj = {k: v for k, v in body.items() if not k.startswith("@")}
        if class_name == "SMS_Collection":
            obj["CollectionID"] = f"PS1{next(self._collection_ids):05d}"
            obj.setdefault("MemberCount", 0)
            obj.setdefault("CollectionRules", [])
        elif self.get(class_name, obj.get(KEY_PROPERTIES[class_name])) is not None:
            return self._error(409, "Instance already exists")
        created = self.add(class_name, **obj)
        return httpx.Response(201, json=_public(created))

    def _update(self, class_name: str, key: Any, body: Dict[str, Any]) -> httpx.Response:
        obj = self.get(class_name, key)
        if obj is None:
            return self._error(404, f"{class_name} instance not found")
        body = copy.deepcopy(body)
        for prop in VARIABLE_ARRAYS:
            stored = {str(v.get("Name")).lower(): v for v in obj.get(prop) or []}
            for variable in body.get(prop) or []:
                # an entry sent without a value keeps the stored one
                if "Value" not in variable:
                    previous = stored.get(str(variable.get("Name")).lower()) or {}
                    variable["Value"] = previous.get("Value", "")
        obj.update({k: v for k, v in body.items() if not k.startswith("@")})
        return httpx.Response(200, json=_public(obj))

    def _delete(self, class_name: str, key: Any) -> httpx.Response:
        obj = self.get(class_name, key)
        if obj is None:
            return self._error(404, f"{class_name} instance not found")
        self.tables[class_name].remove(obj)
        return httpx.Response(204)

    def _instance_action(
        self, class_name: str, key: Any, action: str, body: Dict[str, Any]
    ) -> httpx.Response:
        obj = self.get(class_name, key)
        if obj is None:
            return self._error(404, f"{class_name} instance not found")
        if action == "AddMembershipRule":
            obj.setdefault("CollectionRules", []).append(body["collectionRule"])
        elif action == "DeleteMembershipRule":
            rule = body["collectionRule"]
            obj["CollectionRules"] = [
                r for r in obj.get("CollectionRules", [])
                if not (
                    r.get("@odata.type") == rule.get("@odata.type")
                    and all(r.get(k) == v for k, v in rule.items() if not k.startswith("@"))
                )
            ]
        elif action == "RequestRefresh":
            self.refreshed.append(obj["CollectionID"])
        else:
            return self._error(400, f"Unknown action {action}")
        return httpx.Response(200, json={"ReturnValue": 0})

    def _static_action(self, class_name: str, action: str, body: Dict[str, Any]) -> httpx.Response:
        if class_name == "SMS_ClientOperation" and action == "InitiateClientOperationEx":
            operation_id = next(self._operation_ids)
            self.client_operations.append({"OperationID": operation_id, **body})
            return httpx.Response(200, json={"OperationID": operation_id, "ReturnValue": 0})
        return self._error(400, f"Unknown static action {class_name}.{action}")


def seed(service: FakeAdminService) -> FakeAdminService:
    service.add(
        "SMS_ProviderLocation",
        Machine=HOST,
        SiteCode="PS1",
        ProviderForLocalSite=True,
    )
    service.add("SMS_Collection", CollectionID="SMS00001", Name="All Systems",
                CollectionType=2, RefreshType=6, MemberCount=3, IsBuiltIn=True,
                CollectionRules=[])
    service.add("SMS_Collection", CollectionID="SMS00002", Name="All Users",
                CollectionType=1, RefreshType=6, MemberCount=0, IsBuiltIn=True,
                CollectionRules=[])
    service.add("SMS_Collection", CollectionID="PS100010", Name="Lab Servers",
                CollectionType=2, RefreshType=1, LimitToCollectionID="SMS00001",
                LimitToCollectionName="All Systems", MemberCount=1, Comment="lab",
                CollectionRules=[
                    {
                        "@odata.type": "#AdminService.SMS_CollectionRuleDirect",
                        "RuleName": "SRV01",
                        "ResourceClassName": "SMS_R_System",
                        "ResourceID": 16777220,
                    },
                    {
                        "@odata.type": "#AdminService.SMS_CollectionRuleQuery",
                        "RuleName": "All Servers",
                        "QueryExpression": "select * from SMS_R_System where OperatingSystemNameandVersion like '%Server%'",
                        "QueryID": 1,
                    },
                ])
    service.add("SMS_Collection", CollectionID="PS100011", Name="Lab Workstations",
                CollectionType=2, RefreshType=1, LimitToCollectionID="SMS00001",
                MemberCount=0, CollectionRules=[])
    service.add("SMS_Collection", CollectionID="PS100012", Name="Pilot",
                CollectionType=2, RefreshType=1, LimitToCollectionID="SMS00001",
                CollectionRules=[])
    service.add("SMS_Collection", CollectionID="PS100013", Name="Pilot",
                CollectionType=2, RefreshType=1, LimitToCollectionID="SMS00001",
                CollectionRules=[])

    service.add("SMS_R_System", ResourceId=16777220, Name="SRV01",
                ResourceDomainORWorkgroup="CONTOSO", Client=1, Active=1,
                OperatingSystemNameandVersion="Microsoft Windows NT Server 10.0")
    service.add("SMS_R_System", ResourceId=16777221, Name="SRV02",
                ResourceDomainORWorkgroup="CONTOSO", Client=1, Active=1)
    service.add("SMS_R_System", ResourceId=16777222, Name="WKS01",
                ResourceDomainORWorkgroup="CONTOSO", Client=1, Active=1)

    service.add("SMS_FullCollectionMembership", CollectionID="PS100010",
                ResourceID=16777220, Name="SRV01", Domain="CONTOSO",
                SiteCode="PS1", IsClient=True, IsDirect=True)

    service.add("SMS_Scripts", ScriptGuid=SCRIPT_GUID, ScriptName="Get-Uptime",
                ScriptVersion="2", ScriptType=0, ScriptHash="ABCDEF0123456789",
                ScriptHashAlgorithm="SHA256", ApprovalState=3, Author="CONTOSO\\ops")
    service.add("SMS_Scripts", ScriptGuid=DRAFT_SCRIPT_GUID, ScriptName="Draft",
                ScriptVersion="1", ScriptType=0, ScriptHash="00", ApprovalState=0)
    return service


@pytest.fixture
def fake_service() -> FakeAdminService:
    """A seeded fake Admin Service."""
    return seed(FakeAdminService())


@pytest_asyncio.fixture
async def session(fake_service):
    """An open session against the fake service, with request history cleared."""
    s = await open_session(HOST, transport=fake_service.transport)
    fake_service.reset_requests()
    yield s
    await s.close()


@pytest.fixture
def sample_server_config() -> ServerConfig:
    return ServerConfig(log_level="DEBUG", log_json=False)


@pytest.fixture
def sample_config(sample_server_config) -> Config:
    return Config(
        admin_service=AdminServiceConfig(host=HOST),
        server=sample_server_config,
    )
