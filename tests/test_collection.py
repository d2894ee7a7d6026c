"""Tests for collection operations."""

import pytest

from cmas_mcp.exceptions import (
    AlreadyExistsError,
    ConfirmationRequiredError,
    InvalidArgumentError,
    NotFoundError,
    ProtectedResourceError,
)
from cmas_mcp.models import (
    ById,
    ByName,
    ByObject,
    CollectionType,
    MutationOptions,
    RecurInterval,
    RefreshType,
)
from cmas_mcp.operations import (
    get_collection,
    get_collection_member,
    invoke_collection_update,
    new_collection,
    remove_collection,
    set_collection,
)

FORCE = MutationOptions(force=True)
WHAT_IF = MutationOptions(what_if=True)


class TestGetCollection:
    @pytest.mark.asyncio
    async def test_all(self, session):
        collections = await get_collection(session)
        assert len(collections) == 6

    @pytest.mark.asyncio
    async def test_by_name(self, session):
        [collection] = await get_collection(session, ByName(name="Lab Servers"))
        assert collection.id == "PS100010"
        assert collection.limiting_collection_id == "SMS00001"
        assert collection.comment == "lab"

    @pytest.mark.asyncio
    async def test_by_id(self, session):
        [collection] = await get_collection(session, ById(id="SMS00001"))
        assert collection.id == "SMS00001"
        assert collection.name == "All Systems"

    @pytest.mark.asyncio
    async def test_missing_id_is_empty(self, session):
        assert await get_collection(session, ById(id="PS199999")) == []

    @pytest.mark.asyncio
    async def test_wildcard_without_match_is_empty(self, session):
        assert await get_collection(session, ByName(name="Zzz*")) == []

    @pytest.mark.asyncio
    async def test_filter_by_type(self, session):
        collections = await get_collection(session, collection_type="User")
        assert [c.name for c in collections] == ["All Users"]

    @pytest.mark.asyncio
    async def test_by_returned_object(self, session):
        [first] = await get_collection(session, ByName(name="Lab Workstations"))
        [again] = await get_collection(session, ByObject(obj=first))
        assert again.id == "PS100011"


class TestNewCollection:
    @pytest.mark.asyncio
    async def test_create(self, session, fake_service):
        created = await new_collection(
            session,
            "Finance Laptops",
            ByName(name="All Systems"),
            comment="finance",
        )
        assert created.name == "Finance Laptops"
        assert created.id.startswith("PS1")
        assert created.limiting_collection_id == "SMS00001"

        [post] = fake_service.calls("POST")
        assert post["body"] == {
            "Name": "Finance Laptops",
            "CollectionType": 2,
            "LimitToCollectionID": "SMS00001",
            "RefreshType": 1,
            "Comment": "finance",
        }

    @pytest.mark.asyncio
    async def test_periodic_schedule(self, session, fake_service):
        await new_collection(
            session,
            "Nightly",
            ById(id="SMS00001"),
            refresh_type=RefreshType.PERIODIC,
            refresh_schedule=RecurInterval(days=1),
        )
        [post] = fake_service.calls("POST")
        assert post["body"]["RefreshType"] == 2
        assert post["body"]["RefreshSchedule"][0]["DaySpan"] == 1

    @pytest.mark.asyncio
    async def test_periodic_without_schedule(self, session, fake_service):
        with pytest.raises(InvalidArgumentError, match="requires a refresh schedule"):
            await new_collection(session, "Nightly", ById(id="SMS00001"), refresh_type="Periodic")
        assert fake_service.requests == []

    @pytest.mark.asyncio
    async def test_duplicate_name(self, session, fake_service):
        with pytest.raises(AlreadyExistsError, match="Collection 'Lab Servers' already exists"):
            await new_collection(session, "Lab Servers", ById(id="SMS00001"))
        assert fake_service.mutations == []

    @pytest.mark.asyncio
    async def test_create_twice(self, session, fake_service):
        first = await new_collection(session, "Foo", ById(id="SMS00001"))
        with pytest.raises(AlreadyExistsError, match="Collection 'Foo' already exists"):
            await new_collection(session, "Foo", ById(id="SMS00001"))
        assert len(fake_service.calls("POST")) == 1
        assert [c.id for c in await get_collection(session, ByName(name="Foo"))] == [first.id]

    @pytest.mark.asyncio
    async def test_missing_limiting_collection(self, session, fake_service):
        with pytest.raises(NotFoundError):
            await new_collection(session, "Orphan", ByName(name="Does Not Exist"))
        assert fake_service.mutations == []

    @pytest.mark.asyncio
    async def test_limiting_type_mismatch(self, session):
        with pytest.raises(InvalidArgumentError, match="cannot limit"):
            await new_collection(
                session, "Finance Users", ById(id="SMS00001"), collection_type=CollectionType.USER
            )

    @pytest.mark.asyncio
    async def test_wildcard_name(self, session, fake_service):
        with pytest.raises(InvalidArgumentError):
            await new_collection(session, "Lab*", ById(id="SMS00001"))
        assert fake_service.requests == []

    @pytest.mark.asyncio
    async def test_what_if(self, session, fake_service):
        result = await new_collection(session, "Preview", ById(id="SMS00001"), options=WHAT_IF)
        assert result is None
        assert fake_service.mutations == []


class TestSetCollection:
    @pytest.mark.asyncio
    async def test_update_comment(self, session, fake_service):
        updated = await set_collection(session, ByName(name="Lab Servers"), comment="updated")
        assert updated.comment == "updated"
        [patch] = fake_service.calls("PATCH")
        assert patch["path"] == "/AdminService/wmi/SMS_Collection('PS100010')"
        assert patch["body"] == {"Comment": "updated"}

    @pytest.mark.asyncio
    async def test_nothing_to_update(self, session, fake_service):
        with pytest.raises(InvalidArgumentError, match="Nothing to update"):
            await set_collection(session, ByName(name="Lab Servers"))
        assert fake_service.requests == []

    @pytest.mark.asyncio
    async def test_protected(self, session, fake_service):
        with pytest.raises(ProtectedResourceError):
            await set_collection(session, ById(id="SMS00001"), comment="no")
        assert fake_service.requests == []

    @pytest.mark.asyncio
    async def test_rename_to_taken_name(self, session, fake_service):
        with pytest.raises(AlreadyExistsError):
            await set_collection(session, ById(id="PS100010"), new_name="Lab Workstations")
        assert fake_service.mutations == []

    @pytest.mark.asyncio
    async def test_limit_to_itself(self, session):
        with pytest.raises(InvalidArgumentError, match="cannot limit itself"):
            await set_collection(
                session, ById(id="PS100010"), limiting_collection=ById(id="PS100010")
            )

    @pytest.mark.asyncio
    async def test_refresh_type_with_schedule(self, session, fake_service):
        updated = await set_collection(
            session,
            ById(id="PS100011"),
            refresh_type="Both",
            refresh_schedule=RecurInterval(hours=4),
        )
        assert updated.refresh_type is RefreshType.BOTH
        [patch] = fake_service.calls("PATCH")
        assert patch["body"]["RefreshType"] == 6
        assert patch["body"]["RefreshSchedule"][0]["HourSpan"] == 4


class TestRemoveCollection:
    @pytest.mark.asyncio
    async def test_protected_regardless_of_force(self, session, fake_service):
        with pytest.raises(ProtectedResourceError, match="Collection 'SMS00001' is a protected"):
            await remove_collection(session, ById(id="SMS00001"), options=FORCE)
        assert fake_service.requests == []

    @pytest.mark.asyncio
    async def test_protected_by_name(self, session, fake_service):
        with pytest.raises(ProtectedResourceError):
            await remove_collection(session, ByName(name="All Systems"), options=FORCE)
        assert fake_service.mutations == []

    @pytest.mark.asyncio
    async def test_requires_force(self, session, fake_service):
        with pytest.raises(ConfirmationRequiredError):
            await remove_collection(session, ById(id="PS100010"))
        assert fake_service.mutations == []

    @pytest.mark.asyncio
    async def test_remove(self, session, fake_service):
        removed = await remove_collection(
            session, ByName(name="Lab Servers"), options=FORCE, pass_thru=True
        )
        assert [c.id for c in removed] == ["PS100010"]
        assert fake_service.get("SMS_Collection", "PS100010") is None

    @pytest.mark.asyncio
    async def test_remove_returns_none_without_pass_thru(self, session):
        assert await remove_collection(session, ById(id="PS100011"), options=FORCE) is None

    @pytest.mark.asyncio
    async def test_wildcard_batch(self, session, fake_service):
        removed = await remove_collection(
            session, ByName(name="Lab*"), options=FORCE, pass_thru=True
        )
        assert sorted(c.id for c in removed) == ["PS100010", "PS100011"]
        assert len(fake_service.calls("DELETE")) == 2

    @pytest.mark.asyncio
    async def test_wildcard_batch_touching_protected(self, session, fake_service):
        with pytest.raises(ProtectedResourceError):
            await remove_collection(session, ByName(name="All*"), options=FORCE)
        assert fake_service.mutations == []

    @pytest.mark.asyncio
    async def test_wildcard_without_match(self, session, fake_service):
        assert await remove_collection(
            session, ByName(name="Zzz*"), options=FORCE, pass_thru=True
        ) == []
        assert fake_service.mutations == []

    @pytest.mark.asyncio
    async def test_missing(self, session):
        with pytest.raises(NotFoundError, match="Collection 'PS199999' not found"):
            await remove_collection(session, ById(id="PS199999"), options=FORCE)

    @pytest.mark.asyncio
    async def test_what_if_skips_force(self, session, fake_service):
        removed = await remove_collection(
            session, ById(id="PS100010"), options=WHAT_IF, pass_thru=True
        )
        assert removed == []
        assert fake_service.mutations == []


class TestMembersAndRefresh:
    @pytest.mark.asyncio
    async def test_members(self, session):
        [member] = await get_collection_member(session, ByName(name="Lab Servers"))
        assert member.resource_id == 16777220
        assert member.name == "SRV01"

    @pytest.mark.asyncio
    async def test_members_by_name_filter(self, session):
        assert await get_collection_member(session, ById(id="PS100010"), name="WKS*") == []

    @pytest.mark.asyncio
    async def test_members_of_missing_collection(self, session):
        with pytest.raises(NotFoundError):
            await get_collection_member(session, ByName(name="Nope"))

    @pytest.mark.asyncio
    async def test_refresh(self, session, fake_service):
        assert await invoke_collection_update(session, ById(id="PS100010")) is True
        assert fake_service.refreshed == ["PS100010"]

    @pytest.mark.asyncio
    async def test_refresh_what_if(self, session, fake_service):
        assert await invoke_collection_update(session, ById(id="PS100010"), WHAT_IF) is False
        assert fake_service.refreshed == []
