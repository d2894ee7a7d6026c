"""Tests for sessions and the session manager."""

import pytest
from pydantic import SecretStr

from cmas_mcp.exceptions import (
    AuthenticationError,
    ConnectionError as CMASConnectionError,
    NotConnectedError,
)
from cmas_mcp.session import Credential, SessionManager, open_session

HOST = "sccm.example.com"


class TestCredential:
    def test_domain_prepended(self):
        credential = Credential(username="admin", password=SecretStr("x"), domain="CONTOSO")
        assert credential.qualified_username == "CONTOSO\\admin"

    @pytest.mark.parametrize("username", ["CONTOSO\\admin", "admin@contoso.com"])
    def test_qualified_username_kept(self, username):
        credential = Credential(username=username, password=SecretStr("x"), domain="OTHER")
        assert credential.qualified_username == username

    def test_auth_flow(self):
        credential = Credential(username="CONTOSO\\admin", password=SecretStr("x"))
        assert credential.auth() is not None


class TestOpenSession:
    @pytest.mark.asyncio
    async def test_reads_site_code(self, fake_service):
        session = await open_session(HOST, transport=fake_service.transport)
        try:
            assert session.site_code == "PS1"
            assert session.site_server_host == HOST
            assert fake_service.requests[0]["path"] == "/AdminService/wmi/SMS_ProviderLocation"
        finally:
            await session.close()

    @pytest.mark.asyncio
    async def test_prefers_local_site_provider(self, fake_service):
        fake_service.tables["SMS_ProviderLocation"].insert(
            0, {"SiteCode": "CAS", "ProviderForLocalSite": False}
        )
        session = await open_session(HOST, transport=fake_service.transport)
        assert session.site_code == "PS1"
        await session.close()

    @pytest.mark.asyncio
    async def test_rejected_credential(self, fake_service):
        fake_service.fail_auth = True
        with pytest.raises(CMASConnectionError) as exc_info:
            await open_session(HOST, transport=fake_service.transport)
        assert isinstance(exc_info.value.cause, AuthenticationError)

    @pytest.mark.asyncio
    async def test_unreachable_host(self, fake_service):
        fake_service.unreachable = True
        with pytest.raises(CMASConnectionError, match=HOST):
            await open_session(HOST, transport=fake_service.transport)

    @pytest.mark.asyncio
    async def test_missing_site_code(self, fake_service):
        fake_service.tables["SMS_ProviderLocation"] = []
        with pytest.raises(CMASConnectionError, match="site code"):
            await open_session(HOST, transport=fake_service.transport)

    @pytest.mark.asyncio
    async def test_describe_hides_password(self, fake_service):
        credential = Credential(username="admin", password=SecretStr("hunter2"), domain="CONTOSO")
        session = await open_session(HOST, credential=credential, transport=fake_service.transport)
        summary = session.describe()
        await session.close()
        assert summary["username"] == "CONTOSO\\admin"
        assert "hunter2" not in str(summary)


class TestSessionManager:
    def test_current_without_connect(self):
        with pytest.raises(NotConnectedError, match="call connect first"):
            SessionManager().current()

    @pytest.mark.asyncio
    async def test_connect_and_disconnect(self, fake_service):
        manager = SessionManager(transport=fake_service.transport)
        session = await manager.connect(HOST)
        assert manager.is_connected
        assert manager.current() is session

        await manager.disconnect()
        assert not manager.is_connected
        with pytest.raises(NotConnectedError):
            manager.current()

    @pytest.mark.asyncio
    async def test_reconnect_replaces_session(self, fake_service):
        manager = SessionManager(transport=fake_service.transport)
        first = await manager.connect(HOST)
        second = await manager.connect(HOST)
        assert manager.current() is second
        assert first.client.client is None
        await manager.disconnect()

    @pytest.mark.asyncio
    async def test_failed_connect_keeps_previous_session(self, fake_service):
        manager = SessionManager(transport=fake_service.transport)
        first = await manager.connect(HOST)
        fake_service.fail_auth = True
        with pytest.raises(CMASConnectionError):
            await manager.connect(HOST)
        assert manager.current() is first
        await manager.disconnect()

    @pytest.mark.asyncio
    async def test_disconnect_when_not_connected(self):
        await SessionManager().disconnect()
