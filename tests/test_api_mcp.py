# Tests for the MCP endpoint.
# Created: 2026-10-09

import json

import pytest
from conftest import READER_PASSWORD, event_loop_running

import albert.api.v1.mcp as mcp_module
from albert.abilities import BaseAbility
from albert.api.services import build_services
from albert.api.v1.mcp import (
    DISCOVER_TOOL,
    EXECUTE_TOOL,
    INFO_TOOL,
    METHOD_NOT_FOUND,
    PROTOCOL_VERSION,
)
from albert.context import get_current_user

MCP = "/api/v1/mcp"


class HiddenAbility(BaseAbility):
    id = "test/hidden"
    label = "Hidden"
    description = "Not exposed over MCP."
    meta = {"mcp": {"public": False}}

    def execute(self, args):
        return {"secret": True}


def rpc(method, params=None, request_id=1):
    body = {"jsonrpc": "2.0", "method": method, "id": request_id}
    if params is not None:
        body["params"] = params
    return body


def call_tool(name, arguments=None):
    return rpc("tools/call", {"name": name, "arguments": arguments or {}})


@pytest.fixture
def bearer(flow):
    _, tokens = flow.tokens()
    # The login cookie must not authenticate MCP requests.
    flow.client.cookies.clear()
    return {"Authorization": f"Bearer {tokens['access_token']}"}


@pytest.fixture
def mcp(client, bearer):
    def _post(body):
        return client.post(MCP, json=body, headers=bearer)

    return _post


class TestAuthentication:
    def test_missing_token(self, client):
        resp = client.post(MCP, json=rpc("ping"))
        assert resp.status_code == 401
        assert resp.json()["code"] == "oauth_missing_token"
        assert resp.headers["www-authenticate"] == (
            'Bearer realm="MCP", resource="https://example.test/api/v1/oauth/resource"'
        )

    def test_invalid_token(self, client):
        resp = client.post(MCP, json=rpc("ping"), headers={"Authorization": "Bearer garbage"})
        assert resp.status_code == 401
        assert resp.json()["code"] == "oauth_invalid_token"

    def test_session_cookie_is_not_enough(self, flow, client):
        flow.login()
        assert client.post(MCP, json=rpc("ping")).status_code == 401

    def test_expired_token(self, mcp, clock):
        clock.advance(hours=1, seconds=1)
        resp = mcp(rpc("ping"))
        assert resp.status_code == 401
        assert resp.json()["code"] == "oauth_invalid_token"

    def test_regenerated_keys(self, mcp, services):
        assert mcp(rpc("ping")).status_code == 200
        services.regenerate_keys()
        assert mcp(rpc("ping")).status_code == 401

    def test_keys_regenerated_by_another_process(self, mcp, settings, clock):
        assert mcp(rpc("ping")).status_code == 200
        # The CLI builds its own services against the same database.
        build_services(settings, clock=clock).regenerate_keys(actor="cli")
        resp = mcp(rpc("ping"))
        assert resp.status_code == 401
        assert resp.json()["code"] == "oauth_invalid_token"

    def test_tokens_issued_after_outside_regeneration_work(self, flow, client, settings, clock):
        flow.tokens()
        build_services(settings, clock=clock).regenerate_keys(actor="cli")
        _, tokens = flow.tokens()
        headers = {"Authorization": f"Bearer {tokens['access_token']}"}
        assert client.post(MCP, json=rpc("ping"), headers=headers).status_code == 200

    def test_revoked_connection(self, mcp, services, admin_user):
        token = services.repositories.access_tokens.get_access_tokens_by_user(admin_user.id)[0]
        services.repositories.access_tokens.revoke_access_token(token.identifier)
        resp = mcp(rpc("ping"))
        assert resp.status_code == 401
        assert resp.json()["code"] == "oauth_invalid_token"


class TestProtocol:
    def test_dispatch_runs_off_the_event_loop_as_the_token_user(
        self, mcp, services, admin_user, monkeypatch
    ):
        seen = []
        handle_rpc = mcp_module.handle_rpc

        def recording(services, rpc):
            seen.append((event_loop_running(), get_current_user()))
            return handle_rpc(services, rpc)

        monkeypatch.setattr(mcp_module, "handle_rpc", recording)
        assert mcp(rpc("ping")).status_code == 200
        assert len(seen) == 1
        off_loop, user = seen[0]
        assert off_loop is False
        assert user.id == admin_user.id

    def test_initialize(self, mcp):
        resp = mcp(rpc("initialize", {"clientInfo": {"name": "pytest", "version": "1"}}))
        assert resp.status_code == 200
        assert resp.headers["mcp-session-id"]
        result = resp.json()["result"]
        assert result["protocolVersion"] == PROTOCOL_VERSION
        assert result["serverInfo"]["name"] == "albert"
        assert result["serverInfo"]["title"] == "Test Site"
        assert result["capabilities"] == {"tools": {"listChanged": False}}

    def test_ping(self, mcp):
        assert mcp(rpc("ping", request_id="abc")).json() == {
            "jsonrpc": "2.0",
            "result": {},
            "id": "abc",
        }

    def test_tools_list(self, mcp):
        tools = mcp(rpc("tools/list")).json()["result"]["tools"]
        assert [t["name"] for t in tools] == [DISCOVER_TOOL, INFO_TOOL, EXECUTE_TOOL]

    def test_unknown_method(self, mcp):
        body = mcp(rpc("resources/list")).json()
        assert body["error"]["code"] == METHOD_NOT_FOUND

    def test_notification_accepted(self, mcp):
        resp = mcp({"jsonrpc": "2.0", "method": "notifications/initialized"})
        assert resp.status_code == 202

    def test_parse_error(self, client, bearer):
        resp = client.post(
            MCP, content=b"{not json", headers={**bearer, "Content-Type": "application/json"}
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == -32700

    def test_invalid_request(self, mcp):
        resp = mcp({"jsonrpc": "1.0", "method": "ping", "id": 3})
        assert resp.status_code == 400
        body = resp.json()
        assert body["error"]["code"] == -32600
        assert body["id"] == 3

    def test_tools_call_without_name(self, mcp):
        body = mcp(rpc("tools/call", {"arguments": {}})).json()
        assert body["error"]["code"] == -32602

    def test_unknown_tool(self, mcp):
        body = mcp(call_tool("no-such-tool")).json()
        assert body["error"]["code"] == -32602
        assert "no-such-tool" in body["error"]["message"]


class TestTools:
    def test_discover(self, mcp, services):
        services.abilities.add_ability(HiddenAbility())
        result = mcp(call_tool(DISCOVER_TOOL)).json()["result"]
        names = [a["name"] for a in result["structuredContent"]["abilities"]]
        assert names == ["core/site-info"]
        assert json.loads(result["content"][0]["text"]) == result["structuredContent"]

    def test_discover_skips_disabled(self, mcp, services):
        services.toggles.disable("core/site-info")
        result = mcp(call_tool(DISCOVER_TOOL)).json()["result"]
        assert result["structuredContent"]["abilities"] == []

    def test_ability_info(self, mcp):
        result = mcp(call_tool(INFO_TOOL, {"ability_name": "core/site-info"})).json()["result"]
        info = result["structuredContent"]
        assert info["name"] == "core/site-info"
        assert "input_schema" in info
        assert "isError" not in result

    def test_ability_info_hidden(self, mcp, services):
        services.abilities.add_ability(HiddenAbility())
        result = mcp(call_tool(INFO_TOOL, {"ability_name": "test/hidden"})).json()["result"]
        assert result["isError"] is True
        assert result["structuredContent"]["code"] == "ability_not_found"

    def test_execute(self, mcp):
        result = mcp(call_tool(EXECUTE_TOOL, {"ability_name": "core/site-info"})).json()["result"]
        assert result["structuredContent"]["success"] is True
        site = result["structuredContent"]["data"]["site"]
        assert site["name"] == "Test Site"
        assert site["url"] == "https://example.test"

    def test_execute_disabled(self, mcp, services):
        services.toggles.disable("core/site-info")
        result = mcp(call_tool(EXECUTE_TOOL, {"ability_name": "core/site-info"})).json()["result"]
        assert result["isError"] is True
        assert result["structuredContent"]["code"] == "ability_disabled"

    def test_execute_missing_name(self, mcp):
        result = mcp(call_tool(EXECUTE_TOOL, {})).json()["result"]
        assert result["isError"] is True
        assert result["structuredContent"]["code"] == "missing_ability_name"

    def test_execute_bad_parameters(self, mcp):
        result = mcp(
            call_tool(EXECUTE_TOOL, {"ability_name": "core/site-info", "parameters": [1]})
        ).json()["result"]
        assert result["structuredContent"]["code"] == "invalid_parameters"

    def test_execution_is_audited(self, mcp, services):
        seen = []
        services.audit.enabled = True
        services.audit.on_log(seen.append)
        mcp(call_tool(EXECUTE_TOOL, {"ability_name": "core/site-info"}))
        assert seen[-1]["action"] == "ability_executed"
        assert seen[-1]["target"] == "core/site-info"


class TestReaderUser:
    def test_reader_can_execute_read_ability(self, flow, client, reader_user):
        _, tokens = flow.tokens("reader", READER_PASSWORD)
        client.cookies.clear()
        resp = client.post(
            MCP,
            json=call_tool(EXECUTE_TOOL, {"ability_name": "core/site-info"}),
            headers={"Authorization": f"Bearer {tokens['access_token']}"},
        )
        assert resp.json()["result"]["structuredContent"]["success"] is True
