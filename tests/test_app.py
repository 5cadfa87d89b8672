"""Tests for the HTTP and WebSocket surface."""

import pytest
from fastapi.testclient import TestClient
from unittest.mock import AsyncMock, MagicMock

from shared.config import Settings
from shared.models import CapabilityListing, Capability, ProviderResponse
from tool_gateway import ToolGateway, ToolGatewayError, ToolTargetError


@pytest.fixture
def gateway():
    return MagicMock(spec=ToolGateway)


@pytest.fixture
def services(registry, gateway):
    from orchestrator.main import build_services

    return build_services(Settings(), providers=registry, gateway=gateway)


@pytest.fixture
def client(services):
    from orchestrator.main import create_app

    with TestClient(create_app(services=services)) as test_client:
        yield test_client


def send(ws, event, data):
    ws.send_json({"event": event, "data": data})


class TestWebSocketChannel:
    """Tests for the real-time channel."""

    def test_happy_path(self, client, primary):
        """Echo then assistant reply are delivered to the room member."""
        primary.set_next_response(ProviderResponse(content="Hi! How can I help?"))

        with client.websocket_connect("/ws") as ws:
            send(ws, "join-room", "r1")
            send(ws, "send-message", {"roomId": "r1", "content": "Hello", "role": "user"})

            echo = ws.receive_json()
            reply = ws.receive_json()

        assert echo["event"] == "receive-message"
        assert echo["data"]["content"] == "Hello"
        assert echo["data"]["role"] == "user"
        assert reply["event"] == "receive-message"
        assert reply["data"]["role"] == "assistant"
        assert reply["data"]["content"] == "Hi! How can I help?"

    def test_fan_out_to_other_member(self, client):
        """A turn sent by one client reaches every member of the room."""
        with client.websocket_connect("/ws") as alice, client.websocket_connect("/ws") as bob:
            send(alice, "join-room", "r1")
            send(bob, "join-room", "r1")
            send(bob, "test-prompt", {"prompt": "sync", "role": "user"})
            assert bob.receive_json()["event"] == "test-prompt-result"

            send(alice, "send-message", {"roomId": "r1", "content": "status?", "role": "system"})

            received = bob.receive_json()

        assert received["data"]["content"] == "status?"
        assert received["data"]["role"] == "system"

    def test_test_prompt_error_for_empty_request(self, client, primary):
        """An empty test-prompt is answered with an error and no provider call."""
        with client.websocket_connect("/ws") as ws:
            send(ws, "test-prompt", {})
            event = ws.receive_json()

        assert event["event"] == "test-prompt-error"
        assert "prompt+role" in event["data"]["message"]
        assert primary.call_history == []

    def test_malformed_frames(self, client):
        """Bad frames and unknown events are reported to the sender."""
        with client.websocket_connect("/ws") as ws:
            ws.send_text("{not json")
            assert ws.receive_json()["data"]["message"] == "Malformed frame"

            send(ws, "dance", {})
            assert ws.receive_json()["data"]["message"] == "Unknown event: dance"

            send(ws, "join-room", "")
            assert ws.receive_json()["data"]["message"] == "roomId is required"

    def test_disconnect_prunes_membership(self, client, services):
        """Closing the socket removes the connection from its rooms."""
        with client.websocket_connect("/ws") as ws:
            send(ws, "join-room", "r1")
            send(ws, "test-prompt", {"prompt": "ping", "role": "user"})
            ws.receive_json()
            assert services.rooms.get_stats()["connections"] == 1

        response = client.get("/health")
        assert response.json()["connections"] == 0


class TestToolGatewayRoutes:
    """Tests for /tool-gateway routes."""

    def test_connect(self, client, gateway):
        gateway.list_capabilities = AsyncMock(return_value=CapabilityListing(
            capabilities=[Capability(name="echo", input_schema={"type": "object"})]
        ))

        response = client.post("/tool-gateway/connect", json={"url": "http://localhost:9000/mcp"})

        assert response.status_code == 200
        assert response.json() == {
            "capabilities": [{"name": "echo", "inputSchema": {"type": "object"}}]
        }
        gateway.list_capabilities.assert_awaited_once_with({"url": "http://localhost:9000/mcp"})

    def test_connect_validation_error(self, client, gateway):
        gateway.list_capabilities = AsyncMock(
            side_effect=ToolTargetError("URL must use http or https")
        )

        response = client.post("/tool-gateway/connect", json={"url": "ftp://bad"})

        assert response.status_code == 400
        assert response.json()["detail"] == "URL must use http or https"

    def test_connect_failure(self, client, gateway):
        gateway.list_capabilities = AsyncMock(side_effect=ToolGatewayError("connection refused"))

        response = client.post("/tool-gateway/connect", json={"command": "srv", "args": []})

        assert response.status_code == 500
        assert response.json()["detail"] == "connection refused"

    def test_call_missing_name(self, client, gateway):
        gateway.invoke_capability = AsyncMock(
            side_effect=ToolTargetError("capabilityName is required")
        )

        response = client.post("/tool-gateway/call", json={"url": "http://localhost/mcp"})

        assert response.status_code == 400

    def test_call_relays_into_room(self, client, gateway, services):
        """With roomId the tool result becomes a system turn in the room."""
        gateway.invoke_capability = AsyncMock(
            return_value={"content": [{"type": "text", "text": "42"}]}
        )

        response = client.post("/tool-gateway/call", json={
            "command": "calc",
            "args": ["--stdio"],
            "capabilityName": "answer",
            "capabilityArgs": {"q": "life"},
            "roomId": "r1",
        })

        assert response.status_code == 200
        gateway.invoke_capability.assert_awaited_once_with(
            {"command": "calc", "args": ["--stdio"]}, "answer", {"q": "life"}
        )
        [turn] = services.turn_log.turns("r1")
        assert turn.role.value == "system"
        assert turn.content == "42"


class TestHttpEndpoints:
    """Tests for the remaining HTTP endpoints."""

    def test_providers(self, client):
        response = client.get("/providers")

        assert [p["value"] for p in response.json()["providers"]] == [
            "primary", "secondary", "tertiary"
        ]

    def test_room_transcript(self, client, services):
        services.orchestrator.relay_system_turn("r1", "hello")

        response = client.get("/rooms/r1")

        assert response.status_code == 200
        assert response.json()["title"] == "Untitled"
        assert [t["content"] for t in response.json()["turns"]] == ["hello"]
        assert client.get("/rooms/missing").status_code == 404

    def test_critic_title(self, client, critic):
        critic.set_next_response(ProviderResponse(content="Launch Plan"))

        response = client.post("/critic/title", json={"goal": "plan the launch"})

        assert response.json() == {"title": "Launch Plan"}

    def test_critic_check_failure(self, client, critic):
        critic.fail_with(RuntimeError("down"))

        response = client.post("/critic/check", json={"steps": [
            {"status": "complete", "output": {"a": 1}},
            {"status": "complete", "output": {"a": 2}},
        ]})

        assert response.status_code == 502


class TestToolGatewayTransportErrors:
    """Route behaviour with the real MCP transports."""

    @pytest.fixture
    def live_client(self, registry):
        from orchestrator.main import build_services, create_app

        services = build_services(Settings(), providers=registry)
        with TestClient(create_app(services=services)) as test_client:
            yield test_client

    @pytest.mark.parametrize("path, body", [
        ("/tool-gateway/connect", {"url": "http://127.0.0.1:9/mcp"}),
        ("/tool-gateway/call", {"url": "http://127.0.0.1:9/mcp", "capabilityName": "echo"}),
    ])
    def test_refused_connection_reports_message(self, live_client, path, body):
        """A refused tool server is a 500 carrying an error message."""
        response = live_client.post(path, json=body)

        assert response.status_code == 500
        assert response.json()["detail"]


class TestLifespan:
    """Tests for application shutdown."""

    def test_shutdown_waits_for_cancelled_turns(self, services, primary):
        """In-flight dispatches are cancelled and awaited on shutdown."""
        from orchestrator.main import create_app

        primary.delay = 30

        with TestClient(create_app(services=services)) as test_client:
            with test_client.websocket_connect("/ws") as ws:
                send(ws, "join-room", "r1")
                send(ws, "send-message", {"roomId": "r1", "content": "slow", "role": "user"})
                assert ws.receive_json()["data"]["content"] == "slow"
            assert len(services.tasks) == 1

        assert services.tasks == set()
        assert [t.role.value for t in services.turn_log.turns("r1")] == ["user"]
