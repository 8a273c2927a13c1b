"""HTTP surface of the triage module."""

import asyncio

import pytest
from fastapi.testclient import TestClient

from src.config import Settings
from src.infrastructure.database import close_database, create_tables, get_engine, init_database
from src.main import app
from src.shared.api.middleware import GENERIC_TURN_FAILURE
from src.triage.interfaces import configure_triage
from tests.fakes import FailingBackend, ScriptedBackend


@pytest.fixture
def client(tmp_path):
    kb_path = tmp_path / "kb.yaml"
    kb_path.write_text("documents:\n  - title: VPN Guide\n    content: Reconnect the client.\n")
    configure_triage(app, Settings(llm_provider="mock", conversation_store="memory", kb_path=kb_path))
    app.state.generative_backend = ScriptedBackend()
    return TestClient(app)


def test_copilot_conversation_flow(client):
    first = client.post("/triage/copilot/chat", json={"message": "hi"})
    assert first.status_code == 200
    body = first.json()
    conversation_id = body["conversation_id"]
    assert body["structured"]["phase"] == "COLLECT_INFO"
    assert body["structured"]["next_action"] == "WAIT_FOR_USER"
    assert "steps" not in body["structured"]

    second = client.post("/triage/copilot/chat", json={
        "message": "It's a Windows laptop and the screen is black",
        "conversation_id": conversation_id,
    })
    structured = second.json()["structured"]
    assert second.json()["conversation_id"] == conversation_id
    assert structured["phase"] == "DIAGNOSE"
    assert structured["next_action"] == "APPLY_STEPS"
    assert 1 <= len(structured["steps"]) <= 3
    assert "questions" not in structured

    detail = client.get(f"/triage/conversations/{conversation_id}").json()
    assert detail["phase"] == "DIAGNOSE"
    assert detail["collected_info"]["operating_system"] == "windows"
    assert [m["role"] for m in detail["messages"]] == ["user", "assistant", "user", "assistant"]
    assert "KB: [VPN Guide]: Reconnect the client." in app.state.generative_backend.calls[0]["instructions"]


def test_backend_failure_returns_502_and_stores_nothing(client):
    conversation_id = client.post("/triage/conversations", json={}).json()["id"]
    app.state.generative_backend = FailingBackend()

    response = client.post("/triage/copilot/chat", json={"message": "hello", "conversation_id": conversation_id})

    assert response.status_code == 502
    assert response.json()["detail"] == GENERIC_TURN_FAILURE
    assert "upstream timeout" not in response.text
    assert client.get(f"/triage/conversations/{conversation_id}").json()["messages"] == []


def test_missing_backend_returns_503(client):
    app.state.generative_backend = None

    response = client.post("/triage/copilot/chat", json={"message": "hello"})

    assert response.status_code == 503


@pytest.mark.parametrize("message", ["", "   "])
def test_blank_message_is_rejected(client, message):
    response = client.post("/triage/copilot/chat", json={"message": message})

    assert response.status_code == 422


def test_ticket_chat(client):
    assert client.post("/triage/tickets/T-1/chat", json={"message": "hello"}).status_code == 404

    registered = client.put("/triage/tickets/T-1/context", json={"subject": "Laptop won't boot", "priority": "high"})
    assert registered.status_code == 204

    response = client.post("/triage/tickets/T-1/chat", json={"message": "hello"})
    assert response.status_code == 200
    conversation_id = response.json()["conversation_id"]
    assert 'TICKET: "Laptop won\'t boot" (priority: high)' in app.state.generative_backend.calls[0]["instructions"]

    ticket_conversation = client.get("/triage/tickets/T-1/conversation").json()
    assert ticket_conversation["id"] == conversation_id
    assert ticket_conversation["title"] == "Laptop won't boot"
    assert client.get("/triage/tickets/T-2/conversation").status_code == 404


def test_conversation_management(client):
    created = client.post("/triage/conversations", json={"user_id": "u-1"})
    assert created.status_code == 201
    conversation = created.json()
    assert conversation["title"] == "New Conversation"
    assert conversation["phase"] == "COLLECT_INFO"

    added = client.post(
        f"/triage/conversations/{conversation['id']}/messages",
        json={"role": "user", "content": "printer jams"},
    )
    assert added.status_code == 201
    assert added.json()["content"] == "printer jams"

    blank = client.post(f"/triage/conversations/{conversation['id']}/messages", json={"role": "user", "content": "  "})
    assert blank.status_code == 400

    updated = client.patch(f"/triage/conversations/{conversation['id']}", json={"deflected": True})
    assert updated.json()["deflected"] is True
    assert updated.json()["resolved"] is False

    listed = client.get("/triage/conversations", params={"user_id": "u-1"}).json()
    assert [c["id"] for c in listed] == [conversation["id"]]

    assert client.delete(f"/triage/conversations/{conversation['id']}").status_code == 204
    assert client.get(f"/triage/conversations/{conversation['id']}").status_code == 404
    assert client.delete(f"/triage/conversations/{conversation['id']}").status_code == 404


def test_correlation_id_is_echoed(client):
    response = client.get("/triage/conversations", headers={"X-Correlation-ID": "corr-123"})

    assert response.headers["X-Correlation-ID"] == "corr-123"


def test_health(client):
    body = client.get("/health").json()

    assert body["status"] == "healthy"
    assert body["checks"]["llm_client"] == "available"
    assert body["checks"]["knowledge_base"] == "loaded (1 documents)"


def test_database_store(tmp_path):
    async def prepare():
        await create_tables()
        # Connections must be opened again on the test client's event loop
        await get_engine().dispose()

    init_database(f"sqlite+aiosqlite:///{tmp_path / 'api.db'}")
    asyncio.run(prepare())
    configure_triage(app, Settings(
        llm_provider="mock", conversation_store="database", kb_path=tmp_path / "none.yaml"
    ))
    app.state.generative_backend = ScriptedBackend()
    client = TestClient(app)

    try:
        conversation_id = client.post("/triage/copilot/chat", json={"message": "hi"}).json()["conversation_id"]
        client.post("/triage/copilot/chat", json={"message": "windows laptop", "conversation_id": conversation_id})

        detail = client.get(f"/triage/conversations/{conversation_id}").json()
        assert detail["phase"] == "DIAGNOSE"
        assert len(detail["messages"]) == 4
    finally:
        asyncio.run(close_database())


def test_database_store_without_lifespan_initializes_engine(tmp_path):
    asyncio.run(close_database())
    configure_triage(app, Settings(
        llm_provider="mock",
        conversation_store="database",
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'lazy.db'}",
        kb_path=tmp_path / "none.yaml",
    ))

    async def prepare():
        await create_tables()
        await get_engine().dispose()

    try:
        asyncio.run(prepare())
        client = TestClient(app)

        created = client.post("/triage/conversations", json={"user_id": "u-5"})
        assert created.status_code == 201
        assert [c["id"] for c in client.get("/triage/conversations").json()] == [created.json()["id"]]
    finally:
        asyncio.run(close_database())
