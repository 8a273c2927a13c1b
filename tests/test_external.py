"""Knowledge base loader, backend adapter and ticket context provider."""

import asyncio

import pytest

from src.config import MessageRole
from src.core import LLMException
from src.infrastructure.llm import JSON_OBJECT_FORMAT, MockLLMClient
from src.triage.domain import Attachment, HistoryTurn, TicketContext
from src.triage.infrastructure import GenerativeBackendAdapter, InMemoryTicketContextProvider, KnowledgeBaseManager
from tests.fakes import RecordingLLMClient


KB_YAML = """
documents:
  - title: VPN Guide
    category: network
    content: Reconnect the VPN client and check your internet connection before escalating.
  - title: Email Setup
    content: Add an Exchange account.
  - title: Password Reset
    content: Use the self-service portal.
  - title: Printers
    content: Check the paper tray.
"""


def test_knowledge_base_excerpts(tmp_path):
    path = tmp_path / "kb.yaml"
    path.write_text(KB_YAML)
    manager = KnowledgeBaseManager(excerpt_chars=20)

    documents = manager.load(path)
    excerpts = asyncio.run(manager.top_excerpts(3))

    assert len(documents) == 4
    assert excerpts == [
        "[VPN Guide]: Reconnect the VPN cl",
        "[Email Setup]: Add an Exchange acco",
        "[Password Reset]: Use the self-service",
    ]


def test_knowledge_base_reload(tmp_path):
    path = tmp_path / "kb.yaml"
    path.write_text(KB_YAML)
    manager = KnowledgeBaseManager()
    manager.load(path)

    path.write_text("documents:\n  - title: Only\n    content: one\n")

    assert manager.reload() is True
    assert asyncio.run(manager.top_excerpts(3)) == ["[Only]: one"]


def test_knowledge_base_reload_keeps_documents_on_bad_file(tmp_path):
    path = tmp_path / "kb.yaml"
    path.write_text(KB_YAML)
    manager = KnowledgeBaseManager()
    manager.load(path)

    path.write_text("documents:\n  - content: no title\n")

    assert manager.reload() is False
    assert len(manager.documents) == 4


def test_missing_knowledge_base_is_empty(tmp_path):
    manager = KnowledgeBaseManager()
    manager.load(tmp_path / "absent.yaml")
    manager.start_watching()

    assert asyncio.run(manager.top_excerpts(3)) == []
    manager.stop_watching()


def test_backend_adapter_builds_request():
    client = RecordingLLMClient(content='{"message": "hi"}')
    adapter = GenerativeBackendAdapter(client, temperature=0.2, max_tokens=512, history_window=2)
    history = [
        HistoryTurn(role=MessageRole.USER, content="first"),
        HistoryTurn(role=MessageRole.ASSISTANT, content="second"),
        HistoryTurn(role=MessageRole.USER, content="third"),
    ]

    raw = asyncio.run(adapter.complete("INSTRUCTIONS", history, "latest"))

    request = client.requests[0]
    assert raw == '{"message": "hi"}'
    assert request["operation"] == "triage_chat"
    assert request["response_format"] == JSON_OBJECT_FORMAT
    assert request["temperature"] == 0.2
    assert request["max_tokens"] == 512
    assert [m["content"] for m in request["messages"]] == ["INSTRUCTIONS", "second", "third", "latest"]


def test_backend_adapter_forwards_attachments():
    client = RecordingLLMClient()
    adapter = GenerativeBackendAdapter(client)
    attachments = [
        Attachment(name="screen.png", content_type="image/png", data="aGVsbG8="),
        Attachment(name="log.txt", content_type="text/plain", data="ERROR 42"),
    ]

    asyncio.run(adapter.complete("SYSTEM", [], "see attached", attachments))

    last = client.requests[0]["messages"][-1]
    assert last["role"] == "user"
    assert last["content"][0] == {"type": "text", "text": "see attached"}
    assert last["content"][1] == {"type": "image_url", "image_url": {"url": "data:image/png;base64,aGVsbG8="}}
    assert last["content"][2]["text"] == "[Attached file: log.txt]\nERROR 42"


def test_backend_adapter_wraps_client_errors():
    class BrokenClient(RecordingLLMClient):
        async def chat_completion(self, *args, **kwargs):
            raise ConnectionError("reset by peer")

    adapter = GenerativeBackendAdapter(BrokenClient())

    with pytest.raises(LLMException):
        asyncio.run(adapter.complete("SYSTEM", [], "hello"))


def test_mock_client_follows_requested_phase():
    adapter = GenerativeBackendAdapter(MockLLMClient())

    collect = asyncio.run(adapter.complete("You are in COLLECT_INFO phase.", [], "hello"))
    diagnose = asyncio.run(adapter.complete("You are in DIAGNOSE phase.", [], "hello"))

    assert '"COLLECT_INFO"' in collect
    assert '"DIAGNOSE"' in diagnose


def test_ticket_context_provider():
    provider = InMemoryTicketContextProvider({"T-1": TicketContext(subject="VPN")})
    provider.upsert("T-2", TicketContext(subject="Email"))

    assert asyncio.run(provider.get_context("T-1")).subject == "VPN"
    assert asyncio.run(provider.get_context("T-2")).subject == "Email"
    assert asyncio.run(provider.get_context("T-3")) is None
