"""Phase instructions and the backend message list."""

from src.config import ChatPhase, MessageRole
from src.triage.domain import CollectedInfo, HistoryTurn, PromptContext, TicketContext, TriagePromptBuilder
from src.triage.domain.prompts import KB_MAX_CHARS


def test_collect_info_instructions():
    text = TriagePromptBuilder.build_instructions(ChatPhase.COLLECT_INFO, None)

    assert "You are in COLLECT_INFO phase." in text
    assert "Never more than 2" in text
    assert "Do NOT give troubleshooting steps" in text
    assert '"next_action": "WAIT_FOR_USER"' in text
    assert "APPLY_STEPS" not in text


def test_diagnose_instructions():
    text = TriagePromptBuilder.build_instructions(ChatPhase.DIAGNOSE, None)

    assert "You are in DIAGNOSE phase." in text
    assert "Never more than 3" in text
    assert "Never repeat steps you already gave" in text
    assert '"next_action": "APPLY_STEPS"' in text
    assert "swollen battery" in text


def test_absent_sections_are_omitted():
    text = TriagePromptBuilder.build_instructions(ChatPhase.COLLECT_INFO, CollectedInfo())

    assert "TICKET:" not in text
    assert "INFO GATHERED SO FAR" not in text
    assert "KB:" not in text


def test_ticket_and_collected_info_are_quoted():
    context = PromptContext(ticket=TicketContext(
        subject="Laptop won't boot",
        description="Black screen after update",
        category="hardware",
        priority="high",
    ))
    info = CollectedInfo(device_type="laptop", operating_system="windows")

    text = TriagePromptBuilder.build_instructions(ChatPhase.DIAGNOSE, info, context)

    assert 'TICKET: "Laptop won\'t boot" - Black screen after update (category: hardware, priority: high)' in text
    assert 'INFO GATHERED SO FAR: {"device_type": "laptop", "operating_system": "windows"}' in text


def test_kb_section_is_capped():
    kb = "[VPN Guide]: " + "a" * 1000

    text = TriagePromptBuilder.build_instructions(ChatPhase.COLLECT_INFO, None, PromptContext(kb_context=kb))

    kb_line = next(line for line in text.splitlines() if line.startswith("KB: "))
    assert len(kb_line) == len("KB: ") + KB_MAX_CHARS


def test_messages_keep_recent_history_capped():
    history = [
        HistoryTurn(role=MessageRole.USER if i % 2 == 0 else MessageRole.ASSISTANT, content=f"turn {i} " + "y" * 400)
        for i in range(10)
    ]

    messages = TriagePromptBuilder.build_messages("SYSTEM", history, "z" * 800)

    assert messages[0] == {"role": "system", "content": "SYSTEM"}
    assert len(messages) == 1 + 6 + 1
    assert messages[1]["content"].startswith("turn 4 ")
    assert all(len(m["content"]) <= 300 for m in messages[1:-1])
    assert messages[-1] == {"role": "user", "content": "z" * 500}


def test_messages_without_history():
    messages = TriagePromptBuilder.build_messages("SYSTEM", [], "hello", history_window=0)

    assert [m["role"] for m in messages] == ["system", "user"]
