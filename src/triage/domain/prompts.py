"""
Triage Prompt Builder
=====================

Renders the phase-specific instructions the generative backend must follow
and the trimmed message list sent with them.

The instructions make a well-shaped reply likely; the response normalizer
is what makes it guaranteed.
"""

import json
from typing import List, Optional, Sequence

from src.config import ChatPhase, MessageRole
from src.triage.domain.entities import (
    CollectedInfo,
    HistoryTurn,
    PromptContext,
    TicketContext,
)

SUBJECT_MAX_CHARS = 120
DESCRIPTION_MAX_CHARS = 300
COLLECTED_INFO_MAX_CHARS = 500
KB_MAX_CHARS = 300

DEFAULT_HISTORY_WINDOW = 6
DEFAULT_HISTORY_MESSAGE_CHARS = 300
DEFAULT_LATEST_MESSAGE_CHARS = 500

HAZARD_RULE = (
    "- Only mention safety if there is actual danger "
    "(smoke, sparks, burning smell, swollen battery, liquid spill)."
)


def _clip(text: str, limit: int) -> str:
    text = " ".join(text.split())
    return text if len(text) <= limit else text[:limit].rstrip() + "..."


class TriagePromptBuilder:
    """
    Builds the system instructions for each triage phase.

    Rules, ticket quoting and the chat message list all come from here.
    """

    PERSONA = "You are Helpdesk Copilot, a concise IT support assistant."

    COLLECT_INFO_RULES = f"""RULES - follow strictly:
- Ask exactly 1 or 2 short clarifying questions. Never more than 2.
- Do NOT give troubleshooting steps, checklists, or solutions yet.
- Do NOT say "while you answer" or provide any steps.
- Keep your message under 60 words.
- End with a question mark.
{HAZARD_RULE}"""

    COLLECT_INFO_SCHEMA = """You must respond with valid JSON matching this schema:
{
  "phase": "COLLECT_INFO",
  "message": "<brief intro + your questions in natural language>",
  "questions": ["<question 1>", "<question 2 (optional)>"],
  "next_action": "WAIT_FOR_USER"
}"""

    DIAGNOSE_RULES = f"""RULES - follow strictly:
- Provide 1 to 3 troubleshooting steps. Never more than 3.
- Do NOT ask clarifying questions. You already have enough info.
- Keep your message under 80 words total.
- End with "Did that work?" or "Let me know if that helped."
- If the user says it did not work, provide the NEXT 1-3 steps (still max 3). Never repeat steps you already gave.
{HAZARD_RULE}"""

    DIAGNOSE_SCHEMA = """You must respond with valid JSON matching this schema:
{
  "phase": "DIAGNOSE",
  "message": "<brief context + reference to steps>",
  "steps": ["<step 1>", "<step 2 (optional)>", "<step 3 (optional)>"],
  "next_action": "APPLY_STEPS"
}"""

    @classmethod
    def build_instructions(
        cls,
        phase: ChatPhase,
        collected_info: Optional[CollectedInfo],
        context: Optional[PromptContext] = None
    ) -> str:
        """
        Build the system instructions for a phase.

        Args:
            phase: Phase the reply must belong to
            collected_info: Slots gathered so far
            context: Optional ticket and knowledge base material

        Returns:
            Instruction text; absent context sections are omitted
        """
        context = context or PromptContext()
        sections = "".join(
            section
            for section in (
                cls._ticket_section(context.ticket),
                cls._collected_section(collected_info),
                cls._kb_section(context.kb_context),
            )
            if section
        )

        if phase == ChatPhase.COLLECT_INFO:
            rules, schema = cls.COLLECT_INFO_RULES, cls.COLLECT_INFO_SCHEMA
        else:
            rules, schema = cls.DIAGNOSE_RULES, cls.DIAGNOSE_SCHEMA

        return f"{cls.PERSONA} You are in {phase.value} phase.\n\n{rules}\n{sections}\n{schema}"

    @staticmethod
    def _ticket_section(ticket: Optional[TicketContext]) -> str:
        if ticket is None or not ticket.subject:
            return ""
        line = f'\nTICKET: "{_clip(ticket.subject, SUBJECT_MAX_CHARS)}"'
        if ticket.description:
            line += f" - {_clip(ticket.description, DESCRIPTION_MAX_CHARS)}"
        details = [
            f"{label}: {value}"
            for label, value in (("category", ticket.category), ("priority", ticket.priority))
            if value
        ]
        if details:
            line += f" ({', '.join(details)})"
        return line

    @staticmethod
    def _collected_section(collected_info: Optional[CollectedInfo]) -> str:
        if collected_info is None or collected_info.is_empty:
            return ""
        snapshot = json.dumps(collected_info.to_dict(), ensure_ascii=False)
        return f"\nINFO GATHERED SO FAR: {_clip(snapshot, COLLECTED_INFO_MAX_CHARS)}"

    @staticmethod
    def _kb_section(kb_context: Optional[str]) -> str:
        if not kb_context or not kb_context.strip():
            return ""
        return f"\nKB: {kb_context.strip()[:KB_MAX_CHARS]}"

    @classmethod
    def build_messages(
        cls,
        instructions: str,
        history: Sequence[HistoryTurn],
        latest_message: str,
        history_window: int = DEFAULT_HISTORY_WINDOW,
        history_message_chars: int = DEFAULT_HISTORY_MESSAGE_CHARS,
        latest_message_chars: int = DEFAULT_LATEST_MESSAGE_CHARS
    ) -> List[dict]:
        """
        Build the chat message list for the backend call.

        Only the most recent ``history_window`` turns are kept, each
        capped, to bound the request size.
        """
        recent = list(history)[-history_window:] if history_window > 0 else []
        messages = [{"role": "system", "content": instructions}]
        messages.extend(
            {"role": turn.role.value, "content": turn.content[:history_message_chars]}
            for turn in recent
        )
        messages.append({"role": MessageRole.USER.value, "content": latest_message[:latest_message_chars]})
        return messages
