"""
Triage Domain Entities
======================

Domain entities for the conversational triage module.

Contains pure Python business objects for the two-phase
(COLLECT_INFO -> DIAGNOSE) troubleshooting conversation.
"""

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from src.config import ChatPhase, NextAction, MessageRole


# Word budgets and list bounds of the assistant reply contract
MESSAGE_WORD_LIMITS = {
    ChatPhase.COLLECT_INFO: 60,
    ChatPhase.DIAGNOSE: 80,
}
MAX_QUESTIONS = 2
MAX_STEPS = 3

NEXT_ACTION_BY_PHASE = {
    ChatPhase.COLLECT_INFO: NextAction.WAIT_FOR_USER,
    ChatPhase.DIAGNOSE: NextAction.APPLY_STEPS,
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class CollectedInfo:
    """
    Slots filled from the user's messages over a conversation.

    Immutable: extraction returns a new instance, so a failed turn can
    never corrupt the persisted value.
    """
    device_type: Optional[str] = None
    operating_system: Optional[str] = None
    symptom: Optional[str] = None
    additional_context: Optional[str] = None

    def with_updates(self, **changes: Any) -> "CollectedInfo":
        return replace(self, **changes)

    @property
    def is_empty(self) -> bool:
        return not any((self.device_type, self.operating_system, self.symptom, self.additional_context))

    def to_dict(self) -> Dict[str, str]:
        """Serialize filled slots only."""
        data = {
            "device_type": self.device_type,
            "operating_system": self.operating_system,
            "symptom": self.symptom,
            "additional_context": self.additional_context,
        }
        return {key: value for key, value in data.items() if value}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "CollectedInfo":
        if not data:
            return cls()
        return cls(
            device_type=data.get("device_type"),
            operating_system=data.get("operating_system"),
            symptom=data.get("symptom"),
            additional_context=data.get("additional_context"),
        )


@dataclass(frozen=True)
class StructuredResponse:
    """
    The assistant reply contract returned to callers every turn.

    Exactly one of ``questions`` (COLLECT_INFO) and ``steps`` (DIAGNOSE)
    is populated; ``next_action`` follows from ``phase``.
    """
    phase: ChatPhase
    message: str
    questions: Optional[List[str]] = None
    steps: Optional[List[str]] = None

    @property
    def next_action(self) -> NextAction:
        return NEXT_ACTION_BY_PHASE[self.phase]

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"phase": self.phase.value, "message": self.message}
        if self.phase == ChatPhase.COLLECT_INFO:
            data["questions"] = list(self.questions or [])
        else:
            data["steps"] = list(self.steps or [])
        data["next_action"] = self.next_action.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StructuredResponse":
        """Rebuild a persisted snapshot (already normalized when stored)."""
        phase = ChatPhase(data["phase"])
        return cls(
            phase=phase,
            message=data.get("message", ""),
            questions=data.get("questions") if phase == ChatPhase.COLLECT_INFO else None,
            steps=data.get("steps") if phase == ChatPhase.DIAGNOSE else None,
        )


@dataclass(frozen=True)
class Attachment:
    """
    File sent alongside a user message.

    The triage logic never reads attachment contents; they are forwarded
    to the generative backend as extra content blocks.
    """
    name: str
    content_type: str
    data: str  # base64 for binary files, plain text otherwise

    @property
    def is_image(self) -> bool:
        return self.content_type.startswith("image/")


@dataclass
class ConversationMessage:
    """A single entry of a conversation's message log."""
    conversation_id: str
    role: MessageRole
    content: str
    attachments: List[str] = field(default_factory=list)
    structured_response: Optional[StructuredResponse] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class Conversation:
    """
    Conversation aggregate tracked across triage turns.

    Created on the first user message (ticket-scoped or global) and
    mutated by the triage service on every turn.
    """
    id: str
    title: str
    phase: ChatPhase = ChatPhase.COLLECT_INFO
    collected_info: Optional[CollectedInfo] = None
    user_id: Optional[str] = None
    ticket_id: Optional[str] = None
    resolved: bool = False
    deflected: bool = False
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    messages: List[ConversationMessage] = field(default_factory=list)

    @property
    def turn_count(self) -> int:
        """Number of messages already in the log."""
        return len(self.messages)

    def touch(self) -> None:
        self.updated_at = utcnow()

    @classmethod
    def start(
        cls,
        title: str,
        user_id: Optional[str] = None,
        ticket_id: Optional[str] = None
    ) -> "Conversation":
        return cls(id=str(uuid.uuid4()), title=title, user_id=user_id, ticket_id=ticket_id)


@dataclass(frozen=True)
class TicketContext:
    """Ticket fields the prompt builder may quote."""
    subject: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    priority: Optional[str] = None


@dataclass(frozen=True)
class PromptContext:
    """Optional material embedded into the phase instructions."""
    ticket: Optional[TicketContext] = None
    kb_context: Optional[str] = None


@dataclass(frozen=True)
class HistoryTurn:
    """Plain-text turn sent to the generative backend."""
    role: MessageRole
    content: str
