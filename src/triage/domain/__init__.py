"""
Triage Domain Layer
===================

Domain layer for the conversational triage module.

Contains:
- Entities: Conversation, ConversationMessage, CollectedInfo, StructuredResponse
- Policy: COLLECT_INFO -> DIAGNOSE transition rule
- Extraction: slot filling from user messages
- Prompts: phase instructions for the generative backend
- Normalization: repair of untrusted backend output

This layer is framework-agnostic and contains pure business logic.
"""

from src.triage.domain.entities import (
    Attachment,
    CollectedInfo,
    Conversation,
    ConversationMessage,
    HistoryTurn,
    PromptContext,
    StructuredResponse,
    TicketContext,
    MAX_QUESTIONS,
    MAX_STEPS,
    MESSAGE_WORD_LIMITS,
)
from src.triage.domain.extraction import extract_info
from src.triage.domain.policy import decide_transition, has_enough_info
from src.triage.domain.prompts import TriagePromptBuilder
from src.triage.domain.normalization import (
    BackendReply,
    ParsedReply,
    ResponseNormalizer,
    UnparsedReply,
    normalize_response,
)

__all__ = [
    "Attachment",
    "CollectedInfo",
    "Conversation",
    "ConversationMessage",
    "HistoryTurn",
    "PromptContext",
    "StructuredResponse",
    "TicketContext",
    "MAX_QUESTIONS",
    "MAX_STEPS",
    "MESSAGE_WORD_LIMITS",
    "extract_info",
    "decide_transition",
    "has_enough_info",
    "TriagePromptBuilder",
    "BackendReply",
    "ParsedReply",
    "ResponseNormalizer",
    "UnparsedReply",
    "normalize_response",
]
