"""
Response Normalization
======================

Turns untrusted generative backend output into a valid StructuredResponse.

The backend is asked for JSON but may return prose, fenced JSON, partial
objects, wrong-phase fields or lists that blow the budget. Parsing yields
either a ParsedReply or an UnparsedReply; both normalize to a contract-valid
response and normalization never raises.

Phase and next action are always derived from the requested phase. Values
the backend reports for them are discarded.
"""

import json
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

from src.config import ChatPhase
from src.triage.domain.entities import (
    MAX_QUESTIONS,
    MAX_STEPS,
    MESSAGE_WORD_LIMITS,
    StructuredResponse,
)

ELLIPSIS = "..."

DEFAULT_MESSAGE = "I'm here to help with your IT issue."
DEFAULT_QUESTION = "Could you share a bit more about what's happening?"
DEFAULT_STEP = "Try restarting your device and check if the issue persists."

FALLBACK_MESSAGES = {
    ChatPhase.COLLECT_INFO: "I'd like to help. Could you give me a bit more detail?",
    ChatPhase.DIAGNOSE: "Let's try a basic fix first.",
}
FALLBACK_QUESTIONS = [
    "What device are you using (laptop, desktop, phone)?",
    "What operating system is it running?",
]
FALLBACK_STEPS = ["Restart your device and see if the issue persists."]

_FENCE_PATTERN = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)


@dataclass(frozen=True)
class ParsedReply:
    """Backend output that decoded to a JSON object."""
    data: Dict[str, Any]


@dataclass(frozen=True)
class UnparsedReply:
    """Backend output that is not a JSON object."""
    raw: str


BackendReply = Union[ParsedReply, UnparsedReply]


def truncate_words(text: str, max_words: int) -> str:
    """Keep the first ``max_words`` words, marking the cut with an ellipsis."""
    words = text.split()
    if len(words) <= max_words:
        return text
    return " ".join(words[:max_words]) + ELLIPSIS


def _clean_items(value: Any) -> List[str]:
    """Coerce a backend list field into non-empty strings."""
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        return []
    items = []
    for item in value:
        if isinstance(item, (int, float)) and not isinstance(item, bool):
            item = str(item)
        if isinstance(item, str) and item.strip():
            items.append(item.strip())
    return items


class ResponseNormalizer:
    """
    Validates and repairs backend replies against the phase contract.

    Stateless; all methods are total over their input.
    """

    @staticmethod
    def parse(raw: Optional[str]) -> BackendReply:
        """
        Decode backend text into a tagged reply.

        Accepts bare JSON or JSON wrapped in a Markdown code fence.
        """
        text = (raw or "").strip()
        if not text:
            return UnparsedReply(raw="")

        candidates = [text]
        fenced = _FENCE_PATTERN.search(text)
        if fenced:
            candidates.insert(0, fenced.group(1).strip())

        for candidate in candidates:
            try:
                data = json.loads(candidate)
            except (ValueError, RecursionError):
                continue
            if isinstance(data, dict):
                return ParsedReply(data=data)

        return UnparsedReply(raw=text)

    @classmethod
    def normalize(cls, phase: ChatPhase, raw: Optional[str]) -> StructuredResponse:
        """
        Produce a contract-valid response for ``phase`` from raw backend text.

        Args:
            phase: Phase decided by the server for this turn
            raw: Untrusted backend output

        Returns:
            StructuredResponse satisfying the word budget and list bounds
        """
        reply = cls.parse(raw)
        if isinstance(reply, ParsedReply):
            return cls._repair(phase, reply.data)
        return cls._fallback(phase, reply.raw)

    @staticmethod
    def _repair(phase: ChatPhase, data: Dict[str, Any]) -> StructuredResponse:
        message = data.get("message")
        if not isinstance(message, str) or not message.strip():
            message = DEFAULT_MESSAGE
        message = truncate_words(message.strip(), MESSAGE_WORD_LIMITS[phase])

        # Only the field belonging to the requested phase is read
        if phase == ChatPhase.COLLECT_INFO:
            questions = _clean_items(data.get("questions"))[:MAX_QUESTIONS]
            return StructuredResponse(
                phase=phase,
                message=message,
                questions=questions or [DEFAULT_QUESTION],
            )

        steps = _clean_items(data.get("steps"))[:MAX_STEPS]
        return StructuredResponse(
            phase=phase,
            message=message,
            steps=steps or [DEFAULT_STEP],
        )

    @staticmethod
    def _fallback(phase: ChatPhase, raw: str) -> StructuredResponse:
        message = raw.strip() or FALLBACK_MESSAGES[phase]
        message = truncate_words(message, MESSAGE_WORD_LIMITS[phase])

        if phase == ChatPhase.COLLECT_INFO:
            return StructuredResponse(phase=phase, message=message, questions=list(FALLBACK_QUESTIONS))
        return StructuredResponse(phase=phase, message=message, steps=list(FALLBACK_STEPS))


def normalize_response(phase: ChatPhase, raw: Optional[str]) -> StructuredResponse:
    """Module-level shortcut for ``ResponseNormalizer.normalize``."""
    return ResponseNormalizer.normalize(phase, raw)
