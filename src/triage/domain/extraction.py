"""
Information Extraction
======================

Best-effort slot filling from free-form user messages.

Vocabulary matching is deliberately simple: the first mention of an
operating system or device fills its slot and later mentions are ignored.
"""

import re
from typing import Optional

from src.triage.domain.entities import CollectedInfo

SYMPTOM_MAX_CHARS = 200
CONTEXT_ENTRY_MAX_CHARS = 300
CONTEXT_MIN_WORDS = 5
CONTEXT_SEPARATOR = " | "

OS_PATTERN = re.compile(
    r"\b(?:windows(?:\s*\d+)?|macos|mac\s*os|linux|ubuntu|ios|android|chromeos)\b",
    re.IGNORECASE,
)
DEVICE_PATTERN = re.compile(
    r"\b(?:laptop|desktop|phone|tablet|monitor|pc|computer|macbook|imac)\b",
    re.IGNORECASE,
)


def word_count(text: str) -> int:
    return len(text.split())


def find_operating_system(message: str) -> Optional[str]:
    match = OS_PATTERN.search(message)
    return match.group(0).lower() if match else None


def find_device_type(message: str) -> Optional[str]:
    match = DEVICE_PATTERN.search(message)
    return match.group(0).lower() if match else None


def extract_info(previous: Optional[CollectedInfo], message: str) -> CollectedInfo:
    """
    Fold a user message into the collected info.

    Args:
        previous: Slots collected so far (None for a new conversation)
        message: Latest user message

    Returns:
        A new CollectedInfo; ``previous`` is left untouched
    """
    info = previous or CollectedInfo()
    changes = {}

    if not info.operating_system:
        os_name = find_operating_system(message)
        if os_name:
            changes["operating_system"] = os_name

    if not info.device_type:
        device = find_device_type(message)
        if device:
            changes["device_type"] = device

    if not info.symptom and message.strip():
        changes["symptom"] = message[:SYMPTOM_MAX_CHARS]

    if word_count(message) >= CONTEXT_MIN_WORDS:
        entry = message[:CONTEXT_ENTRY_MAX_CHARS]
        if info.additional_context:
            entry = f"{info.additional_context}{CONTEXT_SEPARATOR}{entry}"
        changes["additional_context"] = entry

    return info.with_updates(**changes) if changes else info
