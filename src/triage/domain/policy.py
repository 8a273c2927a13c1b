"""
Phase Policy
============

Decides when a conversation has enough information to move from
COLLECT_INFO to DIAGNOSE.

The bar is intentionally low: one descriptive message is enough to start
offering steps, so users get actionable guidance quickly.
"""

from typing import Optional

from src.config import ChatPhase
from src.triage.domain.entities import CollectedInfo
from src.triage.domain.extraction import (
    CONTEXT_MIN_WORDS,
    find_device_type,
    find_operating_system,
    word_count,
)

# Prior messages required before leaving COLLECT_INFO (one full exchange)
MIN_PRIOR_TURNS = 2


def has_enough_info(collected_info: Optional[CollectedInfo], message: str) -> bool:
    """True when device and OS are known, or the user has described the issue."""
    info = collected_info or CollectedInfo()

    has_os = bool(info.operating_system) or find_operating_system(message) is not None
    has_device = bool(info.device_type) or find_device_type(message) is not None
    has_context = bool(info.additional_context) or word_count(message) >= CONTEXT_MIN_WORDS

    return (has_os and has_device) or has_context


def decide_transition(
    current_phase: ChatPhase,
    collected_info: Optional[CollectedInfo],
    latest_user_message: str,
    turn_count: int
) -> ChatPhase:
    """
    Next phase for a conversation.

    Args:
        current_phase: Phase the conversation is in before this turn
        collected_info: Slots after folding in the latest message
        latest_user_message: The message being handled
        turn_count: Messages already in the conversation, excluding this one

    Returns:
        DIAGNOSE once reached, or when COLLECT_INFO has gathered enough
    """
    if current_phase == ChatPhase.DIAGNOSE:
        return ChatPhase.DIAGNOSE

    if turn_count >= MIN_PRIOR_TURNS and has_enough_info(collected_info, latest_user_message):
        return ChatPhase.DIAGNOSE

    return ChatPhase.COLLECT_INFO
