"""Phase transition rules."""

import pytest

from src.config import ChatPhase
from src.triage.domain import CollectedInfo, decide_transition, has_enough_info


DESCRIPTIVE = "It's a Windows laptop and the screen is black"


@pytest.mark.parametrize("turn_count", [0, 1])
@pytest.mark.parametrize("message", [DESCRIPTIVE, "windows laptop", "x"])
def test_never_leaves_collect_info_before_one_exchange(turn_count, message):
    info = CollectedInfo(device_type="laptop", operating_system="windows", additional_context="long story")

    assert decide_transition(ChatPhase.COLLECT_INFO, info, message, turn_count) == ChatPhase.COLLECT_INFO


def test_device_and_os_in_short_message_is_enough():
    assert decide_transition(ChatPhase.COLLECT_INFO, None, "windows laptop", 2) == ChatPhase.DIAGNOSE


def test_device_and_os_from_collected_slots():
    info = CollectedInfo(device_type="phone", operating_system="android")

    assert decide_transition(ChatPhase.COLLECT_INFO, info, "ok", 2) == ChatPhase.DIAGNOSE


def test_only_device_is_not_enough():
    info = CollectedInfo(device_type="laptop")

    assert decide_transition(ChatPhase.COLLECT_INFO, info, "help", 4) == ChatPhase.COLLECT_INFO


def test_five_word_message_counts_as_context():
    assert has_enough_info(None, "it just stopped working today")
    assert not has_enough_info(None, "it stopped working today")


def test_stored_context_is_enough():
    info = CollectedInfo(additional_context="The printer jams every morning since Monday")

    assert decide_transition(ChatPhase.COLLECT_INFO, info, "yes", 2) == ChatPhase.DIAGNOSE


def test_diagnose_is_absorbing():
    assert decide_transition(ChatPhase.DIAGNOSE, None, "what?", 10) == ChatPhase.DIAGNOSE
    assert decide_transition(ChatPhase.DIAGNOSE, CollectedInfo(), "", 0) == ChatPhase.DIAGNOSE


def test_descriptive_message_alone_is_enough_after_one_exchange():
    # No device or OS needed once the user has described the issue
    message = "the printer keeps jamming every morning"

    assert decide_transition(ChatPhase.COLLECT_INFO, CollectedInfo(), message, 2) == ChatPhase.DIAGNOSE
