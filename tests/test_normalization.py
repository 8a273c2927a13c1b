"""Repair of untrusted backend output."""

import json

import pytest

from src.config import ChatPhase, NextAction
from src.triage.domain import MESSAGE_WORD_LIMITS, ParsedReply, ResponseNormalizer, UnparsedReply, normalize_response
from src.triage.domain.normalization import (
    DEFAULT_MESSAGE,
    DEFAULT_QUESTION,
    DEFAULT_STEP,
    FALLBACK_QUESTIONS,
    FALLBACK_STEPS,
    truncate_words,
)


def assert_contract(response, phase):
    assert response.phase == phase
    assert response.message.strip()
    assert len(response.message.split()) <= MESSAGE_WORD_LIMITS[phase]
    if phase == ChatPhase.COLLECT_INFO:
        assert 1 <= len(response.questions) <= 2
        assert not response.steps
        assert response.next_action == NextAction.WAIT_FOR_USER
    else:
        assert 1 <= len(response.steps) <= 3
        assert not response.questions
        assert response.next_action == NextAction.APPLY_STEPS


MALFORMED = [
    "",
    "   ",
    "not json at all",
    "{",
    "[1, 2, 3]",
    "null",
    '"just a string"',
    '{"message": 42, "questions": "one", "steps": {"a": 1}}',
    '{"questions": [null, "", 3, true]}',
    "word " * 500,
    '{"message": "hi", "steps": [' + "1" * 5000 + "]}",
    "```json\n{\"message\": " + "9" * 5000 + "}\n```",
]


@pytest.mark.parametrize("phase", list(ChatPhase))
@pytest.mark.parametrize("raw", MALFORMED)
def test_any_input_yields_valid_response(phase, raw):
    assert_contract(ResponseNormalizer.normalize(phase, raw), phase)


def test_prose_in_diagnose_becomes_message_with_default_step():
    response = ResponseNormalizer.normalize(ChatPhase.DIAGNOSE, "not json at all")

    assert response.message == "not json at all"
    assert response.steps == FALLBACK_STEPS
    assert response.questions is None
    assert response.next_action == NextAction.APPLY_STEPS


def test_prose_in_collect_info_gets_fallback_questions():
    response = ResponseNormalizer.normalize(ChatPhase.COLLECT_INFO, "Hello there")

    assert response.message == "Hello there"
    assert response.questions == FALLBACK_QUESTIONS


def test_too_many_questions_are_clamped_and_steps_dropped():
    raw = json.dumps({
        "phase": "COLLECT_INFO",
        "message": "Some questions",
        "questions": ["q1?", "q2?", "q3?", "q4?", "q5?"],
        "steps": ["do this"],
        "next_action": "WAIT_FOR_USER",
    })

    response = ResponseNormalizer.normalize(ChatPhase.COLLECT_INFO, raw)

    assert response.questions == ["q1?", "q2?"]
    assert response.steps is None
    assert "steps" not in response.to_dict()


def test_backend_phase_and_next_action_are_ignored():
    raw = json.dumps({"phase": "COLLECT_INFO", "message": "hi", "questions": ["q?"], "next_action": "WAIT_FOR_USER"})

    response = ResponseNormalizer.normalize(ChatPhase.DIAGNOSE, raw)

    assert response.phase == ChatPhase.DIAGNOSE
    assert response.steps == [DEFAULT_STEP]
    assert response.to_dict()["next_action"] == "APPLY_STEPS"


def test_missing_fields_get_defaults():
    response = ResponseNormalizer.normalize(ChatPhase.COLLECT_INFO, "{}")

    assert response.message == DEFAULT_MESSAGE
    assert response.questions == [DEFAULT_QUESTION]


def test_steps_are_clamped_to_three():
    raw = json.dumps({"message": "go", "steps": ["a", "b", "c", "d", "e"]})

    assert ResponseNormalizer.normalize(ChatPhase.DIAGNOSE, raw).steps == ["a", "b", "c"]


def test_long_message_is_truncated_with_ellipsis():
    raw = json.dumps({"message": " ".join(f"w{i}" for i in range(100)), "steps": ["a"]})

    response = ResponseNormalizer.normalize(ChatPhase.DIAGNOSE, raw)

    assert len(response.message.split()) == 80
    assert response.message.endswith("w79...")


def test_fenced_json_is_parsed():
    raw = '```json\n{"message": "Fenced", "questions": ["Which OS?"]}\n```'

    assert ResponseNormalizer.parse(raw) == ParsedReply(data={"message": "Fenced", "questions": ["Which OS?"]})
    assert normalize_response(ChatPhase.COLLECT_INFO, raw).questions == ["Which OS?"]


def test_parse_tags_non_objects():
    assert ResponseNormalizer.parse("[1]") == UnparsedReply(raw="[1]")
    assert ResponseNormalizer.parse(None) == UnparsedReply(raw="")


def test_truncate_words_keeps_short_text():
    assert truncate_words("two words", 5) == "two words"
    assert truncate_words("one two three", 2) == "one two..."
