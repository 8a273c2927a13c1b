"""Test doubles for the triage collaborators."""

import json
from typing import List, Optional, Sequence

from src.core import LLMException
from src.infrastructure.llm import ChatCompletionResult, ILLMClient
from src.triage.application import IGenerativeBackend, IKnowledgeBaseProvider
from src.triage.domain import Attachment, HistoryTurn


def collect_info_reply(questions=None, message="Thanks. A couple of quick questions?") -> str:
    return json.dumps({
        "phase": "COLLECT_INFO",
        "message": message,
        "questions": questions if questions is not None else ["What device is it?"],
        "next_action": "WAIT_FOR_USER",
    })


def diagnose_reply(steps=None, message="Try these steps. Did that work?") -> str:
    return json.dumps({
        "phase": "DIAGNOSE",
        "message": message,
        "steps": steps if steps is not None else ["Restart the laptop.", "Check the charger light."],
        "next_action": "APPLY_STEPS",
    })


class ScriptedBackend(IGenerativeBackend):
    """
    Answers with a reply shaped for the phase named in the instructions,
    or with the queued raw replies when given.
    """

    def __init__(self, replies: Optional[List[str]] = None, error: Optional[Exception] = None):
        self.replies = list(replies or [])
        self.error = error
        self.calls = []

    async def complete(
        self,
        instructions: str,
        history: Sequence[HistoryTurn],
        latest_message: str,
        attachments: Sequence[Attachment] = ()
    ) -> str:
        self.calls.append({
            "instructions": instructions,
            "history": list(history),
            "latest_message": latest_message,
            "attachments": list(attachments),
        })
        if self.error is not None:
            raise self.error
        if self.replies:
            return self.replies.pop(0)
        if "DIAGNOSE phase" in instructions:
            return diagnose_reply()
        return collect_info_reply()


class FailingBackend(ScriptedBackend):
    def __init__(self):
        super().__init__(error=LLMException("upstream timeout"))


class StaticKnowledgeBase(IKnowledgeBaseProvider):
    def __init__(self, excerpts: Optional[List[str]] = None, error: Optional[Exception] = None):
        self.excerpts = excerpts or []
        self.error = error

    async def top_excerpts(self, n: int) -> List[str]:
        if self.error is not None:
            raise self.error
        return self.excerpts[:n]


class RecordingLLMClient(ILLMClient):
    """ILLMClient returning a fixed completion and keeping the request."""

    def __init__(self, content: str = "{}"):
        self.content = content
        self.requests = []

    async def chat_completion(
        self,
        messages: List[dict],
        temperature: float = 0.3,
        max_tokens: int = 1000,
        operation: str = "chat_completion",
        response_format: Optional[dict] = None
    ) -> ChatCompletionResult:
        self.requests.append({
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
            "operation": operation,
            "response_format": response_format,
        })
        return ChatCompletionResult(
            content=self.content,
            model="test-model",
            prompt_tokens=10,
            completion_tokens=5,
            latency_ms=1
        )
