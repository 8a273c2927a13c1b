"""
LLM Client Infrastructure
==========================

Wrapper for LLM providers (OpenAI, Z.AI) providing clean interface for LLM operations.

This module abstracts the LLM client implementation following the
Dependency Inversion Principle - the triage module depends on abstractions,
not concrete implementations.
"""

import asyncio
import json
import time
from typing import List, Optional, Any
from abc import ABC, abstractmethod

from openai import AsyncOpenAI
from zai import ZaiClient

from src.config import Settings, settings
from src.core import LLMException, ConfigurationException
from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

JSON_OBJECT_FORMAT = {"type": "json_object"}


class ChatCompletionResult:
    """Result of a chat completion."""

    def __init__(
        self,
        content: str,
        model: str,
        prompt_tokens: int,
        completion_tokens: int,
        latency_ms: int
    ):
        self.content = content
        self.model = model
        self.prompt_tokens = prompt_tokens
        self.completion_tokens = completion_tokens
        self.total_tokens = prompt_tokens + completion_tokens
        self.latency_ms = latency_ms


class ILLMClient(ABC):
    """
    Interface for LLM client operations.

    Following Interface Segregation Principle - only methods
    actually needed by the application are defined.
    """

    @abstractmethod
    async def chat_completion(
        self,
        messages: List[dict],
        temperature: float = 0.3,
        max_tokens: int = 1000,
        operation: str = "chat_completion",
        response_format: Optional[dict] = None
    ) -> ChatCompletionResult:
        """Generate chat completion."""


def _log_usage(result: ChatCompletionResult, operation: str) -> None:
    logger.info(
        "LLM usage",
        extra={
            "model": result.model,
            "operation": operation,
            "prompt_tokens": result.prompt_tokens,
            "completion_tokens": result.completion_tokens,
            "latency_ms": result.latency_ms
        }
    )


class OpenAILLMClient(ILLMClient):
    """
    OpenAI client implementation for GPT models.

    Also serves OpenAI-compatible gateways through ``OPENAI_BASE_URL``.
    """

    def __init__(self, api_key: Optional[str] = None, base_url: Optional[str] = None, model: Optional[str] = None):
        self._api_key = api_key or settings.openai_api_key
        if not self._api_key:
            raise ConfigurationException("OpenAI API key not configured")

        self._client = AsyncOpenAI(
            api_key=self._api_key,
            base_url=base_url or settings.openai_base_url
        )
        self._model = model or settings.llm_model

    async def chat_completion(
        self,
        messages: List[dict],
        temperature: float = 0.3,
        max_tokens: int = 1000,
        operation: str = "chat_completion",
        response_format: Optional[dict] = None
    ) -> ChatCompletionResult:
        """
        Generate chat completion using OpenAI GPT.

        Args:
            messages: List of message dicts with 'role' and 'content'
            temperature: Sampling temperature (0-1)
            max_tokens: Maximum tokens to generate
            operation: Operation type for usage logs
            response_format: Optional OpenAI response_format (JSON mode)

        Returns:
            ChatCompletionResult with generated text

        Raises:
            LLMException: If completion fails
        """
        start_time = time.perf_counter()
        request: dict[str, Any] = {
            "model": self._model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if response_format:
            request["response_format"] = response_format

        try:
            response = await self._client.chat.completions.create(**request)
        except Exception as e:
            raise LLMException(f"Chat completion failed: {str(e)}")

        usage = response.usage
        result = ChatCompletionResult(
            content=response.choices[0].message.content or "",
            model=self._model,
            prompt_tokens=usage.prompt_tokens if usage else 0,
            completion_tokens=usage.completion_tokens if usage else 0,
            latency_ms=int((time.perf_counter() - start_time) * 1000)
        )
        _log_usage(result, operation)
        return result


class ZAIILLMClient(ILLMClient):
    """
    Z.AI SDK client implementation for GLM models.

    The SDK is synchronous, so calls run in a worker thread.
    """

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None):
        self._api_key = api_key or settings.zai_api_key
        if not self._api_key:
            raise ConfigurationException("Z.AI API key not configured")

        self._client = ZaiClient(api_key=self._api_key)
        self._model = model or settings.llm_model

    async def chat_completion(
        self,
        messages: List[dict],
        temperature: float = 0.3,
        max_tokens: int = 1000,
        operation: str = "chat_completion",
        response_format: Optional[dict] = None
    ) -> ChatCompletionResult:
        """
        Generate chat completion using a GLM model.

        Raises:
            LLMException: If completion fails
        """
        start_time = time.perf_counter()
        request: dict[str, Any] = {
            "model": self._model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if response_format:
            request["response_format"] = response_format

        try:
            response = await asyncio.to_thread(self._client.chat.completions.create, **request)
        except Exception as e:
            raise LLMException(f"Chat completion failed: {str(e)}")

        content = response.choices[0].message.content or ""

        # Z.AI doesn't always return token usage, so we estimate
        result = ChatCompletionResult(
            content=content,
            model=self._model,
            prompt_tokens=len(str(messages)),
            completion_tokens=len(content),
            latency_ms=int((time.perf_counter() - start_time) * 1000)
        )
        _log_usage(result, operation)
        return result


class MockLLMClient(ILLMClient):
    """
    Mock LLM client for local development and tests.

    Returns phase-shaped JSON without calling external APIs. The phase is
    read from the system instructions.
    """

    async def chat_completion(
        self,
        messages: List[dict],
        temperature: float = 0.3,
        max_tokens: int = 1000,
        operation: str = "chat_completion",
        response_format: Optional[dict] = None
    ) -> ChatCompletionResult:
        """Return mock response based on the requested phase."""
        system_content = str(messages[0].get("content", "")) if messages else ""

        if "DIAGNOSE phase" in system_content:
            mock_response = {
                "phase": "DIAGNOSE",
                "message": "Mock: let's try a quick fix first. Did that work?",
                "steps": [
                    "Hold the power button for 15 seconds, then release it.",
                    "Plug in the charger and wait five minutes before turning it on.",
                ],
                "next_action": "APPLY_STEPS",
            }
        else:
            mock_response = {
                "phase": "COLLECT_INFO",
                "message": "Mock: thanks for the details. What device are you using?",
                "questions": ["What device are you using?", "When did the problem start?"],
                "next_action": "WAIT_FOR_USER",
            }

        content = json.dumps(mock_response)
        return ChatCompletionResult(
            content=content,
            model="mock-model",
            prompt_tokens=100,
            completion_tokens=len(content.split()),
            latency_ms=1
        )


def create_llm_client(config: Optional[Settings] = None) -> ILLMClient:
    """
    Build the configured LLM client.

    Raises:
        ConfigurationException: If the selected provider has no API key
    """
    config = config or settings
    if config.llm_provider == "mock":
        return MockLLMClient()
    if config.llm_provider == "zai":
        return ZAIILLMClient(config.zai_api_key, model=config.llm_model)
    return OpenAILLMClient(config.openai_api_key, base_url=config.openai_base_url, model=config.llm_model)
