"""
Configuration Module
====================

Application settings and configuration management using Pydantic.
"""

from enum import Enum
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator
from functools import lru_cache
from pathlib import Path
from typing import List, Optional


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety.
    """

    # ========== Application ==========
    app_name: str = Field(default="helpdesk-copilot", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Server ==========
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port", ge=1, le=65535)

    # ========== Conversation Store ==========
    conversation_store: str = Field(
        default="memory",
        description="Conversation persistence backend (memory or database)"
    )

    # ========== Database ==========
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/helpdesk",
        description="PostgreSQL connection URL (async)"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)

    # ========== Generative Backend ==========
    llm_provider: str = Field(
        default="openai",
        description="Generative backend provider (openai, zai or mock)"
    )
    openai_api_key: Optional[str] = Field(
        default=None,
        description="OpenAI API key"
    )
    openai_base_url: Optional[str] = Field(
        default=None,
        description="Override for OpenAI-compatible gateways"
    )
    zai_api_key: Optional[str] = Field(
        default=None,
        description="Z.AI API key for GLM models"
    )
    llm_model: str = Field(
        default="gpt-4o-mini",
        description="Model used for triage replies"
    )
    llm_temperature: float = Field(
        default=0.3,
        description="Default temperature for LLM",
        ge=0.0,
        le=1.0
    )
    llm_max_tokens: int = Field(
        default=4096,
        description="Max tokens for a triage reply",
        ge=1,
        le=16000
    )

    # ========== Triage Conversation Budgets ==========
    history_window: int = Field(
        default=6,
        description="Most recent conversation turns sent to the backend",
        ge=0,
        le=50
    )
    history_message_chars: int = Field(
        default=300,
        description="Character cap for each history turn",
        ge=20
    )
    latest_message_chars: int = Field(
        default=500,
        description="Character cap for the current user message",
        ge=20
    )

    # ========== Knowledge Base ==========
    kb_path: Path = Field(
        default=Path("knowledge_base.yaml"),
        description="Path to the knowledge base YAML file"
    )
    kb_excerpt_count: int = Field(
        default=3,
        description="Number of KB documents quoted in copilot prompts",
        ge=0,
        le=20
    )
    kb_excerpt_chars: int = Field(
        default=200,
        description="Character cap for each KB excerpt",
        ge=20
    )

    # ========== CORS ==========
    cors_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:5000"],
        description="Allowed CORS origins"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is one of allowed values."""
        allowed = {"development", "staging", "production", "test"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v

    @field_validator("conversation_store")
    @classmethod
    def validate_conversation_store(cls, v: str) -> str:
        allowed = {"memory", "database"}
        if v not in allowed:
            raise ValueError(f"conversation_store must be one of {allowed}")
        return v

    @field_validator("llm_provider")
    @classmethod
    def validate_llm_provider(cls, v: str) -> str:
        allowed = {"openai", "zai", "mock"}
        v = v.lower()
        if v not in allowed:
            raise ValueError(f"llm_provider must be one of {allowed}")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()


# ========== Constants ==========

class ChatPhase(str, Enum):
    """Stages of the two-phase triage conversation."""
    COLLECT_INFO = "COLLECT_INFO"
    DIAGNOSE = "DIAGNOSE"


class NextAction(str, Enum):
    """What the user is expected to do after an assistant turn."""
    WAIT_FOR_USER = "WAIT_FOR_USER"
    APPLY_STEPS = "APPLY_STEPS"


class MessageRole(str, Enum):
    """Conversation message authors."""
    USER = "user"
    ASSISTANT = "assistant"


class AnalyticsEventType(str, Enum):
    """Analytics events emitted by the triage module."""
    CONVERSATION_STARTED = "conversation_started"
    CHAT_MESSAGE = "chat_message"
    TICKET_DEFLECTED = "ticket_deflected"

