"""
Triage Infrastructure Models
=============================

SQLAlchemy ORM models for the triage module.
"""

from datetime import datetime, timezone
from typing import Any, List, Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from src.infrastructure.database import Base


class ConversationModel(Base):
    """
    Database model for the Conversation aggregate.

    Phase and collected info are rewritten on every triage turn.
    """
    __tablename__ = "conversations"

    # Primary key
    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    # Ownership (both optional: global copilot chats have neither)
    user_id: Mapped[Optional[str]] = mapped_column(String(255), index=True, nullable=True)
    ticket_id: Mapped[Optional[str]] = mapped_column(String(255), index=True, nullable=True)

    title: Mapped[str] = mapped_column(String(200), nullable=False)

    # Triage state
    phase: Mapped[str] = mapped_column(String(20), nullable=False, default="COLLECT_INFO")
    collected_info: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    # Outcome flags
    resolved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    deflected: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc)
    )


class ConversationMessageModel(Base):
    """
    Database model for ConversationMessage entries.

    ``position`` keeps the log order stable even when timestamps tie.
    """
    __tablename__ = "conversation_messages"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    conversation_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)

    role: Mapped[str] = mapped_column(String(20), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    attachments: Mapped[List[Any]] = mapped_column(JSON, nullable=False, default=list)
    structured_response: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc)
    )
