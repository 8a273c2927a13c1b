"""
Triage Application DTOs
========================

Data Transfer Objects for the triage API layer.

Pydantic models for request/response validation.
"""

from pydantic import BaseModel, Field, field_validator
from typing import List, Optional, Literal
from datetime import datetime

from src.triage.domain import (
    Attachment,
    CollectedInfo,
    Conversation,
    ConversationMessage,
    StructuredResponse,
    TicketContext,
)


# ========== Type Aliases for Literals ==========
ChatPhaseStr = Literal["COLLECT_INFO", "DIAGNOSE"]
NextActionStr = Literal["WAIT_FOR_USER", "APPLY_STEPS"]
MessageRoleStr = Literal["user", "assistant"]

MAX_MESSAGE_CHARS = 10000


# ========== Request DTOs ==========

class AttachmentInfo(BaseModel):
    """File forwarded to the assistant with a chat message."""
    name: str = Field(..., min_length=1, description="File name")
    content_type: str = Field(..., min_length=1, description="MIME type, e.g. image/png")
    data: str = Field(..., description="Base64 data for images, plain text for text files")

    def to_domain(self) -> Attachment:
        return Attachment(name=self.name, content_type=self.content_type, data=self.data)


class ChatRequest(BaseModel):
    """Request model for a ticket-scoped chat turn."""
    message: str = Field(..., min_length=1, description="User message")
    attachments: List[AttachmentInfo] = Field(default_factory=list)

    @field_validator("message")
    @classmethod
    def validate_message(cls, v: str) -> str:
        """Reject blank and oversized messages."""
        if not v.strip():
            raise ValueError("Message required")
        if len(v) > MAX_MESSAGE_CHARS:
            raise ValueError(f"Message too long (max {MAX_MESSAGE_CHARS} characters)")
        return v


class CopilotChatRequest(ChatRequest):
    """Request model for a global copilot chat turn."""
    conversation_id: Optional[str] = Field(
        None, description="Existing conversation; a new one is started when omitted or unknown"
    )


class CreateConversationRequest(BaseModel):
    """Request model for starting a conversation explicitly."""
    user_id: Optional[str] = None
    ticket_id: Optional[str] = None
    title: Optional[str] = Field(None, max_length=200)


class UpdateConversationRequest(BaseModel):
    """Outcome flags and title; omitted fields are left unchanged."""
    resolved: Optional[bool] = None
    deflected: Optional[bool] = None
    title: Optional[str] = Field(None, min_length=1, max_length=200)


class AddMessageRequest(BaseModel):
    """Request model for appending a raw message to a conversation log."""
    role: MessageRoleStr
    content: str = Field(..., min_length=1)
    attachments: List[str] = Field(default_factory=list)


# ========== Response DTOs ==========

class StructuredResponseInfo(BaseModel):
    """The assistant reply contract."""
    phase: ChatPhaseStr
    message: str
    questions: Optional[List[str]] = None
    steps: Optional[List[str]] = None
    next_action: NextActionStr

    @classmethod
    def from_domain(cls, response: StructuredResponse) -> "StructuredResponseInfo":
        return cls(**response.to_dict())


class ChatResponse(BaseModel):
    """Response model for a chat turn."""
    conversation_id: str
    structured: StructuredResponseInfo


class CollectedInfoView(BaseModel):
    device_type: Optional[str] = None
    operating_system: Optional[str] = None
    symptom: Optional[str] = None
    additional_context: Optional[str] = None

    @classmethod
    def from_domain(cls, info: Optional[CollectedInfo]) -> Optional["CollectedInfoView"]:
        if info is None:
            return None
        return cls(**info.to_dict())


class MessageInfo(BaseModel):
    """Conversation log entry."""
    id: str
    conversation_id: str
    role: MessageRoleStr
    content: str
    attachments: List[str]
    structured_response: Optional[StructuredResponseInfo] = None
    created_at: datetime

    @classmethod
    def from_domain(cls, message: ConversationMessage) -> "MessageInfo":
        structured = message.structured_response
        return cls(
            id=message.id,
            conversation_id=message.conversation_id,
            role=message.role.value,
            content=message.content,
            attachments=list(message.attachments),
            structured_response=StructuredResponseInfo.from_domain(structured) if structured else None,
            created_at=message.created_at
        )


class ConversationInfo(BaseModel):
    """Conversation summary."""
    id: str
    title: str
    user_id: Optional[str]
    ticket_id: Optional[str]
    phase: ChatPhaseStr
    collected_info: Optional[CollectedInfoView]
    resolved: bool
    deflected: bool
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_domain(cls, conversation: Conversation) -> "ConversationInfo":
        return cls(
            id=conversation.id,
            title=conversation.title,
            user_id=conversation.user_id,
            ticket_id=conversation.ticket_id,
            phase=conversation.phase.value,
            collected_info=CollectedInfoView.from_domain(conversation.collected_info),
            resolved=conversation.resolved,
            deflected=conversation.deflected,
            created_at=conversation.created_at,
            updated_at=conversation.updated_at
        )


class ConversationDetail(ConversationInfo):
    """Conversation with its message log."""
    messages: List[MessageInfo]

    @classmethod
    def from_domain(cls, conversation: Conversation) -> "ConversationDetail":
        summary = ConversationInfo.from_domain(conversation)
        return cls(
            **summary.model_dump(),
            messages=[MessageInfo.from_domain(m) for m in conversation.messages]
        )


class ErrorInfo(BaseModel):
    """Error payload produced by the exception handlers."""
    detail: str
    correlation_id: str
    timestamp: str
    debug_info: Optional[str] = None


class TicketContextRequest(BaseModel):
    """Ticket fields quoted to the assistant in ticket-scoped chats."""
    subject: Optional[str] = Field(None, max_length=500)
    description: Optional[str] = None
    category: Optional[str] = Field(None, max_length=100)
    priority: Optional[str] = Field(None, max_length=50)

    def to_domain(self) -> TicketContext:
        return TicketContext(
            subject=self.subject,
            description=self.description,
            category=self.category,
            priority=self.priority
        )
