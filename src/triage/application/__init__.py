"""
Triage Application Layer
=========================

Application layer for the conversational triage module.

Contains:
- Services: turn orchestration and conversation management
- DTOs: Data transfer objects for API serialization
- Interfaces: repository and external collaborator contracts
"""

from src.triage.application.dto import (
    AttachmentInfo,
    ChatRequest,
    CopilotChatRequest,
    CreateConversationRequest,
    UpdateConversationRequest,
    AddMessageRequest,
    StructuredResponseInfo,
    ChatResponse,
    CollectedInfoView,
    MessageInfo,
    ConversationInfo,
    ConversationDetail,
    ErrorInfo,
    TicketContextRequest,
)
from src.triage.application.services import (
    ConversationService,
    ConversationLocks,
    TurnResult,
    IConversationRepository,
    IGenerativeBackend,
    IKnowledgeBaseProvider,
    ITicketContextProvider,
)

__all__ = [
    # DTOs
    "AttachmentInfo",
    "ChatRequest",
    "CopilotChatRequest",
    "CreateConversationRequest",
    "UpdateConversationRequest",
    "AddMessageRequest",
    "StructuredResponseInfo",
    "ChatResponse",
    "CollectedInfoView",
    "MessageInfo",
    "ConversationInfo",
    "ConversationDetail",
    "ErrorInfo",
    "TicketContextRequest",
    # Services
    "ConversationService",
    "ConversationLocks",
    "TurnResult",
    # Repository / collaborator interfaces
    "IConversationRepository",
    "IGenerativeBackend",
    "IKnowledgeBaseProvider",
    "ITicketContextProvider",
]
