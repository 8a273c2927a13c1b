"""
Triage Controllers (API Routes)
================================

FastAPI routes for the conversational triage endpoints.

Controllers delegate to the ConversationService; domain errors are mapped
to HTTP responses by the shared exception handlers.
"""

from typing import AsyncGenerator, List, Optional

from fastapi import APIRouter, Body, Depends, FastAPI, HTTPException, Query, Request, Response, status

from src.config import MessageRole, Settings, settings
from src.core import ConfigurationException
from src.infrastructure.database import get_engine, get_session_context, init_database
from src.infrastructure.llm import create_llm_client
from src.shared.infrastructure.logging import get_logger
from src.triage.application import (
    AddMessageRequest,
    ChatRequest,
    ChatResponse,
    ConversationDetail,
    ConversationInfo,
    ConversationLocks,
    ConversationService,
    CopilotChatRequest,
    CreateConversationRequest,
    ErrorInfo,
    MessageInfo,
    StructuredResponseInfo,
    TicketContextRequest,
    UpdateConversationRequest,
)
from src.triage.infrastructure import (
    GenerativeBackendAdapter,
    InMemoryConversationRepository,
    InMemoryTicketContextProvider,
    KnowledgeBaseManager,
    SQLAlchemyConversationRepository,
)

logger = get_logger(__name__)
router = APIRouter(prefix="/triage", tags=["Conversational Triage"])


# ========== Example payloads for Swagger ==========

CHAT_REQUEST_EXAMPLE = {
    "message": "My laptop won't turn on after the Windows 11 update",
    "attachments": []
}

COLLECT_INFO_RESPONSE_EXAMPLE = {
    "conversation_id": "123e4567-e89b-12d3-a456-426614174000",
    "structured": {
        "phase": "COLLECT_INFO",
        "message": "Sorry to hear that. Let's narrow it down.",
        "questions": [
            "Does the power light come on when you press the button?",
            "Is the charger plugged in and showing a light?"
        ],
        "next_action": "WAIT_FOR_USER"
    }
}

DIAGNOSE_RESPONSE_EXAMPLE = {
    "conversation_id": "123e4567-e89b-12d3-a456-426614174000",
    "structured": {
        "phase": "DIAGNOSE",
        "message": "Thanks, that helps. Try these steps and let me know if it works.",
        "steps": [
            "Hold the power button for 15 seconds, then release it.",
            "Connect the charger and wait five minutes.",
            "Press the power button once."
        ],
        "next_action": "APPLY_STEPS"
    }
}


# ========== Runtime wiring ==========

def configure_triage(app: FastAPI, config: Optional[Settings] = None) -> None:
    """
    Build the triage collaborators and store them in ``app.state``.

    Called from the application lifespan, and lazily by the dependencies
    when the lifespan did not run (serverless adapter).
    """
    config = config or settings
    state = app.state
    state.settings = config

    if config.conversation_store == "database":
        try:
            get_engine()
        except RuntimeError:
            logger.info("Initializing database for the conversation store")
            init_database(config.database_url)

    try:
        llm_client = create_llm_client(config)
    except ConfigurationException as e:
        logger.warning(f"LLM client not configured - chat endpoints unavailable: {e.message}")
        llm_client = None

    state.llm_client = llm_client
    state.generative_backend = (
        GenerativeBackendAdapter(
            llm_client,
            temperature=config.llm_temperature,
            max_tokens=config.llm_max_tokens,
            history_window=config.history_window,
            history_message_chars=config.history_message_chars,
            latest_message_chars=config.latest_message_chars
        )
        if llm_client else None
    )

    knowledge_base = KnowledgeBaseManager(excerpt_chars=config.kb_excerpt_chars)
    try:
        knowledge_base.load(config.kb_path)
    except Exception as e:
        logger.warning(f"Knowledge base not available: {e}")
    state.knowledge_base = knowledge_base

    state.ticket_provider = InMemoryTicketContextProvider()
    state.conversation_locks = ConversationLocks()
    state.conversation_repository = (
        InMemoryConversationRepository() if config.conversation_store == "memory" else None
    )


def _triage_state(app: FastAPI):
    if not hasattr(app.state, "conversation_locks"):
        configure_triage(app)
    return app.state


def _build_service(state, repository) -> ConversationService:
    config: Settings = state.settings
    return ConversationService(
        repository,
        state.generative_backend,
        kb_provider=state.knowledge_base,
        ticket_provider=state.ticket_provider,
        locks=state.conversation_locks,
        kb_excerpt_count=config.kb_excerpt_count
    )


# ========== Dependencies ==========

async def get_conversation_service(request: Request) -> AsyncGenerator[ConversationService, None]:
    """Conversation service bound to the configured conversation store."""
    state = _triage_state(request.app)

    if state.conversation_repository is not None:
        yield _build_service(state, state.conversation_repository)
        return

    async with get_session_context() as session:
        yield _build_service(state, SQLAlchemyConversationRepository(session))


async def get_chat_service(
    request: Request,
    service: ConversationService = Depends(get_conversation_service)
) -> ConversationService:
    """Conversation service for chat turns; requires a generative backend."""
    if request.app.state.generative_backend is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Generative backend not configured"
        )
    return service


# ========== Chat Routes ==========

@router.post(
    "/copilot/chat",
    response_model=ChatResponse,
    response_model_exclude_none=True,
    summary="Global copilot chat turn",
    description="""
    Send a message to the IT support copilot.

    The assistant first gathers information (**COLLECT_INFO**: a short message
    plus up to 2 questions), then switches to troubleshooting (**DIAGNOSE**: a
    short message plus up to 3 steps) once enough details are known.
    Knowledge base excerpts are added to the assistant's instructions.

    Omit `conversation_id` to start a new conversation.

    **Example Request**:
    ```json
    {
        "message": "My laptop won't turn on after the Windows 11 update"
    }
    ```
    """,
    responses={
        200: {
            "description": "Assistant reply",
            "content": {
                "application/json": {
                    "examples": {
                        "collect_info": {"value": COLLECT_INFO_RESPONSE_EXAMPLE},
                        "diagnose": {"value": DIAGNOSE_RESPONSE_EXAMPLE}
                    }
                }
            }
        },
        502: {"model": ErrorInfo, "description": "Generative backend failed; nothing was stored"},
        503: {"description": "Generative backend not configured"}
    }
)
async def copilot_chat(
    request: Request,
    payload: CopilotChatRequest = Body(..., examples=[CHAT_REQUEST_EXAMPLE]),
    service: ConversationService = Depends(get_chat_service)
):
    correlation_id = getattr(request.state, "correlation_id", "unknown")

    logger.info(
        "Copilot chat turn",
        extra={
            "correlation_id": correlation_id,
            "conversation_id": payload.conversation_id,
            "attachment_count": len(payload.attachments)
        }
    )

    result = await service.copilot_chat(
        payload.message,
        conversation_id=payload.conversation_id,
        attachments=[a.to_domain() for a in payload.attachments]
    )

    return ChatResponse(
        conversation_id=result.conversation_id,
        structured=StructuredResponseInfo.from_domain(result.response)
    )


@router.post(
    "/tickets/{ticket_id}/chat",
    response_model=ChatResponse,
    response_model_exclude_none=True,
    summary="Ticket-scoped chat turn",
    description="""
    Chat about a specific ticket. The ticket's subject, description, category
    and priority are quoted to the assistant. The ticket's conversation is
    created on the first message.
    """,
    responses={
        200: {
            "description": "Assistant reply",
            "content": {"application/json": {"example": COLLECT_INFO_RESPONSE_EXAMPLE}}
        },
        404: {"model": ErrorInfo, "description": "Unknown ticket"},
        502: {"model": ErrorInfo, "description": "Generative backend failed; nothing was stored"}
    }
)
async def ticket_chat(
    request: Request,
    ticket_id: str,
    payload: ChatRequest,
    service: ConversationService = Depends(get_chat_service)
):
    correlation_id = getattr(request.state, "correlation_id", "unknown")

    logger.info(
        "Ticket chat turn",
        extra={"correlation_id": correlation_id, "ticket_id": ticket_id}
    )

    result = await service.chat_for_ticket(
        ticket_id,
        payload.message,
        attachments=[a.to_domain() for a in payload.attachments]
    )

    return ChatResponse(
        conversation_id=result.conversation_id,
        structured=StructuredResponseInfo.from_domain(result.response)
    )


@router.put(
    "/tickets/{ticket_id}/context",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
    summary="Register ticket fields for ticket-scoped chats"
)
async def put_ticket_context(
    request: Request,
    ticket_id: str,
    payload: TicketContextRequest
):
    state = _triage_state(request.app)
    state.ticket_provider.upsert(ticket_id, payload.to_domain())
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get(
    "/tickets/{ticket_id}/conversation",
    response_model=ConversationDetail,
    summary="Get the conversation attached to a ticket"
)
async def get_ticket_conversation(
    ticket_id: str,
    service: ConversationService = Depends(get_conversation_service)
):
    conversation = await service.get_ticket_conversation(ticket_id)
    return ConversationDetail.from_domain(conversation)


# ========== Conversation Management Routes ==========

@router.post(
    "/conversations",
    response_model=ConversationInfo,
    status_code=status.HTTP_201_CREATED,
    summary="Start a conversation"
)
async def create_conversation(
    payload: CreateConversationRequest,
    service: ConversationService = Depends(get_conversation_service)
):
    conversation = await service.create_conversation(
        user_id=payload.user_id,
        ticket_id=payload.ticket_id,
        title=payload.title
    )
    return ConversationInfo.from_domain(conversation)


@router.get(
    "/conversations",
    response_model=List[ConversationInfo],
    summary="List conversations, newest first"
)
async def list_conversations(
    user_id: Optional[str] = Query(None, description="Only conversations of this user"),
    service: ConversationService = Depends(get_conversation_service)
):
    conversations = await service.list_conversations(user_id)
    return [ConversationInfo.from_domain(c) for c in conversations]


@router.get(
    "/conversations/{conversation_id}",
    response_model=ConversationDetail,
    summary="Get a conversation with its messages",
    responses={404: {"model": ErrorInfo, "description": "Conversation not found"}}
)
async def get_conversation(
    conversation_id: str,
    service: ConversationService = Depends(get_conversation_service)
):
    conversation = await service.get_conversation(conversation_id)
    return ConversationDetail.from_domain(conversation)


@router.patch(
    "/conversations/{conversation_id}",
    response_model=ConversationInfo,
    summary="Update outcome flags or title",
    description="Marking a conversation as deflected records a `ticket_deflected` analytics event.",
    responses={404: {"model": ErrorInfo, "description": "Conversation not found"}}
)
async def update_conversation(
    conversation_id: str,
    payload: UpdateConversationRequest,
    service: ConversationService = Depends(get_conversation_service)
):
    conversation = await service.update_conversation(
        conversation_id,
        resolved=payload.resolved,
        deflected=payload.deflected,
        title=payload.title
    )
    return ConversationInfo.from_domain(conversation)


@router.delete(
    "/conversations/{conversation_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
    summary="Delete a conversation and its messages",
    responses={404: {"model": ErrorInfo, "description": "Conversation not found"}}
)
async def delete_conversation(
    conversation_id: str,
    service: ConversationService = Depends(get_conversation_service)
):
    await service.delete_conversation(conversation_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/conversations/{conversation_id}/messages",
    response_model=MessageInfo,
    status_code=status.HTTP_201_CREATED,
    summary="Append a message without running a triage turn",
    responses={404: {"model": ErrorInfo, "description": "Conversation not found"}}
)
async def add_message(
    conversation_id: str,
    payload: AddMessageRequest,
    service: ConversationService = Depends(get_conversation_service)
):
    message = await service.add_message(
        conversation_id,
        MessageRole(payload.role),
        payload.content,
        payload.attachments
    )
    return MessageInfo.from_domain(message)


# Export router
triage_router = router
