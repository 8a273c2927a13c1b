"""
Triage Application Services
============================

Application services for the two-phase triage conversation.

Orchestrates domain logic (extraction, phase policy, prompts, normalization)
between the conversation repository and the generative backend.
"""

import asyncio
from abc import ABC, abstractmethod
from collections import defaultdict
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Dict, List, Optional, Sequence

from src.config import AnalyticsEventType, ChatPhase, MessageRole
from src.core import (
    ApplicationException,
    LLMException,
    ResourceNotFoundException,
    ValidationException,
)
from src.shared.infrastructure.logging import get_context_logger, get_logger, log_latency
from src.triage.domain import (
    Attachment,
    Conversation,
    ConversationMessage,
    HistoryTurn,
    PromptContext,
    ResponseNormalizer,
    StructuredResponse,
    TicketContext,
    TriagePromptBuilder,
    decide_transition,
    extract_info,
)

logger = get_logger(__name__)

DEFAULT_CONVERSATION_TITLE = "New Conversation"
TITLE_MAX_CHARS = 60


# ========== Repository / Collaborator Interfaces ==========

class IConversationRepository(ABC):
    """Interface for conversation persistence."""

    @abstractmethod
    async def get(self, conversation_id: str, for_update: bool = False) -> Optional[Conversation]:
        """Get conversation with its message log."""

    @abstractmethod
    async def get_by_ticket_id(self, ticket_id: str) -> Optional[Conversation]:
        """Get the conversation attached to a ticket."""

    @abstractmethod
    async def list(self, user_id: Optional[str] = None) -> List[Conversation]:
        """List conversations, newest first (without messages)."""

    @abstractmethod
    async def create(self, conversation: Conversation) -> Conversation:
        """Store a new conversation."""

    @abstractmethod
    async def save(self, conversation: Conversation) -> None:
        """Persist phase, collected info, flags, title and timestamps."""

    @abstractmethod
    async def append_message(self, message: ConversationMessage) -> ConversationMessage:
        """Append to a conversation's message log."""

    @abstractmethod
    async def get_messages(self, conversation_id: str) -> List[ConversationMessage]:
        """Get a conversation's messages in order."""

    @abstractmethod
    async def delete(self, conversation_id: str) -> bool:
        """Delete a conversation and its messages."""

    @abstractmethod
    async def commit(self) -> None:
        """Make pending writes visible to other requests."""


class IGenerativeBackend(ABC):
    """Interface for the text-completion service behind the assistant."""

    @abstractmethod
    async def complete(
        self,
        instructions: str,
        history: Sequence[HistoryTurn],
        latest_message: str,
        attachments: Sequence[Attachment] = ()
    ) -> str:
        """Return raw reply text. Raises LLMException on transport failure."""


class IKnowledgeBaseProvider(ABC):
    """Interface for knowledge base excerpts used to enrich prompts."""

    @abstractmethod
    async def top_excerpts(self, n: int) -> List[str]:
        """Return up to ``n`` short excerpts."""


class ITicketContextProvider(ABC):
    """Interface for ticket fields quoted in ticket-scoped chats."""

    @abstractmethod
    async def get_context(self, ticket_id: str) -> Optional[TicketContext]:
        """Get ticket context, or None for an unknown ticket."""


# ========== Concurrency ==========

class ConversationLocks:
    """
    Keyed asyncio locks serializing turns per conversation.

    Turns on different conversations never wait on each other. Locks are
    dropped once nobody holds or awaits them.
    """

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = defaultdict(int)

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                self._locks.pop(key, None)

    def __len__(self) -> int:
        return len(self._locks)


# ========== Application Services ==========

@dataclass(frozen=True)
class TurnResult:
    """Outcome of a chat turn."""
    conversation_id: str
    response: StructuredResponse


class ConversationService:
    """
    Drives the COLLECT_INFO -> DIAGNOSE conversation.

    The service is the only writer of conversation state. Each turn runs
    under the conversation's lock and nothing is persisted unless the
    generative backend answered.
    """

    def __init__(
        self,
        repository: IConversationRepository,
        backend: IGenerativeBackend,
        kb_provider: Optional[IKnowledgeBaseProvider] = None,
        ticket_provider: Optional[ITicketContextProvider] = None,
        locks: Optional[ConversationLocks] = None,
        kb_excerpt_count: int = 3
    ):
        self._repository = repository
        self._backend = backend
        self._kb_provider = kb_provider
        self._ticket_provider = ticket_provider
        self._locks = locks or ConversationLocks()
        self._kb_excerpt_count = kb_excerpt_count

    # ----- Chat turns -----

    async def handle_turn(
        self,
        conversation_id: str,
        user_message: str,
        attachments: Sequence[Attachment] = (),
        context: Optional[PromptContext] = None
    ) -> StructuredResponse:
        """
        Process one user message and return the assistant reply.

        Args:
            conversation_id: Conversation to advance
            user_message: Text of the user's message
            attachments: Files forwarded to the backend untouched
            context: Optional ticket / knowledge base material for the prompt

        Returns:
            Normalized StructuredResponse for the phase after this turn

        Raises:
            ValidationException: Blank message
            ResourceNotFoundException: Unknown conversation
            LLMException: Generative backend failed; nothing was persisted
        """
        if not user_message or not user_message.strip():
            raise ValidationException("Message required")

        async with self._locks.hold(conversation_id):
            conversation = await self._repository.get(conversation_id, for_update=True)
            if conversation is None:
                raise ResourceNotFoundException("Conversation", conversation_id)

            turn_logger = get_context_logger(__name__, conversation_id=conversation_id)

            collected_info = extract_info(conversation.collected_info, user_message)
            phase = decide_transition(
                conversation.phase, collected_info, user_message, conversation.turn_count
            )
            if phase != conversation.phase:
                turn_logger.info(
                    "Phase transition",
                    extra={"from_phase": conversation.phase.value, "to_phase": phase.value}
                )

            instructions = TriagePromptBuilder.build_instructions(phase, collected_info, context)
            history = self._history(conversation)

            try:
                with log_latency(turn_logger, "llm_completion", phase=phase.value):
                    raw = await self._backend.complete(instructions, history, user_message, attachments)
            except LLMException:
                turn_logger.error("Generative backend failed", extra={"phase": phase.value})
                raise
            except ApplicationException:
                raise
            except Exception as e:
                turn_logger.error("Generative backend failed", extra={"phase": phase.value, "error": str(e)})
                raise LLMException(f"Triage completion failed: {e}") from e

            response = ResponseNormalizer.normalize(phase, raw)

            conversation.phase = phase
            conversation.collected_info = collected_info
            conversation.touch()
            await self._repository.save(conversation)
            await self._repository.append_message(ConversationMessage(
                conversation_id=conversation_id,
                role=MessageRole.USER,
                content=user_message,
                attachments=[a.name for a in attachments],
            ))
            await self._repository.append_message(ConversationMessage(
                conversation_id=conversation_id,
                role=MessageRole.ASSISTANT,
                content=response.message,
                structured_response=response,
            ))
            await self._repository.commit()

            turn_logger.info(
                "Turn handled",
                extra={
                    "phase": phase.value,
                    "turn_count": conversation.turn_count + 2,
                    "item_count": len(response.questions or response.steps or []),
                }
            )
            return response

    async def copilot_chat(
        self,
        message: str,
        conversation_id: Optional[str] = None,
        attachments: Sequence[Attachment] = ()
    ) -> TurnResult:
        """
        Global copilot turn enriched with knowledge base excerpts.

        Starts a new conversation when ``conversation_id`` is missing or unknown.
        """
        conversation = await self._repository.get(conversation_id) if conversation_id else None
        if conversation is None:
            conversation = await self._start(title=message.strip()[:TITLE_MAX_CHARS] or DEFAULT_CONVERSATION_TITLE)

        kb_context = await self._kb_context()
        response = await self.handle_turn(
            conversation.id,
            message,
            attachments,
            PromptContext(kb_context=kb_context),
        )
        self._emit_event(
            AnalyticsEventType.CHAT_MESSAGE,
            conversation,
            phase=response.phase.value,
            message_length=len(message),
        )
        return TurnResult(conversation_id=conversation.id, response=response)

    async def chat_for_ticket(
        self,
        ticket_id: str,
        message: str,
        attachments: Sequence[Attachment] = ()
    ) -> TurnResult:
        """
        Ticket-scoped turn; the ticket's conversation is created on first use.

        Raises:
            ResourceNotFoundException: Unknown ticket
        """
        ticket = await self._ticket_provider.get_context(ticket_id) if self._ticket_provider else None
        if ticket is None:
            raise ResourceNotFoundException("Ticket", ticket_id)

        async with self._locks.hold(f"ticket:{ticket_id}"):
            conversation = await self._repository.get_by_ticket_id(ticket_id)
            if conversation is None:
                conversation = await self._start(
                    title=(ticket.subject or DEFAULT_CONVERSATION_TITLE)[:TITLE_MAX_CHARS],
                    ticket_id=ticket_id,
                )

        response = await self.handle_turn(
            conversation.id,
            message,
            attachments,
            PromptContext(ticket=ticket),
        )
        return TurnResult(conversation_id=conversation.id, response=response)

    # ----- Conversation management -----

    async def create_conversation(
        self,
        user_id: Optional[str] = None,
        ticket_id: Optional[str] = None,
        title: Optional[str] = None
    ) -> Conversation:
        return await self._start(title=title or DEFAULT_CONVERSATION_TITLE, user_id=user_id, ticket_id=ticket_id)

    async def get_conversation(self, conversation_id: str) -> Conversation:
        conversation = await self._repository.get(conversation_id)
        if conversation is None:
            raise ResourceNotFoundException("Conversation", conversation_id)
        return conversation

    async def get_ticket_conversation(self, ticket_id: str) -> Conversation:
        conversation = await self._repository.get_by_ticket_id(ticket_id)
        if conversation is None:
            raise ResourceNotFoundException("Conversation for ticket", ticket_id)
        return conversation

    async def list_conversations(self, user_id: Optional[str] = None) -> List[Conversation]:
        return await self._repository.list(user_id)

    async def add_message(
        self,
        conversation_id: str,
        role: MessageRole,
        content: str,
        attachments: Optional[List[str]] = None
    ) -> ConversationMessage:
        """Append a message without running a triage turn."""
        if not content or not content.strip():
            raise ValidationException("Role and content required")

        async with self._locks.hold(conversation_id):
            conversation = await self._repository.get(conversation_id, for_update=True)
            if conversation is None:
                raise ResourceNotFoundException("Conversation", conversation_id)
            message = await self._repository.append_message(ConversationMessage(
                conversation_id=conversation_id,
                role=role,
                content=content,
                attachments=list(attachments or []),
            ))
            conversation.touch()
            await self._repository.save(conversation)
            await self._repository.commit()
            return message

    async def update_conversation(
        self,
        conversation_id: str,
        resolved: Optional[bool] = None,
        deflected: Optional[bool] = None,
        title: Optional[str] = None
    ) -> Conversation:
        """Update outcome flags or title; deflection is reported to analytics."""
        async with self._locks.hold(conversation_id):
            conversation = await self._repository.get(conversation_id, for_update=True)
            if conversation is None:
                raise ResourceNotFoundException("Conversation", conversation_id)

            if resolved is not None:
                conversation.resolved = resolved
            if deflected is not None:
                conversation.deflected = deflected
            if title is not None:
                conversation.title = title
            conversation.touch()
            await self._repository.save(conversation)
            await self._repository.commit()

        if deflected:
            self._emit_event(AnalyticsEventType.TICKET_DEFLECTED, conversation)
        return conversation

    async def delete_conversation(self, conversation_id: str) -> None:
        async with self._locks.hold(conversation_id):
            if not await self._repository.delete(conversation_id):
                raise ResourceNotFoundException("Conversation", conversation_id)
            await self._repository.commit()

    # ----- Helpers -----

    async def _start(
        self,
        title: str,
        user_id: Optional[str] = None,
        ticket_id: Optional[str] = None
    ) -> Conversation:
        conversation = await self._repository.create(
            Conversation.start(title=title, user_id=user_id, ticket_id=ticket_id)
        )
        await self._repository.commit()
        self._emit_event(AnalyticsEventType.CONVERSATION_STARTED, conversation)
        return conversation

    @staticmethod
    def _history(conversation: Conversation) -> List[HistoryTurn]:
        """Full message log; the prompt builder keeps the recent window."""
        return [HistoryTurn(role=m.role, content=m.content) for m in conversation.messages]

    async def _kb_context(self) -> Optional[str]:
        """Knowledge base excerpts joined for the prompt; omitted when unavailable."""
        if self._kb_provider is None or self._kb_excerpt_count <= 0:
            return None
        try:
            excerpts = await self._kb_provider.top_excerpts(self._kb_excerpt_count)
        except Exception as e:
            logger.warning("Knowledge base unavailable, continuing without it", extra={"error": str(e)})
            return None
        return "\n".join(excerpts) if excerpts else None

    @staticmethod
    def _emit_event(event_type: AnalyticsEventType, conversation: Conversation, **metadata) -> None:
        logger.info(
            "Analytics event",
            extra={
                "event_type": event_type.value,
                "conversation_id": conversation.id,
                "ticket_id": conversation.ticket_id,
                "user_id": conversation.user_id,
                "metadata": metadata,
            }
        )
