"""
Triage Infrastructure Repositories
====================================

Conversation repository implementations.

- InMemoryConversationRepository: process-local store (default, tests)
- SQLAlchemyConversationRepository: async SQLAlchemy store
"""

import copy
from datetime import timezone
from typing import Dict, List, Optional
from uuid import UUID

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.config import ChatPhase, MessageRole
from src.core import RepositoryException
from src.triage.application import IConversationRepository
from src.triage.domain import (
    CollectedInfo,
    Conversation,
    ConversationMessage,
    StructuredResponse,
)


class InMemoryConversationRepository(IConversationRepository):
    """
    Dict-backed conversation store.

    Stored and returned objects are copies, so changes to a loaded
    conversation only become visible through ``save``.
    """

    def __init__(self):
        self._conversations: Dict[str, Conversation] = {}
        self._messages: Dict[str, List[ConversationMessage]] = {}

    async def get(self, conversation_id: str, for_update: bool = False) -> Optional[Conversation]:
        stored = self._conversations.get(conversation_id)
        if stored is None:
            return None
        conversation = copy.deepcopy(stored)
        conversation.messages = copy.deepcopy(self._messages.get(conversation_id, []))
        return conversation

    async def get_by_ticket_id(self, ticket_id: str) -> Optional[Conversation]:
        for conversation_id, stored in self._conversations.items():
            if stored.ticket_id == ticket_id:
                return await self.get(conversation_id)
        return None

    async def list(self, user_id: Optional[str] = None) -> List[Conversation]:
        conversations = [
            copy.deepcopy(c)
            for c in self._conversations.values()
            if user_id is None or c.user_id == user_id
        ]
        return sorted(conversations, key=lambda c: c.created_at, reverse=True)

    async def create(self, conversation: Conversation) -> Conversation:
        if conversation.id in self._conversations:
            raise RepositoryException(f"Conversation {conversation.id} already exists")
        stored = copy.deepcopy(conversation)
        stored.messages = []
        self._conversations[conversation.id] = stored
        self._messages[conversation.id] = []
        return copy.deepcopy(stored)

    async def save(self, conversation: Conversation) -> None:
        if conversation.id not in self._conversations:
            raise RepositoryException(f"Conversation {conversation.id} not found")
        stored = copy.deepcopy(conversation)
        stored.messages = []
        self._conversations[conversation.id] = stored

    async def append_message(self, message: ConversationMessage) -> ConversationMessage:
        if message.conversation_id not in self._conversations:
            raise RepositoryException(f"Conversation {message.conversation_id} not found")
        self._messages[message.conversation_id].append(copy.deepcopy(message))
        return message

    async def get_messages(self, conversation_id: str) -> List[ConversationMessage]:
        return copy.deepcopy(self._messages.get(conversation_id, []))

    async def delete(self, conversation_id: str) -> bool:
        if self._conversations.pop(conversation_id, None) is None:
            return False
        self._messages.pop(conversation_id, None)
        return True

    async def commit(self) -> None:
        # Writes are visible as soon as they are made
        return None


def _parse_uuid(value: str) -> Optional[UUID]:
    try:
        return UUID(value)
    except (ValueError, TypeError, AttributeError):
        return None


def _aware(value):
    # SQLite hands back naive datetimes
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SQLAlchemyConversationRepository(IConversationRepository):
    """SQLAlchemy implementation for conversations and their messages."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get(self, conversation_id: str, for_update: bool = False) -> Optional[Conversation]:
        """Get conversation by ID; ``for_update`` locks the row until commit."""
        model = await self._get_model(conversation_id, for_update)
        if model is None:
            return None
        conversation = self._to_domain(model)
        conversation.messages = await self.get_messages(conversation_id)
        return conversation

    async def get_by_ticket_id(self, ticket_id: str) -> Optional[Conversation]:
        from src.triage.infrastructure.models import ConversationModel

        stmt = (
            select(ConversationModel)
            .where(ConversationModel.ticket_id == ticket_id)
            .order_by(ConversationModel.created_at)
            .limit(1)
        )
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        if model is None:
            return None
        conversation = self._to_domain(model)
        conversation.messages = await self.get_messages(conversation.id)
        return conversation

    async def list(self, user_id: Optional[str] = None) -> List[Conversation]:
        from src.triage.infrastructure.models import ConversationModel

        stmt = select(ConversationModel).order_by(ConversationModel.created_at.desc())
        if user_id is not None:
            stmt = stmt.where(ConversationModel.user_id == user_id)
        result = await self._session.execute(stmt)
        return [self._to_domain(model) for model in result.scalars().all()]

    async def create(self, conversation: Conversation) -> Conversation:
        from src.triage.infrastructure.models import ConversationModel

        conversation_uuid = _parse_uuid(conversation.id)
        if conversation_uuid is None:
            raise RepositoryException(f"Invalid conversation ID: {conversation.id}")

        model = ConversationModel(
            id=conversation_uuid,
            user_id=conversation.user_id,
            ticket_id=conversation.ticket_id,
            title=conversation.title,
            phase=conversation.phase.value,
            collected_info=conversation.collected_info.to_dict() if conversation.collected_info else None,
            resolved=conversation.resolved,
            deflected=conversation.deflected,
            created_at=conversation.created_at,
            updated_at=conversation.updated_at
        )
        self._session.add(model)
        await self._session.flush()

        return self._to_domain(model)

    async def save(self, conversation: Conversation) -> None:
        model = await self._get_model(conversation.id)
        if model is None:
            raise RepositoryException(f"Conversation {conversation.id} not found")

        model.title = conversation.title
        model.phase = conversation.phase.value
        model.collected_info = conversation.collected_info.to_dict() if conversation.collected_info else None
        model.resolved = conversation.resolved
        model.deflected = conversation.deflected
        model.updated_at = conversation.updated_at

        await self._session.flush()

    async def append_message(self, message: ConversationMessage) -> ConversationMessage:
        from src.triage.infrastructure.models import ConversationMessageModel

        conversation_uuid = _parse_uuid(message.conversation_id)
        if conversation_uuid is None:
            raise RepositoryException(f"Invalid conversation ID: {message.conversation_id}")

        count_stmt = select(func.count(ConversationMessageModel.id)).where(
            ConversationMessageModel.conversation_id == conversation_uuid
        )
        position = (await self._session.execute(count_stmt)).scalar_one()

        model = ConversationMessageModel(
            id=UUID(message.id),
            conversation_id=conversation_uuid,
            position=position,
            role=message.role.value,
            content=message.content,
            attachments=list(message.attachments),
            structured_response=message.structured_response.to_dict() if message.structured_response else None,
            created_at=message.created_at
        )
        self._session.add(model)
        await self._session.flush()

        return message

    async def get_messages(self, conversation_id: str) -> List[ConversationMessage]:
        from src.triage.infrastructure.models import ConversationMessageModel

        conversation_uuid = _parse_uuid(conversation_id)
        if conversation_uuid is None:
            return []

        stmt = (
            select(ConversationMessageModel)
            .where(ConversationMessageModel.conversation_id == conversation_uuid)
            .order_by(ConversationMessageModel.position)
        )
        result = await self._session.execute(stmt)
        return [
            ConversationMessage(
                id=str(model.id),
                conversation_id=str(model.conversation_id),
                role=MessageRole(model.role),
                content=model.content,
                attachments=list(model.attachments or []),
                structured_response=(
                    StructuredResponse.from_dict(model.structured_response)
                    if model.structured_response else None
                ),
                created_at=_aware(model.created_at)
            )
            for model in result.scalars().all()
        ]

    async def delete(self, conversation_id: str) -> bool:
        from src.triage.infrastructure.models import ConversationMessageModel

        model = await self._get_model(conversation_id)
        if model is None:
            return False

        # Explicit delete: SQLite does not enforce ON DELETE CASCADE by default
        await self._session.execute(
            delete(ConversationMessageModel).where(ConversationMessageModel.conversation_id == model.id)
        )
        await self._session.delete(model)
        await self._session.flush()
        return True

    async def commit(self) -> None:
        """Commit so requests holding other sessions see the writes."""
        await self._session.commit()

    async def _get_model(self, conversation_id: str, for_update: bool = False):
        from src.triage.infrastructure.models import ConversationModel

        conversation_uuid = _parse_uuid(conversation_id)
        if conversation_uuid is None:
            return None

        stmt = select(ConversationModel).where(ConversationModel.id == conversation_uuid)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    def _to_domain(model) -> Conversation:
        return Conversation(
            id=str(model.id),
            title=model.title,
            phase=ChatPhase(model.phase),
            collected_info=CollectedInfo.from_dict(model.collected_info) if model.collected_info else None,
            user_id=model.user_id,
            ticket_id=model.ticket_id,
            resolved=model.resolved,
            deflected=model.deflected,
            created_at=_aware(model.created_at),
            updated_at=_aware(model.updated_at)
        )
