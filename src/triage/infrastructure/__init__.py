"""
Triage Infrastructure Layer
============================

Concrete implementations of triage application interfaces.
"""

from src.triage.infrastructure.repositories import (
    InMemoryConversationRepository,
    SQLAlchemyConversationRepository,
)
from src.triage.infrastructure.external import (
    GenerativeBackendAdapter,
    InMemoryTicketContextProvider,
    KnowledgeBaseDocument,
    KnowledgeBaseManager,
)

__all__ = [
    "InMemoryConversationRepository",
    "SQLAlchemyConversationRepository",
    "GenerativeBackendAdapter",
    "InMemoryTicketContextProvider",
    "KnowledgeBaseDocument",
    "KnowledgeBaseManager",
]
