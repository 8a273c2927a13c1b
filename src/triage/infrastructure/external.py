"""
Triage External Service Adapters
==================================

Adapters for services used by the triage module:
- Generative backend (LLM client wrapper)
- YAML knowledge base with hot-reload
- Ticket context provider

Implements the interfaces defined in the application layer using concrete
infrastructure clients.
"""

import threading
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import yaml
from pydantic import BaseModel, Field
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from src.core import ApplicationException, LLMException
from src.infrastructure.llm import ILLMClient, JSON_OBJECT_FORMAT
from src.shared.infrastructure.logging import get_logger
from src.triage.application import (
    IGenerativeBackend,
    IKnowledgeBaseProvider,
    ITicketContextProvider,
)
from src.triage.domain import (
    Attachment,
    HistoryTurn,
    TicketContext,
    TriagePromptBuilder,
)

logger = get_logger(__name__)


class GenerativeBackendAdapter(IGenerativeBackend):
    """
    Adapter that wraps the infrastructure LLM client.

    Builds the chat message list from the triage instructions and history,
    asks for a JSON object reply, and returns the raw text untouched.
    """

    def __init__(
        self,
        llm_client: ILLMClient,
        temperature: float = 0.3,
        max_tokens: int = 4096,
        history_window: int = 6,
        history_message_chars: int = 300,
        latest_message_chars: int = 500
    ):
        self._client = llm_client
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._history_window = history_window
        self._history_message_chars = history_message_chars
        self._latest_message_chars = latest_message_chars

    async def complete(
        self,
        instructions: str,
        history: Sequence[HistoryTurn],
        latest_message: str,
        attachments: Sequence[Attachment] = ()
    ) -> str:
        messages = TriagePromptBuilder.build_messages(
            instructions,
            history,
            latest_message,
            history_window=self._history_window,
            history_message_chars=self._history_message_chars,
            latest_message_chars=self._latest_message_chars
        )
        if attachments:
            messages[-1] = self._with_attachments(messages[-1], attachments)

        try:
            result = await self._client.chat_completion(
                messages,
                temperature=self._temperature,
                max_tokens=self._max_tokens,
                operation="triage_chat",
                response_format=JSON_OBJECT_FORMAT
            )
        except ApplicationException:
            raise
        except Exception as e:
            raise LLMException(f"Triage completion failed: {e}") from e

        return result.content or ""

    @staticmethod
    def _with_attachments(message: dict, attachments: Sequence[Attachment]) -> dict:
        """Turn the user message into content blocks carrying the attachments."""
        blocks: List[dict] = [{"type": "text", "text": message["content"]}]
        for attachment in attachments:
            if attachment.is_image:
                blocks.append({
                    "type": "image_url",
                    "image_url": {"url": f"data:{attachment.content_type};base64,{attachment.data}"}
                })
            else:
                blocks.append({
                    "type": "text",
                    "text": f"[Attached file: {attachment.name}]\n{attachment.data}"
                })
        return {"role": message["role"], "content": blocks}


# ========== Knowledge Base ==========

class KnowledgeBaseDocument(BaseModel):
    """Knowledge base article."""
    title: str = Field(..., min_length=1)
    content: str = ""
    category: Optional[str] = None
    tags: List[str] = Field(default_factory=list)


class KnowledgeBaseFileHandler(FileSystemEventHandler):
    """Watchdog event handler for knowledge base file changes."""

    def __init__(self, manager: "KnowledgeBaseManager", path: Path):
        self.manager = manager
        self.path = path
        super().__init__()

    def on_modified(self, event):
        """Handle file modification event."""
        if event.is_directory:
            return
        if Path(event.src_path).resolve() == self.path.resolve():
            logger.info(f"Knowledge base file changed: {event.src_path}")
            self.manager.reload()


class KnowledgeBaseManager(IKnowledgeBaseProvider):
    """
    Thread-safe YAML knowledge base with hot-reload support.

    The file holds a ``documents`` list of title/content entries. Excerpts
    are served in file order.
    """

    def __init__(self, excerpt_chars: int = 200):
        self._documents: List[KnowledgeBaseDocument] = []
        self._lock = threading.Lock()
        self._path: Optional[Path] = None
        self._observer = None
        self._excerpt_chars = excerpt_chars

    def load(self, path: Path) -> List[KnowledgeBaseDocument]:
        """Initial knowledge base load."""
        self._path = Path(path)
        documents = self._load_from_file(self._path)
        with self._lock:
            self._documents = documents
        logger.info("Knowledge base loaded", extra={"document_count": len(documents)})
        return documents

    def _load_from_file(self, path: Path) -> List[KnowledgeBaseDocument]:
        """Load and parse the YAML knowledge base."""
        if not path.exists():
            logger.warning(f"Knowledge base file not found: {path}, continuing without it")
            return []

        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        return [KnowledgeBaseDocument(**doc) for doc in data.get("documents") or []]

    def reload(self) -> bool:
        """Reload the knowledge base from file."""
        if self._path is None:
            return False

        try:
            documents = self._load_from_file(self._path)
            with self._lock:
                self._documents = documents
            logger.info("Knowledge base reloaded successfully", extra={"document_count": len(documents)})
            return True
        except Exception as e:
            logger.error(f"Failed to reload knowledge base: {e}")
            return False

    def start_watching(self) -> None:
        """
        Start watching the knowledge base file for changes.

        Skipped when the file does not exist or inotify is unavailable.
        """
        if self._path is None:
            raise RuntimeError("Knowledge base not loaded. Call load() first.")

        if not self._path.exists():
            logger.info(f"Knowledge base file doesn't exist, skipping file watch: {self._path}")
            return

        try:
            self._observer = Observer()
            handler = KnowledgeBaseFileHandler(self, self._path)
            self._observer.schedule(handler, str(self._path.parent), recursive=False)
            self._observer.start()
            logger.info(f"Started watching knowledge base file: {self._path}")
        except OSError as e:
            logger.warning(f"File watching not available, using static knowledge base: {e}")
            self._observer = None

    def stop_watching(self) -> None:
        """Stop watching (safe to call even if not watching)."""
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None

    @property
    def documents(self) -> List[KnowledgeBaseDocument]:
        with self._lock:
            return list(self._documents)

    async def top_excerpts(self, n: int) -> List[str]:
        return [
            f"[{doc.title}]: {doc.content[:self._excerpt_chars]}"
            for doc in self.documents[:max(n, 0)]
        ]


# ========== Ticket Context ==========

class InMemoryTicketContextProvider(ITicketContextProvider):
    """Ticket fields registered by the ticketing side of the helpdesk."""

    def __init__(self, tickets: Optional[Dict[str, TicketContext]] = None):
        self._tickets: Dict[str, TicketContext] = dict(tickets or {})

    def upsert(self, ticket_id: str, context: TicketContext) -> None:
        self._tickets[ticket_id] = context

    async def get_context(self, ticket_id: str) -> Optional[TicketContext]:
        return self._tickets.get(ticket_id)
