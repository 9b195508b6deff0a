"""
In-memory chat transcripts, one per document.
Bounded: least-recently-used sessions are evicted past max_sessions, and
sessions idle longer than idle_timeout are dropped on access.
"""
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

logger = logging.getLogger("scribe.chat_sessions")


@dataclass
class ChatSession:
    document_id: int
    title: str
    messages: List[Dict[str, str]] = field(default_factory=list)
    last_access: float = 0.0

    def append(self, role: str, content: str):
        self.messages.append({"role": role, "content": content})

    def to_dict(self) -> dict:
        return {
            "documentId": self.document_id,
            "title": self.title,
            # The system message carries the whole document; not echoed back
            "messages": [m for m in self.messages if m["role"] != "system"],
        }


class ChatSessionStore:

    def __init__(self, max_sessions: int = 100, idle_timeout: float = 3600,
                 clock: Callable[[], float] = time.monotonic):
        self.max_sessions = max_sessions
        self.idle_timeout = idle_timeout
        self._clock = clock
        self._sessions: "OrderedDict[int, ChatSession]" = OrderedDict()

    def __len__(self):
        return len(self._sessions)

    def create(self, document_id: int, title: str, content: str) -> ChatSession:
        """Start (or restart) a session seeded with the full document content."""
        session = ChatSession(document_id=document_id, title=title, last_access=self._clock())
        session.append("system", _system_message(title, content))
        self._sessions[document_id] = session
        self._sessions.move_to_end(document_id)
        self._evict()
        return session

    def get(self, document_id: int) -> Optional[ChatSession]:
        self._expire()
        session = self._sessions.get(document_id)
        if session is None:
            return None
        session.last_access = self._clock()
        self._sessions.move_to_end(document_id)
        return session

    def delete(self, document_id: int) -> bool:
        return self._sessions.pop(document_id, None) is not None

    def document_ids(self) -> List[int]:
        self._expire()
        return list(self._sessions)

    def _expire(self):
        if not self.idle_timeout:
            return
        cutoff = self._clock() - self.idle_timeout
        stale = [doc_id for doc_id, s in self._sessions.items() if s.last_access < cutoff]
        for doc_id in stale:
            del self._sessions[doc_id]
        if stale:
            logger.info(f"Expired {len(stale)} idle chat session(s)")

    def _evict(self):
        while len(self._sessions) > self.max_sessions:
            doc_id, _ = self._sessions.popitem(last=False)
            logger.info(f"Chat session for document {doc_id} evicted (limit {self.max_sessions})")


def _system_message(title: str, content: str) -> str:
    return (
        "You are a helpful assistant answering questions about one document "
        "from the user's archive. Answer only from the document below; say so "
        "when the answer is not in it.\n\n"
        f"Document title: {title}\n\n"
        f"Document content:\n{content}"
    )
