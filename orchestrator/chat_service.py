"""
Paperscribe — Document Chat
Per-document chat grounded in the full document content. Replies are
streamed from the active backend and forwarded as normalized SSE events.
"""
import logging
from typing import AsyncIterator, Optional

import httpx

from archive_client import ArchiveAccessError, ArchiveClient
from config.settings import AIConfig, ChatConfig
from memory.chat_sessions import ChatSession, ChatSessionStore
from orchestrator.stream_normalizer import (
    DONE_EVENT, StreamDemultiplexer, build_stream_request, content_event, error_event,
)

logger = logging.getLogger("scribe.chat")


class ChatStreamError(Exception):
    """Upstream chat backend rejected the request."""


class ChatService:

    def __init__(self, archive: ArchiveClient, ai_settings: AIConfig,
                 chat_settings: ChatConfig, store: Optional[ChatSessionStore] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.archive = archive
        self.ai_settings = ai_settings
        self.chat_settings = chat_settings
        self.store = store or ChatSessionStore(
            max_sessions=chat_settings.max_sessions,
            idle_timeout=chat_settings.idle_timeout,
        )
        timeout = (
            ai_settings.ollama_timeout if ai_settings.provider == "ollama"
            else ai_settings.request_timeout
        )
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def close(self):
        await self._client.aclose()

    async def initialize(self, document_id: int) -> ChatSession:
        """
        Start a session for a document.
        Falls back to the original file when the content endpoint fails.
        Raises ArchiveAccessError when neither is available.
        """
        snapshot = await self.archive.get_document(document_id)
        try:
            content = await self.archive.get_document_content(document_id)
        except ArchiveAccessError as e:
            logger.warning(f"Content fetch failed for {document_id}, downloading original: {e}")
            content = ""
        if not content:
            raw = await self.archive.download_document(document_id)
            content = raw.decode("utf-8", errors="replace")

        session = self.store.create(document_id, snapshot.title, content)
        logger.info(f"Chat session started for document {document_id} ({len(content)} chars)")
        return session

    async def stream_reply(self, document_id: int, message: str) -> AsyncIterator[str]:
        """
        Yield SSE events: one per content fragment, an error event on
        upstream failure, and always a final [DONE].
        """
        try:
            session = self.store.get(document_id) or await self.initialize(document_id)
        except ArchiveAccessError as e:
            logger.error(f"Chat init failed for document {document_id}: {e}")
            yield error_event(str(e))
            yield DONE_EVENT
            return

        session.append("user", message)
        request = build_stream_request(
            self.ai_settings, session.messages, self.chat_settings.temperature,
        )
        demux = StreamDemultiplexer(request.mode)
        reply = []
        try:
            async with self._client.stream(
                "POST", request.url, headers=request.headers, json=request.payload,
            ) as resp:
                if resp.status_code >= 400:
                    body = await resp.aread()
                    raise ChatStreamError(
                        f"Chat backend returned {resp.status_code}: "
                        f"{body[:200].decode('utf-8', errors='replace')}"
                    )
                async for chunk in resp.aiter_bytes():
                    for fragment in demux.feed(chunk):
                        reply.append(fragment)
                        yield content_event(fragment)
                    if demux.done:
                        break
                for fragment in demux.finish():
                    reply.append(fragment)
                    yield content_event(fragment)
        except (httpx.HTTPError, ChatStreamError) as e:
            logger.error(f"Chat stream failed for document {document_id}: {e}")
            yield error_event(str(e))

        if reply:
            session.append("assistant", "".join(reply))
        else:
            # Unanswered turn; keep user/assistant alternation
            session.messages.pop()
        yield DONE_EVENT

    def history(self, document_id: int) -> Optional[dict]:
        session = self.store.get(document_id)
        return session.to_dict() if session else None

    def delete(self, document_id: int) -> bool:
        deleted = self.store.delete(document_id)
        if deleted:
            logger.info(f"Chat session for document {document_id} deleted")
        return deleted
