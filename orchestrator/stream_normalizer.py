"""
Streaming chat normalizer.

Each backend streams differently:
  - Ollama:              newline-delimited JSON, {"message": {"content": ...}, "done": bool}
  - OpenAI/Azure/custom: SSE lines, data: {"choices": [{"delta": {"content": ...}}]}
                         terminated by data: [DONE]

StreamDemultiplexer turns raw bytes (split at arbitrary offsets) into
content fragments; the event helpers re-emit them as one uniform SSE shape.
"""
import codecs
import json
import logging
from dataclasses import dataclass
from typing import List, Optional

from config.settings import AIConfig

logger = logging.getLogger("scribe.stream")

NDJSON = "ndjson"
SSE = "sse"

DONE_EVENT = "data: [DONE]\n\n"


def content_event(fragment: str) -> str:
    return f"data: {json.dumps({'content': fragment})}\n\n"


def error_event(message: str) -> str:
    return f"data: {json.dumps({'error': message})}\n\n"


class StreamDemultiplexer:
    """Incremental decoder for one upstream response body."""

    def __init__(self, mode: str):
        if mode not in (NDJSON, SSE):
            raise ValueError(f"Unknown stream mode: {mode}")
        self.mode = mode
        self.done = False
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    def feed(self, chunk: bytes) -> List[str]:
        """Consume a chunk; return the fragments of every line it completed."""
        if self.done:
            return []
        self._buffer += self._decoder.decode(chunk)
        fragments = []
        while not self.done and "\n" in self._buffer:
            line, self._buffer = self._buffer.split("\n", 1)
            fragment = self._parse_line(line)
            if fragment:
                fragments.append(fragment)
        return fragments

    def finish(self) -> List[str]:
        """Flush a trailing line that arrived without a newline."""
        self._buffer += self._decoder.decode(b"", final=True)
        line, self._buffer = self._buffer, ""
        if self.done or not line.strip():
            return []
        fragment = self._parse_line(line)
        return [fragment] if fragment else []

    def _parse_line(self, line: str) -> Optional[str]:
        line = line.strip()
        if not line:
            return None
        if self.mode == NDJSON:
            return self._parse_ndjson(line)
        return self._parse_sse(line)

    def _parse_ndjson(self, line: str) -> Optional[str]:
        try:
            data = json.loads(line)
        except json.JSONDecodeError:
            logger.debug(f"Skipping malformed stream line: {line[:80]!r}")
            return None
        if not isinstance(data, dict):
            return None
        if data.get("done"):
            self.done = True
        message = data.get("message")
        if isinstance(message, dict) and message.get("content"):
            return message["content"]
        return data.get("response") or None

    def _parse_sse(self, line: str) -> Optional[str]:
        # event:/id:/comment lines carry no content
        if not line.startswith("data:"):
            return None
        payload = line[len("data:"):].strip()
        if payload == "[DONE]":
            self.done = True
            return None
        try:
            data = json.loads(payload)
            return data["choices"][0]["delta"].get("content") or None
        except (json.JSONDecodeError, KeyError, IndexError, TypeError, AttributeError):
            logger.debug(f"Skipping malformed stream line: {line[:80]!r}")
            return None


@dataclass
class StreamRequest:
    url: str
    headers: dict
    payload: dict
    mode: str


def build_stream_request(settings: AIConfig, messages: List[dict],
                         temperature: float = 0.7) -> StreamRequest:
    """Shape a streaming chat request for the active backend."""
    provider = settings.provider
    headers = {"Content-Type": "application/json"}
    payload = {"messages": messages, "stream": True, "temperature": temperature}

    if provider == "ollama":
        payload = {
            "model": settings.ollama_model,
            "messages": messages,
            "stream": True,
            "options": {"temperature": temperature},
        }
        return StreamRequest(f"{settings.ollama_api_url}/api/chat", headers, payload, NDJSON)

    if provider == "azure":
        headers["api-key"] = settings.azure_api_key
        url = (
            f"{settings.azure_endpoint}/openai/deployments/{settings.azure_deployment}"
            f"/chat/completions?api-version={settings.azure_api_version}"
        )
        return StreamRequest(url, headers, payload, SSE)

    if provider == "custom":
        if settings.custom_api_key:
            headers["Authorization"] = f"Bearer {settings.custom_api_key}"
        payload["model"] = settings.custom_model
        return StreamRequest(f"{settings.custom_base_url}/chat/completions", headers, payload, SSE)

    if provider == "openai":
        headers["Authorization"] = f"Bearer {settings.openai_api_key}"
        payload["model"] = settings.openai_model
        base = (settings.openai_base_url or "https://api.openai.com/v1").rstrip("/")
        return StreamRequest(f"{base}/chat/completions", headers, payload, SSE)

    raise ValueError(f"Unknown AI provider: {provider}")
