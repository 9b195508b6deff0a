"""In-memory fakes for the archive, the ledger and the AI provider."""
from typing import Dict, List, Optional

from archive_client import ArchiveAccessError
from models.documents import (
    STATUS_COMPLETE, STATUS_ORDER, STATUS_UNPROCESSED,
    AnalysisOutcome, AnalysisResult, Document, TokenMetrics,
)


class CharEncoding:
    """One token per character. Stands in for a tiktoken encoding."""

    def encode(self, text: str) -> List[int]:
        return [ord(c) for c in text]

    def decode(self, tokens: List[int]) -> str:
        return "".join(chr(t) for t in tokens)


class FakeArchive:
    """Archive with documents, vocabularies and a write log."""

    def __init__(self):
        self.documents: Dict[int, Document] = {}
        self.contents: Dict[int, str] = {}
        self.files: Dict[int, bytes] = {}
        self.read_only: set = set()
        self.tags: List[dict] = []
        self.correspondents: List[dict] = []
        self.document_types: List[dict] = []
        self.custom_fields: List[dict] = []
        self.updates: List[tuple] = []
        self.created_tags: List[str] = []
        self.content_calls = 0
        self.fail_update = False
        self.fail_content = False
        self._next_id = 100

    def add_document(self, doc_id: int, content: str = "", **fields) -> Document:
        doc = Document(id=doc_id, content=content, **fields)
        self.documents[doc_id] = doc
        self.contents[doc_id] = content
        return doc

    def _new_id(self) -> int:
        self._next_id += 1
        return self._next_id

    def _get(self, doc_id: int) -> Document:
        if doc_id not in self.documents:
            raise ArchiveAccessError(f"Document {doc_id} not found", status_code=404)
        return self.documents[doc_id]

    async def ping(self) -> bool:
        return True

    async def list_documents(self) -> List[Document]:
        return list(self.documents.values())

    async def get_document(self, doc_id: int) -> Document:
        return self._get(doc_id)

    async def get_document_content(self, doc_id: int) -> str:
        self.content_calls += 1
        if self.fail_content:
            raise ArchiveAccessError("content endpoint down", status_code=500)
        self._get(doc_id)
        return self.contents.get(doc_id, "")

    async def download_document(self, doc_id: int) -> bytes:
        return self.files.get(doc_id, b"")

    async def get_thumbnail(self, doc_id: int) -> bytes:
        self._get(doc_id)
        return b"thumb"

    async def can_edit(self, doc_id: int) -> bool:
        self._get(doc_id)
        return doc_id not in self.read_only

    async def update_document(self, doc_id: int, plan):
        if self.fail_update:
            raise ArchiveAccessError("PATCH failed", status_code=500)
        self.updates.append((doc_id, plan.to_payload()))
        return {"id": doc_id}

    async def get_tags(self) -> List[dict]:
        return list(self.tags)

    async def process_tags(self, names: List[str]):
        ids, seen = [], set()
        for name in names:
            key = name.strip().lower()
            if not key or key in seen:
                continue
            seen.add(key)
            tag = next((t for t in self.tags if t["name"].lower() == key), None)
            if tag is None:
                tag = {"id": self._new_id(), "name": name.strip()}
                self.tags.append(tag)
                self.created_tags.append(name.strip())
            ids.append(tag["id"])
        return ids, []

    async def get_correspondents(self) -> List[dict]:
        return list(self.correspondents)

    async def _get_or_create(self, items: List[dict], name: str) -> dict:
        for item in items:
            if item["name"].lower() == name.lower():
                return item
        item = {"id": self._new_id(), "name": name}
        items.append(item)
        return item

    async def get_or_create_correspondent(self, name: str) -> dict:
        return await self._get_or_create(self.correspondents, name)

    async def get_or_create_document_type(self, name: str) -> dict:
        return await self._get_or_create(self.document_types, name)

    async def get_custom_fields(self) -> List[dict]:
        return list(self.custom_fields)

    async def close(self):
        pass


class FakeLedger:

    def __init__(self):
        self.statuses: Dict[int, str] = {}
        self.status_log: List[tuple] = []
        self.metrics: List[tuple] = []
        self.history: List[dict] = []
        self.originals: Dict[int, dict] = {}

    def get_status(self, doc_id: int) -> str:
        return self.statuses.get(doc_id, STATUS_UNPROCESSED)

    def is_processed(self, doc_id: int) -> bool:
        return self.get_status(doc_id) == STATUS_COMPLETE

    def set_status(self, doc_id: int, status: str):
        if STATUS_ORDER.index(status) > STATUS_ORDER.index(self.get_status(doc_id)):
            self.statuses[doc_id] = status
        self.status_log.append((doc_id, status))

    def record_metrics(self, doc_id, prompt_tokens, completion_tokens, total_tokens):
        self.metrics.append((doc_id, prompt_tokens, completion_tokens, total_tokens))

    def record_history(self, doc_id, tags, title, correspondent):
        self.history.append({
            "document_id": doc_id, "tags": tags, "title": title, "correspondent": correspondent,
        })

    def record_original_snapshot(self, doc_id, tags, correspondent, title):
        self.originals.setdefault(doc_id, {"tags": tags, "correspondent": correspondent, "title": title})

    def token_totals(self) -> dict:
        measured = [m for m in self.metrics if any(m[1:])]
        return {
            "measured_calls": len(measured),
            "unmeasured_calls": len(self.metrics) - len(measured),
            "prompt_tokens": sum(m[1] for m in measured),
            "completion_tokens": sum(m[2] for m in measured),
            "total_tokens": sum(m[3] for m in measured),
        }

    def recent_history(self, limit: int = 20) -> list:
        return list(reversed(self.history))[:limit]

    def close(self):
        pass


class FakeProvider:
    """Returns a canned outcome and records every call."""

    name = "fake"
    model = "fake-model"

    def __init__(self, outcome: Optional[AnalysisOutcome] = None):
        self.outcome = outcome or AnalysisOutcome(
            document=AnalysisResult(
                tags=["Invoice"], correspondent="ACME", title="ACME invoice",
                document_type="Invoice", document_date="2024-03-01", language="en",
            ),
            metrics=TokenMetrics(120, 30, 150),
        )
        self.calls: List[dict] = []
        self.closed = False

    async def analyze(self, content, existing_tags, existing_correspondents,
                      document_id=None, custom_prompt=None) -> AnalysisOutcome:
        self.calls.append({
            "content": content,
            "existing_tags": existing_tags,
            "existing_correspondents": existing_correspondents,
            "document_id": document_id,
            "custom_prompt": custom_prompt,
        })
        return self.outcome

    async def analyze_ad_hoc(self, content, prompt) -> AnalysisOutcome:
        self.calls.append({"content": content, "prompt": prompt})
        return self.outcome

    async def close(self):
        self.closed = True
