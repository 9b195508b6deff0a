"""Paperscribe — document and analysis data models."""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

# Ledger statuses, in the only order they may advance
STATUS_UNPROCESSED = "unprocessed"
STATUS_PROCESSING = "processing"
STATUS_COMPLETE = "complete"
STATUS_ORDER = (STATUS_UNPROCESSED, STATUS_PROCESSING, STATUS_COMPLETE)


@dataclass
class Document:
    """Snapshot of an archive document as returned by the REST API."""
    id: int
    title: str = ""
    tags: List[int] = field(default_factory=list)
    correspondent: Optional[int] = None
    document_type: Optional[int] = None
    custom_fields: List[dict] = field(default_factory=list)  # [{field, value}, ...]
    created: Optional[str] = None
    language: Optional[str] = None
    content: str = ""
    original_file_name: Optional[str] = None
    user_can_change: Optional[bool] = None

    @classmethod
    def from_api(cls, data: dict) -> "Document":
        return cls(
            id=int(data["id"]),
            title=data.get("title") or "",
            tags=list(data.get("tags") or []),
            correspondent=data.get("correspondent"),
            document_type=data.get("document_type"),
            custom_fields=[
                {"field": cf.get("field"), "value": cf.get("value")}
                for cf in (data.get("custom_fields") or [])
                if isinstance(cf, dict)
            ],
            created=data.get("created") or data.get("created_date"),
            language=data.get("language"),
            content=data.get("content") or "",
            original_file_name=data.get("original_file_name"),
            user_can_change=data.get("user_can_change"),
        )


@dataclass
class TokenMetrics:
    """Token usage of one provider call. All zeros means "not measured"."""
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    @property
    def measured(self) -> bool:
        return bool(self.prompt_tokens or self.completion_tokens or self.total_tokens)


def _clean_str(value) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _normalize_custom_fields(raw) -> Dict[str, Any]:
    """Accept {name: value}, {"0": {field_name, value}} or [{field_name, value}]."""
    if isinstance(raw, dict):
        items = list(raw.items())
        if items and all(isinstance(v, dict) for _, v in items):
            raw = [v for _, v in items]
        else:
            return {str(k).strip(): v for k, v in items if str(k).strip()}
    fields = {}
    if isinstance(raw, list):
        for entry in raw:
            if not isinstance(entry, dict):
                continue
            name = entry.get("field_name") or entry.get("name")
            if name and str(name).strip():
                fields[str(name).strip()] = entry.get("value")
    return fields


@dataclass
class AnalysisResult:
    """Metadata proposed by a model for one document."""
    tags: List[str] = field(default_factory=list)
    correspondent: Optional[str] = None
    title: Optional[str] = None
    document_type: Optional[str] = None
    document_date: Optional[str] = None
    language: Optional[str] = None
    custom_fields: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def empty(cls) -> "AnalysisResult":
        return cls(tags=[], correspondent=None)

    @classmethod
    def from_dict(cls, data: dict) -> "AnalysisResult":
        raw_tags = data.get("tags")
        if isinstance(raw_tags, str):
            raw_tags = [t for t in raw_tags.split(",")]
        tags = []
        for tag in raw_tags if isinstance(raw_tags, list) else []:
            name = _clean_str(tag)
            if name and name not in tags:
                tags.append(name)
        return cls(
            tags=tags,
            correspondent=_clean_str(data.get("correspondent")),
            title=_clean_str(data.get("title")),
            document_type=_clean_str(data.get("document_type")),
            document_date=_clean_str(data.get("document_date")),
            language=_clean_str(data.get("language")),
            custom_fields=_normalize_custom_fields(data.get("custom_fields")),
        )

    def to_dict(self) -> dict:
        return {
            "title": self.title,
            "correspondent": self.correspondent,
            "tags": list(self.tags),
            "document_type": self.document_type,
            "document_date": self.document_date,
            "language": self.language,
            "custom_fields": dict(self.custom_fields),
        }


@dataclass
class AnalysisOutcome:
    """What the provider gateway hands back. Never raised, always returned."""
    document: AnalysisResult = field(default_factory=AnalysisResult.empty)
    metrics: Optional[TokenMetrics] = None
    error: Optional[str] = None
    truncated: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def failure(cls, message: str) -> "AnalysisOutcome":
        return cls(document=AnalysisResult.empty(), metrics=None, error=message)

    def to_dict(self) -> dict:
        metrics = None
        if self.metrics is not None:
            metrics = {
                "promptTokens": self.metrics.prompt_tokens,
                "completionTokens": self.metrics.completion_tokens,
                "totalTokens": self.metrics.total_tokens,
            }
        out = {"document": self.document.to_dict(), "metrics": metrics, "truncated": self.truncated}
        if self.error:
            out["error"] = self.error
        return out


@dataclass
class UpdatePlan:
    """Minimal patch for one document. None means "leave untouched"."""
    tags: Optional[List[int]] = None
    correspondent: Optional[int] = None
    document_type: Optional[int] = None
    title: Optional[str] = None
    created: Optional[str] = None
    language: Optional[str] = None
    custom_fields: Optional[List[dict]] = None
    tag_errors: List[dict] = field(default_factory=list)

    def to_payload(self) -> dict:
        payload = {}
        for name in ("tags", "correspondent", "document_type", "title",
                     "created", "language", "custom_fields"):
            value = getattr(self, name)
            if value is not None:
                payload[name] = value
        return payload

    @property
    def is_empty(self) -> bool:
        return not self.to_payload()
