"""
HTTP surface tests: webhook ingestion, status, playground, chat SSE.
Runs against in-memory services; no archive, database or AI backend.
"""
import httpx
import pytest
from unittest.mock import patch
from fastapi.testclient import TestClient

from config.settings import AIConfig, ChatConfig, FeatureFlags, ScanConfig
from models.documents import STATUS_COMPLETE
from orchestrator.chat_service import ChatService
from orchestrator.pipeline import IntakePipeline
from orchestrator.reconciler import Reconciler
from orchestrator.services import ServiceBundle
from tests.fakes import FakeArchive, FakeLedger, FakeProvider

HEADERS = {"X-Scribe-Key": "test-key"}


def _chat_backend(request):
    return httpx.Response(200, content=(
        b'data: {"choices":[{"delta":{"content":"Forty"}}]}\n\n'
        b'data: garbage\n\n'
        b'data: {"choices":[{"delta":{"content":"-two"}}]}\n\n'
        b'data: [DONE]\n\n'
    ))


@pytest.fixture
def services():
    archive = FakeArchive()
    archive.add_document(1, "Invoice total 42.00", title="Invoice")
    ledger = FakeLedger()
    provider = FakeProvider()
    scan = ScanConfig(interval="*/30 * * * *", run_on_startup=False, process_predefined_documents=False,
                      tags=[], content_max_length=50_000, min_content_length=10, webhook_queue_size=2)
    flags = FeatureFlags(tagging=True, correspondents=True, document_type=True, title=True,
                         custom_fields=True, add_ai_processed_tag=False)
    pipeline = IntakePipeline(archive, ledger, provider, Reconciler(archive, ledger, flags), scan)
    ai = AIConfig(provider="openai", openai_api_key="sk", openai_model="gpt-4o-mini",
                  openai_base_url="https://api.openai.com/v1")
    chat = ChatService(archive, ai, ChatConfig(max_sessions=5, idle_timeout=3600),
                       transport=httpx.MockTransport(_chat_backend))
    return ServiceBundle(archive=archive, ledger=ledger, provider=provider, pipeline=pipeline, chat=chat)


@pytest.fixture
def client(services):
    with patch("outputs.dashboard._SCRIBE_API_KEY", "test-key"):
        from outputs.dashboard import create_app
        yield TestClient(create_app(services=services, start_background=False))


def test_missing_api_key_is_rejected(client):
    resp = client.get("/api/processing-status")
    assert resp.status_code == 401


def test_webhook_queues_document(client, services):
    resp = client.post(
        "/api/webhook/document",
        json={"url": "http://paperless:8000/api/documents/123/", "prompt": "Find the IBAN"},
        headers=HEADERS,
    )
    assert resp.status_code == 202
    assert resp.json()["documentId"] == 123
    assert resp.json()["queueLength"] == 1


def test_webhook_url_without_id_is_400(client):
    resp = client.post("/api/webhook/document", json={"url": "http://paperless/api/tags/"},
                       headers=HEADERS)
    assert resp.status_code == 400


def test_webhook_queue_full_is_429(client):
    for doc_id in (1, 2):
        client.post("/api/webhook/document", json={"url": f"/api/documents/{doc_id}"}, headers=HEADERS)
    resp = client.post("/api/webhook/document", json={"url": "/api/documents/3/"}, headers=HEADERS)
    assert resp.status_code == 429


def test_processing_status_shape(client):
    resp = client.get("/api/processing-status", headers=HEADERS)
    assert resp.json() == {"isProcessing": False, "queueLength": 0, "currentDocument": None}


def test_scan_now_reports_completion(client, services):
    resp = client.post("/api/scan/now", headers=HEADERS)
    assert resp.status_code == 200
    assert resp.json()["status"] == "completed"
    assert resp.json()["summary"]["completed"] == 1
    assert services.ledger.get_status(1) == STATUS_COMPLETE


def test_playground_returns_outcome(client, services):
    resp = client.post("/api/playground/analyze",
                       json={"content": "some text", "prompt": "What is this?"}, headers=HEADERS)
    body = resp.json()
    assert body["document"]["correspondent"] == "ACME"
    assert body["metrics"] == {"promptTokens": 120, "completionTokens": 30, "totalTokens": 150}
    assert services.provider.calls[-1]["prompt"] == "What is this?"


def test_token_metrics(client, services):
    services.ledger.record_metrics(1, 10, 5, 15)
    services.ledger.record_metrics(2, 0, 0, 0)
    resp = client.get("/api/metrics/tokens", headers=HEADERS)
    assert resp.json()["measured_calls"] == 1
    assert resp.json()["unmeasured_calls"] == 1
    assert resp.json()["total_tokens"] == 15


def test_chat_stream_is_normalized(client):
    resp = client.post("/api/chat/1/messages", json={"message": "What is the total?"}, headers=HEADERS)
    assert resp.status_code == 200
    assert "text/event-stream" in resp.headers["content-type"]
    assert resp.text == (
        'data: {"content": "Forty"}\n\n'
        'data: {"content": "-two"}\n\n'
        "data: [DONE]\n\n"
    )

    history = client.get("/api/chat/1", headers=HEADERS).json()
    assert history["messages"][-1] == {"role": "assistant", "content": "Forty-two"}

    assert client.delete("/api/chat/1", headers=HEADERS).status_code == 200
    assert client.get("/api/chat/1", headers=HEADERS).status_code == 404


def test_chat_init_unknown_document_is_404(client):
    resp = client.post("/api/chat/999/init", headers=HEADERS)
    assert resp.status_code == 404


def test_thumbnail_proxy(client):
    resp = client.get("/api/documents/1/thumbnail", headers=HEADERS)
    assert resp.content == b"thumb"


def test_health(client):
    assert client.get("/health").json() == {"status": "healthy"}


@pytest.mark.asyncio
async def test_bundle_close_releases_provider(services):
    await services.close()
    assert services.provider.closed is True
