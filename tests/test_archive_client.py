"""Archive client over httpx.MockTransport."""
import json
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from archive_client import ArchiveAccessError, ArchiveClient
from config.settings import ArchiveConfig
from models.documents import UpdatePlan


def _client(handler):
    settings = ArchiveConfig(api_url="http://paperless/api", api_token="tok", page_size=2)
    return ArchiveClient(settings, transport=httpx.MockTransport(handler))


class TagServer:
    """Minimal /tags/ endpoint with server-side uniqueness."""

    def __init__(self, tags):
        self.tags = list(tags)
        self.posts = []

    def __call__(self, request: httpx.Request):
        assert request.headers["Authorization"] == "Token tok"
        if request.method == "POST":
            name = json.loads(request.content)["name"]
            self.posts.append(name)
            if any(t["name"].lower() == name.lower() for t in self.tags):
                return httpx.Response(400, json={"name": ["Tag with this name already exists."]})
            tag = {"id": 100 + len(self.tags), "name": name}
            self.tags.append(tag)
            return httpx.Response(201, json=tag)
        iexact = request.url.params.get("name__iexact")
        results = [t for t in self.tags if iexact is None or t["name"].lower() == iexact.lower()]
        return httpx.Response(200, json={"count": len(results), "next": None, "results": results})


@pytest.mark.asyncio
async def test_process_tags_reuses_existing_and_creates_once():
    server = TagServer([{"id": 1, "name": "Invoice"}])
    client = _client(server)

    ids, errors = await client.process_tags(["Invoice", "Utility", "utility", " "])

    assert errors == []
    assert ids[0] == 1
    assert len(ids) == 2
    assert server.posts == ["Utility"]


@pytest.mark.asyncio
async def test_create_tag_recovers_from_concurrent_creation():
    server = TagServer([])
    client = _client(server)
    await client._refresh_tag_cache()
    # Someone else created it after our cache refresh
    server.tags.append({"id": 5, "name": "Tax"})

    tag = await client.create_tag("Tax")

    assert tag["id"] == 5


@pytest.mark.asyncio
async def test_list_documents_follows_pages():
    pages = {
        "1": {"next": "http://paperless/api/documents/?page=2", "results": [{"id": 1}, {"id": 2}]},
        "2": {"next": None, "results": [{"id": 3, "title": "Last"}]},
    }

    def handler(request):
        return httpx.Response(200, json=pages[request.url.params["page"]])

    docs = await _client(handler).list_documents()

    assert [d.id for d in docs] == [1, 2, 3]
    assert docs[2].title == "Last"


@pytest.mark.asyncio
async def test_rate_limit_is_retried():
    calls = []

    def handler(request):
        calls.append(request.url.path)
        if len(calls) < 3:
            return httpx.Response(429)
        return httpx.Response(200, json={"id": 4, "content": "hello world"})

    with patch("archive_client.asyncio.sleep", new=AsyncMock()) as sleep:
        content = await _client(handler).get_document_content(4)

    assert content == "hello world"
    assert len(calls) == 3
    assert sleep.await_count == 2


@pytest.mark.asyncio
async def test_http_errors_raise_archive_access_error():
    def handler(request):
        return httpx.Response(403, json={"detail": "forbidden"})

    with pytest.raises(ArchiveAccessError) as exc:
        await _client(handler).get_document(4)
    assert exc.value.status_code == 403


@pytest.mark.asyncio
async def test_can_edit_reads_permission_flag():
    def handler(request):
        assert request.url.params["full_perms"] == "true"
        doc_id = request.url.path.rstrip("/").split("/")[-1]
        return httpx.Response(200, json={"id": int(doc_id), "user_can_change": doc_id == "1"})

    client = _client(handler)
    assert await client.can_edit(1) is True
    assert await client.can_edit(2) is False


@pytest.mark.asyncio
async def test_update_merges_tags_and_patches_only_plan_fields():
    patches = []

    def handler(request):
        if request.method == "PATCH":
            patches.append(json.loads(request.content))
            return httpx.Response(200, json={"id": 9})
        return httpx.Response(200, json={"id": 9, "tags": [1, 2]})

    await _client(handler).update_document(9, UpdatePlan(tags=[2, 3], title="New title"))

    assert patches == [{"tags": [1, 2, 3], "title": "New title"}]


@pytest.mark.asyncio
async def test_get_or_create_correspondent_matches_case_insensitively():
    posts = []

    def handler(request):
        if request.method == "POST":
            posts.append(request)
            return httpx.Response(201, json={"id": 50, "name": "New Corp"})
        return httpx.Response(200, json={"results": [{"id": 3, "name": "City Power"}]})

    item = await _client(handler).get_or_create_correspondent("city power")

    assert item["id"] == 3
    assert posts == []


@pytest.mark.asyncio
async def test_get_or_create_document_type_creates_missing_type():
    posts = []

    def handler(request):
        assert request.url.path.endswith("/document_types/")
        if request.method == "POST":
            posts.append(json.loads(request.content))
            return httpx.Response(201, json={"id": 12, "name": "Receipt"})
        return httpx.Response(200, json={"results": []})

    item = await _client(handler).get_or_create_document_type(" Receipt ")

    assert item["id"] == 12
    assert posts == [{"name": "Receipt"}]
