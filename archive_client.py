"""
Paperscribe — Document Archive API Client
Async wrapper over a paperless-ngx compatible REST API.
Reads documents and vocabularies; writes only partial document patches
and new tags / correspondents / document types.
"""
import asyncio
import logging
import time
from typing import Dict, List, Optional, Tuple

import httpx

from config.settings import ArchiveConfig
from models.documents import Document, UpdatePlan

logger = logging.getLogger("scribe.archive")

_MAX_RETRIES = 4
_MAX_BACKOFF = 30


class ArchiveAccessError(Exception):
    """Permission or network failure against the document archive."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ArchiveClient:
    """paperless-ngx API wrapper with tag caching and find-or-create helpers."""

    def __init__(self, settings: ArchiveConfig, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._settings = settings
        if not settings.api_token:
            logger.warning("PAPERLESS_API_TOKEN not set — archive client will not work")
        self._client = httpx.AsyncClient(
            base_url=settings.api_url,
            headers={
                "Authorization": f"Token {settings.api_token}",
                "Accept": "application/json",
            },
            timeout=settings.timeout,
            transport=transport,
        )
        # lowercase name -> tag dict
        self._tag_cache: Dict[str, dict] = {}
        self._tag_cache_refreshed = 0.0

    async def close(self):
        await self._client.aclose()

    # -------------------------------------------------------
    # Transport
    # -------------------------------------------------------

    async def _send(self, method: str, path: str, **kwargs) -> httpx.Response:
        """
        Make an API request, backing off on 429.
        Raises ArchiveAccessError on any other failure.
        """
        backoff = 1
        for attempt in range(_MAX_RETRIES):
            try:
                resp = await self._client.request(method, path, **kwargs)
            except httpx.TimeoutException as e:
                logger.error(f"Archive API timeout: {method} {path} (attempt {attempt + 1})")
                if attempt == _MAX_RETRIES - 1:
                    raise ArchiveAccessError(f"Timeout: {method} {path}") from e
                await asyncio.sleep(backoff)
                backoff = min(backoff * 2, _MAX_BACKOFF)
                continue
            except httpx.HTTPError as e:
                raise ArchiveAccessError(f"{method} {path} failed: {e}") from e

            if resp.status_code == 429:
                logger.warning(f"Archive 429 rate limited — backoff {backoff}s (attempt {attempt + 1})")
                await asyncio.sleep(backoff)
                backoff = min(backoff * 2, _MAX_BACKOFF)
                continue

            if resp.status_code >= 400:
                raise ArchiveAccessError(
                    f"{method} {path} → {resp.status_code}: {resp.text[:200]}",
                    status_code=resp.status_code,
                )
            return resp

        raise ArchiveAccessError(f"Exhausted retries: {method} {path}", status_code=429)

    async def _json(self, method: str, path: str, **kwargs):
        resp = await self._send(method, path, **kwargs)
        return resp.json()

    async def _get_all(self, path: str, params: Optional[dict] = None) -> List[dict]:
        """Follow `next` links of a paginated list endpoint."""
        results = []
        page = 1
        while True:
            query = {"page": page, "page_size": self._settings.page_size, **(params or {})}
            data = await self._json("GET", path, params=query)
            page_results = data.get("results")
            if not isinstance(page_results, list):
                logger.error(f"Invalid results format on {path} page {page}")
                break
            results.extend(page_results)
            if not data.get("next"):
                break
            page += 1
        return results

    async def ping(self) -> bool:
        try:
            await self._send("GET", "/documents/", params={"page_size": 1})
            return True
        except ArchiveAccessError as e:
            logger.warning(f"Archive ping failed: {e}")
            return False

    # -------------------------------------------------------
    # Documents
    # -------------------------------------------------------

    async def list_documents(self) -> List[Document]:
        """All documents, every page."""
        return [Document.from_api(d) for d in await self._get_all("/documents/")]

    async def get_document(self, document_id: int) -> Document:
        return Document.from_api(await self._json("GET", f"/documents/{document_id}/"))

    async def get_document_content(self, document_id: int) -> str:
        data = await self._json("GET", f"/documents/{document_id}/")
        return data.get("content") or ""

    async def download_document(self, document_id: int) -> bytes:
        resp = await self._send("GET", f"/documents/{document_id}/download/")
        return resp.content

    async def get_thumbnail(self, document_id: int) -> bytes:
        resp = await self._send("GET", f"/documents/{document_id}/thumb/")
        return resp.content

    async def can_edit(self, document_id: int) -> bool:
        """Whether the API identity may change this document."""
        data = await self._json(
            "GET", f"/documents/{document_id}/", params={"full_perms": "true"},
        )
        # Archives without object permissions omit the flag
        return data.get("user_can_change", True) is not False

    async def update_document(self, document_id: int, plan: UpdatePlan) -> Optional[dict]:
        """PATCH the plan onto the document. New tags are merged with existing ones."""
        payload = plan.to_payload()
        if not payload:
            logger.info(f"Nothing to update for document {document_id}")
            return None
        if "tags" in payload:
            current = await self.get_document(document_id)
            merged = list(current.tags)
            for tag_id in payload["tags"]:
                if tag_id not in merged:
                    merged.append(tag_id)
            payload["tags"] = merged
        data = await self._json("PATCH", f"/documents/{document_id}/", json=payload)
        logger.info(f"Updated document {document_id}: {sorted(payload)}")
        return data

    # -------------------------------------------------------
    # Tags
    # -------------------------------------------------------

    async def get_tags(self) -> List[dict]:
        return await self._get_all("/tags/")

    async def _refresh_tag_cache(self):
        tags = await self.get_tags()
        self._tag_cache = {t["name"].lower(): t for t in tags if t.get("name")}
        self._tag_cache_refreshed = time.monotonic()
        logger.info(f"Tag cache refreshed. Found {len(self._tag_cache)} tags.")

    async def _ensure_tag_cache(self):
        age = time.monotonic() - self._tag_cache_refreshed
        if not self._tag_cache or age > self._settings.tag_cache_seconds:
            await self._refresh_tag_cache()

    async def find_tag(self, name: str) -> Optional[dict]:
        key = name.strip().lower()
        cached = self._tag_cache.get(key)
        if cached:
            return cached
        data = await self._json("GET", "/tags/", params={"name__iexact": name.strip()})
        for tag in data.get("results") or []:
            if tag.get("name", "").lower() == key:
                self._tag_cache[key] = tag
                return tag
        return None

    async def create_tag(self, name: str) -> dict:
        """Create a tag; on 400 the tag probably exists already, so look again."""
        try:
            tag = await self._json("POST", "/tags/", json={"name": name.strip()})
        except ArchiveAccessError as e:
            if e.status_code != 400:
                raise
            await self._refresh_tag_cache()
            existing = await self.find_tag(name)
            if existing:
                return existing
            raise
        self._tag_cache[name.strip().lower()] = tag
        logger.info(f"Created tag '{name}' with ID {tag.get('id')}")
        return tag

    async def process_tags(self, names: List[str]) -> Tuple[List[int], List[dict]]:
        """
        Resolve tag names to ids, creating missing tags.
        Returns (tag_ids, errors); a failing tag never aborts the rest.
        """
        await self._ensure_tag_cache()
        tag_ids: List[int] = []
        errors: List[dict] = []
        seen = set()
        for name in names:
            if not isinstance(name, str) or not name.strip():
                logger.warning(f"Skipping invalid tag name: {name!r}")
                continue
            key = name.strip().lower()
            if key in seen:
                continue
            seen.add(key)
            try:
                tag = await self.find_tag(name) or await self.create_tag(name)
                if tag.get("id") is not None and tag["id"] not in tag_ids:
                    tag_ids.append(tag["id"])
            except ArchiveAccessError as e:
                logger.error(f"Error processing tag '{name}': {e}")
                errors.append({"tagName": name, "error": str(e)})
        return tag_ids, errors

    # -------------------------------------------------------
    # Correspondents / document types
    # -------------------------------------------------------

    async def get_correspondents(self) -> List[dict]:
        return await self._get_all("/correspondents/")

    async def _get_or_create_named(self, path: str, name: str) -> dict:
        """Find by case-insensitive exact name, else create. Shared by correspondents and types."""
        name = name.strip()
        data = await self._json("GET", path, params={"name__iexact": name})
        for item in data.get("results") or []:
            if item.get("name", "").lower() == name.lower():
                return item
        try:
            created = await self._json("POST", path, json={"name": name})
            logger.info(f"Created {path.strip('/')} '{name}' with ID {created.get('id')}")
            return created
        except ArchiveAccessError as e:
            if e.status_code != 400:
                raise
            # Created concurrently by someone else — look it up again
            data = await self._json("GET", path, params={"name__iexact": name})
            for item in data.get("results") or []:
                if item.get("name", "").lower() == name.lower():
                    return item
            raise

    async def get_or_create_correspondent(self, name: str) -> dict:
        return await self._get_or_create_named("/correspondents/", name)

    async def get_or_create_document_type(self, name: str) -> dict:
        return await self._get_or_create_named("/document_types/", name)

    # -------------------------------------------------------
    # Custom fields
    # -------------------------------------------------------

    async def get_custom_fields(self) -> List[dict]:
        """Custom field definitions: [{id, name, data_type}, ...]."""
        return await self._get_all("/custom_fields/")
