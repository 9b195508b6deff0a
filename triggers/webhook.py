"""
Webhook receiver for archive document notifications.
The archive posts the document URL after consumption; the document id is
extracted and queued for the intake pipeline. The response never waits
for processing.
"""
import logging
import re
from typing import Optional

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

router = APIRouter()
logger = logging.getLogger("scribe.trigger.webhook")

_DOCUMENT_ID_RE = re.compile(r"/documents/(\d+)(?:/|$)")


class WebhookRequest(BaseModel):
    url: str = ""
    prompt: Optional[str] = None


def extract_document_id(url: str) -> Optional[int]:
    match = _DOCUMENT_ID_RE.search(url or "")
    return int(match.group(1)) if match else None


@router.post("/api/webhook/document", tags=["webhook"], status_code=202)
async def document_webhook(req: WebhookRequest, request: Request):
    document_id = extract_document_id(req.url)
    if document_id is None:
        logger.warning(f"Webhook without document id: {req.url!r}")
        raise HTTPException(status_code=400, detail="Invalid document URL format")

    pipeline = request.app.state.services.pipeline
    if not pipeline.enqueue(document_id, req.prompt):
        return JSONResponse(
            status_code=429,
            content={"detail": "Webhook queue is full, retry later"},
        )

    logger.info(f"Webhook: document {document_id} queued")
    return {"status": "queued", "documentId": document_id, **pipeline.status()}
