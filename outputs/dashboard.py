"""
Paperscribe — API Server
FastAPI app exposing webhook ingestion, scan control, the analysis
playground, per-document chat (SSE), token metrics and health.
Run with: uvicorn outputs.dashboard:app
"""
import logging
import os
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response, StreamingResponse
from pydantic import BaseModel, Field

from archive_client import ArchiveAccessError
from config.settings import config
from orchestrator.services import ServiceBundle, build_services
from triggers.webhook import router as webhook_router

logger = logging.getLogger("scribe.dashboard")

# ============================================================
# Authentication
# ============================================================

_SCRIBE_API_KEY = config.api_key


async def verify_api_key(x_scribe_key: str = Header(None, alias="X-Scribe-Key")):
    """Validate API key from X-Scribe-Key header."""
    if not _SCRIBE_API_KEY:
        logger.error("SCRIBE_API_KEY not configured — API disabled")
        raise HTTPException(
            status_code=503,
            detail="API key not configured — service disabled",
        )
    if x_scribe_key != _SCRIBE_API_KEY:
        raise HTTPException(
            status_code=401,
            detail="Invalid or missing API key",
            headers={"WWW-Authenticate": "X-Scribe-Key"},
        )


# ============================================================
# Logging — must be module-level so uvicorn outputs.dashboard:app picks it up
# ============================================================
logging.basicConfig(
    level=logging.DEBUG if config.debug else logging.INFO,
    format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
)

_SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


# ============================================================
# Request models
# ============================================================

class PlaygroundRequest(BaseModel):
    content: str = Field(..., min_length=1)
    prompt: str = Field(..., min_length=1)


class ChatMessageRequest(BaseModel):
    message: str = Field(..., min_length=1, max_length=8000)


def _services(request: Request) -> ServiceBundle:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Services not initialized")
    return services


def _archive_http_error(e: ArchiveAccessError) -> HTTPException:
    status = e.status_code if e.status_code in (401, 403, 404) else 502
    return HTTPException(status_code=status, detail=str(e))


# ============================================================
# App factory
# ============================================================

def create_app(services: Optional[ServiceBundle] = None, start_background: bool = True) -> FastAPI:
    """
    Build the API app. Without `services`, the service graph is built
    from the global config on startup.
    """
    app = FastAPI(
        title="Paperscribe",
        description="AI metadata enrichment for a paperless-ngx document archive",
        version="1.0.0",
    )
    app.state.services = services

    _allowed_origins = [
        o.strip()
        for o in os.getenv("ALLOWED_ORIGINS", "http://localhost:8080").split(",")
        if o.strip()
    ]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=_allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["Content-Type", "X-Scribe-Key"],
    )

    app.include_router(webhook_router, dependencies=[Depends(verify_api_key)])

    # --------------------------------------------------------
    # Startup / shutdown
    # --------------------------------------------------------

    @app.on_event("startup")
    async def startup():
        """Build services and start the webhook consumer + scan scheduler."""
        logger.info("Paperscribe starting...")
        if app.state.services is None:
            app.state.services = build_services(config)
        if start_background:
            try:
                app.state.services.start_background()
                logger.info("Webhook consumer and scan scheduler started")
            except Exception as e:
                logger.error(f"Background services failed to start: {e}")

    @app.on_event("shutdown")
    async def shutdown():
        if app.state.services is None:
            return
        try:
            await app.state.services.close()
            logger.info("Services closed")
        except Exception as e:
            logger.warning(f"Shutdown error: {e}")

    # --------------------------------------------------------
    # Health
    # --------------------------------------------------------

    @app.get("/health", tags=["health"])
    async def health(request: Request):
        services = _services(request)
        if not await services.archive.ping():
            return JSONResponse(
                status_code=503,
                content={"status": "unhealthy", "reason": "archive unreachable"},
            )
        return {"status": "healthy"}

    @app.get("/api/scheduler-status", tags=["health"], dependencies=[Depends(verify_api_key)])
    async def scheduler_status(request: Request):
        """Return scheduler health and registered jobs."""
        scheduler = _services(request).scheduler
        if scheduler is None:
            return {"running": False, "jobs": [], "job_count": 0}
        return scheduler.status()

    # --------------------------------------------------------
    # Processing
    # --------------------------------------------------------

    @app.get("/api/processing-status", tags=["processing"], dependencies=[Depends(verify_api_key)])
    async def processing_status(request: Request):
        return _services(request).pipeline.status()

    @app.post("/api/scan/now", tags=["processing"], dependencies=[Depends(verify_api_key)])
    async def scan_now(request: Request):
        """Run a full scan. Succeeds once the batch completes, whatever the per-document outcomes."""
        summary = await _services(request).pipeline.scan_documents()
        return {"status": "completed", "summary": summary}

    @app.post("/api/playground/analyze", tags=["processing"], dependencies=[Depends(verify_api_key)])
    async def playground_analyze(req: PlaygroundRequest, request: Request):
        outcome = await _services(request).provider.analyze_ad_hoc(req.content, req.prompt)
        return outcome.to_dict()

    @app.get("/api/metrics/tokens", tags=["metrics"], dependencies=[Depends(verify_api_key)])
    async def token_metrics(request: Request):
        return _services(request).ledger.token_totals()

    @app.get("/api/history", tags=["metrics"], dependencies=[Depends(verify_api_key)])
    async def history(request: Request, limit: int = 20):
        return {"history": _services(request).ledger.recent_history(limit=min(max(limit, 1), 200))}

    # --------------------------------------------------------
    # Documents
    # --------------------------------------------------------

    @app.get("/api/documents/{document_id}/thumbnail", tags=["documents"],
             dependencies=[Depends(verify_api_key)])
    async def document_thumbnail(document_id: int, request: Request):
        try:
            data = await _services(request).archive.get_thumbnail(document_id)
        except ArchiveAccessError as e:
            raise _archive_http_error(e)
        return Response(content=data, media_type="image/webp")

    # --------------------------------------------------------
    # Chat
    # --------------------------------------------------------

    @app.post("/api/chat/{document_id}/init", tags=["chat"], dependencies=[Depends(verify_api_key)])
    async def chat_init(document_id: int, request: Request):
        try:
            session = await _services(request).chat.initialize(document_id)
        except ArchiveAccessError as e:
            raise _archive_http_error(e)
        return {"documentId": document_id, "title": session.title}

    @app.post("/api/chat/{document_id}/messages", tags=["chat"],
              dependencies=[Depends(verify_api_key)])
    async def chat_message(document_id: int, req: ChatMessageRequest, request: Request):
        """Stream the assistant reply as SSE: data: {"content": ...} ... data: [DONE]."""
        chat = _services(request).chat
        return StreamingResponse(
            chat.stream_reply(document_id, req.message),
            media_type="text/event-stream",
            headers=_SSE_HEADERS,
        )

    @app.get("/api/chat/{document_id}", tags=["chat"], dependencies=[Depends(verify_api_key)])
    async def chat_history(document_id: int, request: Request):
        history = _services(request).chat.history(document_id)
        if history is None:
            raise HTTPException(status_code=404, detail="No chat session for this document")
        return history

    @app.delete("/api/chat/{document_id}", tags=["chat"], dependencies=[Depends(verify_api_key)])
    async def chat_delete(document_id: int, request: Request):
        if not _services(request).chat.delete(document_id):
            raise HTTPException(status_code=404, detail="No chat session for this document")
        return {"deleted": True, "documentId": document_id}

    return app


app = create_app()


# ============================================================
# CLI runner
# ============================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "outputs.dashboard:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8080")),
        log_level="info",
    )
