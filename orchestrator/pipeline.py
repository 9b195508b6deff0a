"""
Paperscribe — Intake Pipeline
Both entry points feed the same per-document routine:
  1. Scheduled scan  → every document in the archive, sequentially
  2. Webhook         → bounded FIFO drained by one consumer task

Per document: ledger check → single-flight claim → 'processing' →
permission → content + snapshot → length gate → provider → 'complete' →
reconcile + commit. Every failure is contained at document granularity.
"""
import asyncio
import contextlib
import logging
from collections import Counter
from dataclasses import dataclass
from typing import Dict, List, Optional

from archive_client import ArchiveAccessError, ArchiveClient
from config.settings import ScanConfig
from memory.ledger import ProcessingLedger
from models.documents import STATUS_COMPLETE, STATUS_PROCESSING, Document, UpdatePlan
from orchestrator.reconciler import Reconciler
from providers.base import AIProvider
from providers.token_budget import hard_cap

logger = logging.getLogger("scribe.pipeline")

# Outcome statuses of one pass through process_document
SKIPPED_PROCESSED = "skipped_processed"
SKIPPED_IN_FLIGHT = "skipped_in_flight"
SKIPPED_PERMISSION = "skipped_permission"
SKIPPED_SHORT = "skipped_short"
FAILED = "failed"
COMPLETED = "completed"


@dataclass
class WorkItem:
    """One webhook notification."""
    document_id: int
    prompt: Optional[str] = None


@dataclass
class ProcessingOutcome:
    document_id: int
    status: str
    error: Optional[str] = None
    plan: Optional[UpdatePlan] = None

    @property
    def succeeded(self) -> bool:
        return self.status == COMPLETED


class IntakePipeline:
    """
    Owns the webhook queue, its consumer task, the scan guard and the
    single-flight set. Built once and injected into the scheduler and
    the HTTP layer.
    """

    def __init__(self, archive: ArchiveClient, ledger: ProcessingLedger,
                 provider: AIProvider, reconciler: Reconciler, settings: ScanConfig):
        self.archive = archive
        self.ledger = ledger
        self.provider = provider
        self.reconciler = reconciler
        self.settings = settings

        self._queue: asyncio.Queue = asyncio.Queue(maxsize=settings.webhook_queue_size)
        self._consumer: Optional[asyncio.Task] = None
        self._scan_running = False
        self._draining = False
        # Insertion-ordered: the oldest running document is reported as current
        self._in_flight: Dict[int, None] = {}

    # -------------------------------------------------------
    # Per-document routine
    # -------------------------------------------------------

    async def process_document(
        self,
        document_id: int,
        custom_prompt: Optional[str] = None,
        existing_tags: Optional[List[str]] = None,
        existing_correspondents: Optional[List[str]] = None,
    ) -> ProcessingOutcome:
        """Run one document through analysis and reconciliation. Never raises."""
        if self.ledger.is_processed(document_id):
            logger.debug(f"Document {document_id} already processed — skipping")
            return ProcessingOutcome(document_id, SKIPPED_PROCESSED)

        if document_id in self._in_flight:
            logger.info(f"Document {document_id} is already being processed — skipping")
            return ProcessingOutcome(document_id, SKIPPED_IN_FLIGHT)

        self._in_flight[document_id] = None
        try:
            return await self._process(
                document_id, custom_prompt, existing_tags, existing_correspondents,
            )
        except Exception as e:
            logger.error(f"Document {document_id} failed: {e}")
            return ProcessingOutcome(document_id, FAILED, error=str(e))
        finally:
            self._in_flight.pop(document_id, None)

    async def _process(self, document_id, custom_prompt, existing_tags,
                       existing_correspondents) -> ProcessingOutcome:
        self.ledger.set_status(document_id, STATUS_PROCESSING)

        if not await self.archive.can_edit(document_id):
            logger.info(f"No edit permission for document {document_id} — skipping")
            return ProcessingOutcome(document_id, SKIPPED_PERMISSION)

        content, snapshot = await asyncio.gather(
            self.archive.get_document_content(document_id),
            self.archive.get_document(document_id),
        )
        if not content or len(content.strip()) < self.settings.min_content_length:
            logger.info(f"Document {document_id} has too little content — skipping")
            return ProcessingOutcome(document_id, SKIPPED_SHORT)

        content, capped = hard_cap(content, self.settings.content_max_length)
        if capped:
            logger.info(f"Document {document_id} content capped at {self.settings.content_max_length} chars")

        if existing_tags is None or existing_correspondents is None:
            existing_tags, existing_correspondents = await self._vocabularies()

        logger.info(f"Processing document {document_id}: {snapshot.title!r}")
        outcome = await self.provider.analyze(
            content, existing_tags, existing_correspondents,
            document_id=document_id, custom_prompt=custom_prompt,
        )
        if not outcome.ok:
            # Stays 'processing' so the next scan retries it
            logger.error(f"Analysis failed for document {document_id}: {outcome.error}")
            return ProcessingOutcome(document_id, FAILED, error=outcome.error)

        self.ledger.set_status(document_id, STATUS_COMPLETE)
        plan = await self.reconciler.build_plan(outcome.document, snapshot)
        await self.reconciler.commit(snapshot, plan, outcome.metrics)
        return ProcessingOutcome(document_id, COMPLETED, plan=plan)

    async def _vocabularies(self):
        tags = await self.archive.get_tags()
        correspondents = await self.archive.get_correspondents()
        return (
            [t["name"] for t in tags if t.get("name")],
            [c["name"] for c in correspondents if c.get("name")],
        )

    # -------------------------------------------------------
    # Scheduled scan
    # -------------------------------------------------------

    async def scan_documents(self) -> dict:
        """
        Process every unprocessed document. Overlapping scans are skipped.
        Returns a summary of outcome counts.
        """
        if self._scan_running:
            logger.info("Scan already in progress — skipping this run")
            return {"skipped": True}

        self._scan_running = True
        counts: Counter = Counter()
        try:
            try:
                tags = await self.archive.get_tags()
                correspondents = await self.archive.get_correspondents()
                documents = await self.archive.list_documents()
            except ArchiveAccessError as e:
                logger.error(f"Scan aborted — archive unavailable: {e}")
                return {"skipped": False, "error": str(e)}

            tag_names = [t["name"] for t in tags if t.get("name")]
            correspondent_names = [c["name"] for c in correspondents if c.get("name")]
            documents = self._filter_predefined(documents, tags)
            logger.info(
                f"Scan started: {len(documents)} documents, {len(tag_names)} tags, "
                f"{len(correspondent_names)} correspondents"
            )

            for doc in documents:
                outcome = await self.process_document(
                    doc.id,
                    existing_tags=tag_names,
                    existing_correspondents=correspondent_names,
                )
                counts[outcome.status] += 1
        finally:
            self._scan_running = False

        logger.info(f"Scan complete: {dict(counts)}")
        return {"skipped": False, **counts}

    def _filter_predefined(self, documents: List[Document], tags: List[dict]) -> List[Document]:
        """With PROCESS_PREDEFINED_DOCUMENTS, keep documents carrying one of TAGS."""
        if not self.settings.process_predefined_documents:
            return documents
        wanted = {name.lower() for name in self.settings.tags}
        tag_ids = {t["id"] for t in tags if t.get("name", "").lower() in wanted}
        if not tag_ids:
            logger.warning(f"None of the predefined tags exist in the archive: {self.settings.tags}")
            return []
        return [d for d in documents if tag_ids.intersection(d.tags)]

    # -------------------------------------------------------
    # Webhook queue
    # -------------------------------------------------------

    def enqueue(self, document_id: int, prompt: Optional[str] = None) -> bool:
        """Queue a webhook notification. False when the queue is full."""
        try:
            self._queue.put_nowait(WorkItem(document_id, prompt))
        except asyncio.QueueFull:
            logger.warning(f"Webhook queue full — rejecting document {document_id}")
            return False
        logger.info(f"Queued document {document_id} (queue length {self._queue.qsize()})")
        return True

    def start(self):
        """Start the consumer task. Must be called from inside the event loop."""
        if self._consumer is None or self._consumer.done():
            self._consumer = asyncio.create_task(self._consume(), name="webhook-consumer")
            logger.info("Webhook consumer started")

    async def stop(self):
        if self._consumer is not None:
            self._consumer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._consumer
            self._consumer = None
            logger.info("Webhook consumer stopped")

    async def join(self):
        """Wait until every queued item has been processed."""
        await self._queue.join()

    async def _consume(self):
        while True:
            item = await self._queue.get()
            self._draining = True
            try:
                await self.process_document(item.document_id, custom_prompt=item.prompt)
            except Exception as e:
                logger.error(f"Webhook item {item.document_id} failed: {e}")
            finally:
                self._queue.task_done()
                if self._queue.empty():
                    self._draining = False

    def status(self) -> dict:
        return {
            "isProcessing": self._draining or self._scan_running,
            "queueLength": self._queue.qsize(),
            "currentDocument": next(iter(self._in_flight), None),
        }
