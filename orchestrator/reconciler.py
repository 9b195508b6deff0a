"""
Paperscribe — Reconciliation Engine
Turns an AnalysisResult plus the document's prior snapshot into a minimal
UpdatePlan, then commits it: archive patch, token metrics, original
snapshot and history entry, issued concurrently and never rolled back.
"""
import asyncio
import logging
from typing import List, Optional

from archive_client import ArchiveAccessError, ArchiveClient
from config.settings import FeatureFlags
from memory.ledger import ProcessingLedger
from models.documents import AnalysisResult, Document, TokenMetrics, UpdatePlan

logger = logging.getLogger("scribe.reconciler")


class Reconciler:

    def __init__(self, archive: ArchiveClient, ledger: ProcessingLedger, flags: FeatureFlags):
        self.archive = archive
        self.ledger = ledger
        self.flags = flags

    # -------------------------------------------------------
    # Plan
    # -------------------------------------------------------

    async def build_plan(self, result: AnalysisResult, snapshot: Document) -> UpdatePlan:
        """Compute the minimal patch. Lookup failures leave their field untouched."""
        plan = UpdatePlan()
        await self._plan_tags(plan, result)

        if self.flags.correspondents and result.correspondent:
            plan.correspondent = await self._resolve_named(
                self.archive.get_or_create_correspondent, result.correspondent, "correspondent",
            )
        if self.flags.document_type and result.document_type:
            plan.document_type = await self._resolve_named(
                self.archive.get_or_create_document_type, result.document_type, "document type",
            )

        if self.flags.title and result.title:
            plan.title = result.title
        if result.document_date:
            plan.created = result.document_date
        if result.language:
            plan.language = result.language

        if self.flags.custom_fields and result.custom_fields:
            plan.custom_fields = await self._merge_custom_fields(result, snapshot)
        return plan

    async def _plan_tags(self, plan: UpdatePlan, result: AnalysisResult):
        marker = self.flags.marker_tag
        if self.flags.tagging:
            names = list(result.tags)
            if marker:
                names.append(marker)
        elif marker:
            # Proposed tags are ignored entirely; only the marker is applied
            names = [marker]
        else:
            return
        if not names:
            return
        tag_ids, errors = await self.archive.process_tags(names)
        if errors:
            logger.warning(f"Some tags could not be processed: {errors}")
        plan.tag_errors = errors
        if tag_ids:
            plan.tags = tag_ids

    async def _resolve_named(self, get_or_create, name: str, kind: str) -> Optional[int]:
        try:
            item = await get_or_create(name)
        except ArchiveAccessError as e:
            logger.error(f"Error processing {kind} '{name}': {e}")
            return None
        return item.get("id") if item else None

    async def _merge_custom_fields(self, result: AnalysisResult,
                                   snapshot: Document) -> Optional[List[dict]]:
        """
        New values replace old ones for the same field id; every other
        existing binding is carried over verbatim.
        """
        try:
            definitions = await self.archive.get_custom_fields()
        except ArchiveAccessError as e:
            logger.warning(f"Could not load custom field definitions (non-fatal): {e}")
            return None
        by_name = {d["name"].strip().lower(): d["id"] for d in definitions if d.get("name")}

        staged: List[dict] = []
        touched = set()
        for name, value in result.custom_fields.items():
            if not name or not name.strip():
                continue
            if value is None or not str(value).strip():
                continue
            field_id = by_name.get(name.strip().lower())
            if field_id is None:
                logger.warning(f"Custom field '{name}' does not exist in the archive — skipped")
                continue
            if field_id in touched:
                continue
            staged.append({"field": field_id, "value": value})
            touched.add(field_id)

        if not staged:
            return None
        for binding in snapshot.custom_fields:
            if binding.get("field") not in touched:
                staged.append({"field": binding.get("field"), "value": binding.get("value")})
        return staged

    # -------------------------------------------------------
    # Commit
    # -------------------------------------------------------

    async def commit(self, snapshot: Document, plan: UpdatePlan,
                     metrics: Optional[TokenMetrics] = None) -> List[BaseException]:
        """
        Apply the plan and write the audit trail concurrently.
        Returns the failures (already logged); none is rolled back.
        """
        doc_id = snapshot.id
        history_tags = plan.tags if plan.tags is not None else snapshot.tags
        history_title = plan.title or snapshot.title
        history_correspondent = (
            plan.correspondent if plan.correspondent is not None else snapshot.correspondent
        )

        writes = {"update document": self.archive.update_document(doc_id, plan)}
        if metrics is not None:
            writes["record metrics"] = _ledger_write(
                self.ledger.record_metrics, doc_id,
                metrics.prompt_tokens, metrics.completion_tokens, metrics.total_tokens,
            )
        writes["record original snapshot"] = _ledger_write(
            self.ledger.record_original_snapshot, doc_id,
            snapshot.tags, snapshot.correspondent, snapshot.title,
        )
        writes["record history"] = _ledger_write(
            self.ledger.record_history, doc_id,
            history_tags, history_title, history_correspondent,
        )

        results = await asyncio.gather(*writes.values(), return_exceptions=True)
        failures = []
        for what, outcome in zip(writes, results):
            if isinstance(outcome, BaseException):
                logger.error(f"Document {doc_id}: {what} failed (not rolled back): {outcome}")
                failures.append(outcome)
        if not failures:
            logger.info(f"Document {doc_id} reconciled: {sorted(plan.to_payload())}")
        return failures


async def _ledger_write(fn, *args):
    # Synchronous ledger call as an awaitable for gather()
    return fn(*args)
