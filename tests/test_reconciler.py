"""Reconciliation: plan building under feature flags, and commit resilience."""
from dataclasses import replace

import pytest

from models.documents import AnalysisResult, Document, TokenMetrics, UpdatePlan
from orchestrator.reconciler import Reconciler


def _result(**kwargs):
    base = dict(tags=["Invoice", "Utility"], correspondent="City Power", title="March bill",
                document_type="Invoice", document_date="2024-03-01", language="en")
    base.update(kwargs)
    return AnalysisResult(**base)


@pytest.mark.asyncio
async def test_custom_fields_replace_same_id_and_keep_others(archive, ledger, flags):
    archive.custom_fields = [{"id": 1, "name": "Amount"}, {"id": 2, "name": "IBAN"}]
    snapshot = Document(id=5, custom_fields=[{"field": 1, "value": "A"}, {"field": 2, "value": "B"}])
    reconciler = Reconciler(archive, ledger, flags)

    plan = await reconciler.build_plan(_result(custom_fields={"Amount": "C"}), snapshot)

    assert plan.custom_fields == [{"field": 1, "value": "C"}, {"field": 2, "value": "B"}]


@pytest.mark.asyncio
async def test_blank_and_unknown_custom_fields_are_ignored(archive, ledger, flags):
    archive.custom_fields = [{"id": 1, "name": "Amount"}]
    snapshot = Document(id=5, custom_fields=[{"field": 1, "value": "A"}])
    reconciler = Reconciler(archive, ledger, flags)

    plan = await reconciler.build_plan(
        _result(custom_fields={"Amount": "  ", "Nonexistent": "x", "": "y"}), snapshot,
    )

    assert plan.custom_fields is None
    assert "custom_fields" not in plan.to_payload()


@pytest.mark.asyncio
async def test_tags_resolved_without_duplicates(archive, ledger, flags):
    archive.tags = [{"id": 1, "name": "Invoice"}]
    reconciler = Reconciler(archive, ledger, flags)

    plan = await reconciler.build_plan(_result(tags=["Invoice", "Utility"]), Document(id=5))

    assert plan.tags[0] == 1
    assert len(plan.tags) == 2
    assert archive.created_tags == ["Utility"]


@pytest.mark.asyncio
async def test_marker_only_when_tagging_disabled(archive, ledger, flags):
    archive.tags = [{"id": 9, "name": "ai-processed"}]
    flags = replace(flags, tagging=False, add_ai_processed_tag=True)
    reconciler = Reconciler(archive, ledger, flags)

    plan = await reconciler.build_plan(_result(tags=["Invoice", "Tax"]), Document(id=5))

    assert plan.tags == [9]
    assert archive.created_tags == []


@pytest.mark.asyncio
async def test_marker_appended_when_tagging_enabled(archive, ledger, flags):
    archive.tags = [{"id": 1, "name": "Invoice"}, {"id": 9, "name": "ai-processed"}]
    reconciler = Reconciler(archive, ledger, replace(flags, add_ai_processed_tag=True))

    plan = await reconciler.build_plan(_result(tags=["Invoice"]), Document(id=5))

    assert plan.tags == [1, 9]


@pytest.mark.asyncio
async def test_disabled_flags_leave_fields_untouched(archive, ledger, flags):
    flags = replace(flags, tagging=False, correspondents=False, document_type=False,
                    title=False, custom_fields=False)
    reconciler = Reconciler(archive, ledger, flags)

    plan = await reconciler.build_plan(_result(custom_fields={"Amount": "1.00"}), Document(id=5))

    # Date and language are always propagated
    assert plan.to_payload() == {"created": "2024-03-01", "language": "en"}
    assert archive.correspondents == []


@pytest.mark.asyncio
async def test_correspondent_and_type_find_or_create(archive, ledger, flags):
    archive.correspondents = [{"id": 3, "name": "City Power"}]
    reconciler = Reconciler(archive, ledger, flags)

    plan = await reconciler.build_plan(_result(correspondent="city power"), Document(id=5))

    assert plan.correspondent == 3
    assert plan.document_type == archive.document_types[0]["id"]
    assert plan.title == "March bill"


@pytest.mark.asyncio
async def test_commit_writes_everything(archive, ledger, flags):
    reconciler = Reconciler(archive, ledger, flags)
    snapshot = Document(id=5, title="scan_0001.pdf", tags=[4], correspondent=None)
    plan = UpdatePlan(tags=[1, 2], correspondent=3)

    failures = await reconciler.commit(snapshot, plan, TokenMetrics(10, 5, 15))

    assert failures == []
    assert archive.updates == [(5, {"tags": [1, 2], "correspondent": 3})]
    assert ledger.metrics == [(5, 10, 5, 15)]
    assert ledger.originals[5] == {"tags": [4], "correspondent": None, "title": "scan_0001.pdf"}
    # Title flag produced nothing, history keeps the prior title
    assert ledger.history[0]["title"] == "scan_0001.pdf"
    assert ledger.history[0]["tags"] == [1, 2]


@pytest.mark.asyncio
async def test_commit_failure_is_not_rolled_back(archive, ledger, flags):
    archive.fail_update = True
    reconciler = Reconciler(archive, ledger, flags)

    failures = await reconciler.commit(Document(id=5, title="t"), UpdatePlan(title="New"), None)

    assert len(failures) == 1
    assert ledger.history[0]["title"] == "New"
    assert ledger.metrics == []
