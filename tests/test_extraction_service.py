from __future__ import annotations

from app.assembly import build_engine
from app.contract_events import ContractCreatedEvent
from app.models import ExtractionStatus, TransitionKind
from app.queue_backend import InMemoryQueueBackend
from app.settings import EngineSettings


class RecordingExtractor:
    def __init__(self, *, error: Exception | None = None):
        self.calls: list[tuple[str, tuple[str, ...]]] = []
        self._error = error

    def extract(self, *, run, event):
        self.calls.append((run.run_id, run.rule_snapshot))
        if self._error is not None:
            raise self._error
        return f"extracted {event.contract_name}"


def _engine(extractor=None):
    return build_engine(EngineSettings(), queue_backend=InMemoryQueueBackend(), extractor=extractor)


def _event(**overrides) -> ContractCreatedEvent:
    data = {
        "contract_id": "ct_evt_1",
        "contract_name": "Office lease",
        "contract_type": "lease",
        "attachment_id": "att_1",
        "requested_by": "user_1",
    }
    data.update(overrides)
    return ContractCreatedEvent(**data)


def test_event_without_attachment_is_skipped():
    engine = _engine()
    assert engine.extraction.handle_contract_created(_event(attachment_id=None)) is None
    assert engine.extraction.handle_contract_created(_event(attachment_id="  ")) is None
    assert engine.lifecycle.runs_for_contract("ct_evt_1") == []


def test_event_runs_full_extraction_with_applicable_rules():
    extractor = RecordingExtractor()
    engine = _engine(extractor)
    rule = engine.rules.create_rule(
        name="general clause check",
        rule_type="specific",
        applicable_contract_types=["lease"],
        applicable_clause_types=["general"],
        content="Check the general clauses.",
        mode="relaxed",
    )
    run = engine.extraction.handle_contract_created(_event())
    assert run is not None
    assert run.status is ExtractionStatus.SUCCEEDED
    assert run.outcome_summary == "extracted Office lease"
    assert extractor.calls == [(run.run_id, (rule.rule_id,))]
    kinds = [e.transition.kind for e in engine.audit_trail.find_by_run(run.run_id)]
    assert kinds == [TransitionKind.STARTED, TransitionKind.SUCCEEDED]


def test_extractor_exception_fails_the_run():
    engine = _engine(RecordingExtractor(error=RuntimeError("parse error")))
    run = engine.extraction.handle_contract_created(_event())
    assert run is not None
    assert run.status is ExtractionStatus.FAILED
    assert run.error_message == "parse error"


def test_duplicate_delivery_while_active_is_a_no_op():
    engine = _engine()
    active = engine.lifecycle.trigger("ct_evt_1", "user_1")
    assert engine.extraction.handle_contract_created(_event()) is None
    assert [r.run_id for r in engine.lifecycle.runs_for_contract("ct_evt_1")] == [active.run_id]
    assert len(engine.audit_trail.find_by_contract("ct_evt_1")) == 1


def test_rule_selection_failure_fails_the_run_and_unblocks_the_contract(monkeypatch):
    engine = _engine(RecordingExtractor())
    original = engine.rules.list_enabled_for_mode
    calls = {"n": 0}

    def flaky_catalog(mode):
        calls["n"] += 1
        if calls["n"] == 1:
            raise RuntimeError("catalog offline")
        return original(mode)

    monkeypatch.setattr(engine.rules, "list_enabled_for_mode", flaky_catalog)

    first = engine.extraction.handle_contract_created(_event())
    assert first is not None
    assert first.status is ExtractionStatus.FAILED
    assert first.error_message == "rule selection failed: catalog offline"
    assert engine.lifecycle.active_run_for("ct_evt_1") is None

    second = engine.extraction.handle_contract_created(_event())
    assert second is not None
    assert second.run_id != first.run_id
    assert second.status is ExtractionStatus.SUCCEEDED


def test_completion_failure_still_ends_the_run(monkeypatch):
    engine = _engine()

    def broken_complete(run_id, outcome_summary=None, *, actor_id=None):
        raise RuntimeError("store write timed out")

    monkeypatch.setattr(engine.lifecycle, "complete", broken_complete)
    run = engine.extraction.handle_contract_created(_event())
    assert run is not None
    assert run.status is ExtractionStatus.FAILED
    assert run.error_message == "completion failed: store write timed out"
    assert engine.lifecycle.active_run_for("ct_evt_1") is None


def test_undecodable_stored_rule_does_not_block_extraction():
    engine = _engine(RecordingExtractor())
    rules_repo = engine.repositories[0]
    rules_repo.save(
        rule={
            "rule_id": "rule_broken",
            "name": "broken extended",
            "rule_type": "extended",
            "applicable_contract_types": ["lease"],
            "applicable_clause_types": ["general"],
            "content": "c",
            "mode": "relaxed",
            "mode_ordinal": 0,
            "enabled": True,
            "created_at": "2026-02-22T00:00:00+00:00",
            "updated_at": "2026-02-22T00:00:00+00:00",
        }
    )
    run = engine.extraction.handle_contract_created(_event())
    assert run is not None
    assert run.status is ExtractionStatus.SUCCEEDED
    assert run.rule_snapshot == ()
