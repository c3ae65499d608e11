from datetime import datetime, timezone

from docresolve.gate import GateDecision, GateOutcome, ReviewMode
from docresolve.resolution import ResolutionResult, ResolvedField
from docresolve.review import (
    InMemorySink,
    ReviewCaseStore,
    SnapshotDispatcher,
    snapshot_from_auto_approval,
)

AT = datetime(2024, 4, 1, 10, 0, tzinfo=timezone.utc)


def _resolution():
    return ResolutionResult(
        fields={
            "invoice_number": ResolvedField(
                field="invoice_number", value="INV-1001", normalized_value="INV-1001", confidence=96.0
            )
        },
        overall_confidence=96.0,
    )


def _gate():
    return GateDecision(outcome=GateOutcome.BLOCK, mode=ReviewMode.STRICT, threshold=92.0, decided_at=AT)


def test_auto_approval_snapshot_is_deterministic():
    first = snapshot_from_auto_approval("doc-1", _resolution(), AT)
    second = snapshot_from_auto_approval("doc-1", _resolution(), AT)

    assert first.snapshot_id == second.snapshot_id
    assert first.snapshot_id.startswith("snapshot-")
    assert first.decision == "auto_approved"
    assert first.approved_by == "gate"
    assert first.fields["invoice_number"].normalized_value == "INV-1001"
    assert snapshot_from_auto_approval("doc-2", _resolution(), AT).snapshot_id != first.snapshot_id


def test_dispatcher_retries_until_delivered():
    sink = InMemorySink(fail_times=2)
    dispatcher = SnapshotDispatcher(sink, max_attempts=3, retry_delay_sec=0)
    snapshot = snapshot_from_auto_approval("doc-1", _resolution(), AT)

    assert dispatcher.submit(snapshot).result(timeout=5) is True
    dispatcher.close()

    assert sink.attempts == 3
    assert sink.snapshots == [snapshot]
    assert dispatcher.delivered == [snapshot.snapshot_id]
    assert dispatcher.failed == []


def test_dispatcher_gives_up_after_max_attempts():
    sink = InMemorySink(fail_times=10)
    dispatcher = SnapshotDispatcher(sink, max_attempts=2, retry_delay_sec=0)
    snapshot = snapshot_from_auto_approval("doc-1", _resolution(), AT)

    dispatcher.submit(snapshot)
    dispatcher.join(timeout=5)
    dispatcher.close()

    assert sink.attempts == 2
    assert sink.snapshots == []
    assert dispatcher.failed == [snapshot.snapshot_id]


def test_only_approvals_are_exported_and_case_state_is_untouched():
    sink = InMemorySink(fail_times=5)
    dispatcher = SnapshotDispatcher(sink, max_attempts=1, retry_delay_sec=0)
    store = ReviewCaseStore()
    store.add_listener(dispatcher.on_transition)
    case = store.create("doc-1", _resolution(), _gate(), created_at=AT)

    store.transition(case.case_id, "start_review", actor="alice", at=AT)
    approved = store.transition(case.case_id, "approve", actor="alice", at=AT)
    dispatcher.join(timeout=5)
    dispatcher.close()

    assert sink.attempts == 1
    assert len(dispatcher.failed) == 1
    assert store.get(case.case_id) is approved
    assert approved.state.value == "approved"


def test_case_snapshot_names_the_approver():
    sink = InMemorySink()
    dispatcher = SnapshotDispatcher(sink, retry_delay_sec=0)
    store = ReviewCaseStore()
    store.add_listener(dispatcher.on_transition)
    case = store.create("doc-9", _resolution(), _gate(), created_at=AT)

    store.decide(case.case_id, "approve", actor="bob", at=AT)
    dispatcher.join(timeout=5)
    dispatcher.close()

    [snapshot] = sink.snapshots
    assert snapshot.case_id == case.case_id
    assert snapshot.decision == "approved"
    assert snapshot.approved_by == "bob"
    assert snapshot.approved_at == AT
