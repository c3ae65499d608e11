import asyncio
import threading

import pytest

pytest.importorskip("fastapi")
from fastapi.testclient import TestClient

from docresolve.config import Settings
from docresolve.pipeline import DocumentPipeline
from docresolve.recognition.mocks import ScriptedEngine
from docresolve.service.app import create_app

WRONG_TOTALS = "Subtotal: $100.00\nTax: $8.00\nTotal: $120.00"


@pytest.fixture()
def pipeline(bill_script):
    settings = Settings()
    settings.orchestrator.early_stop = False
    script = dict(bill_script, totals=WRONG_TOTALS)
    script[("totals", "numbers-only-totals")] = bill_script["totals"]
    return DocumentPipeline(ScriptedEngine(script), settings=settings)


@pytest.fixture()
def client(pipeline):
    return TestClient(create_app(pipeline))


@pytest.fixture()
def case_id(client, page_png):
    resp = client.post("/documents", params={"document_id": "bill-1"}, content=page_png)
    assert resp.status_code == 200
    body = resp.json()
    assert body["outcome"] == "block"
    return body["case_id"]


def test_healthz(client):
    resp = client.get("/healthz")
    assert resp.status_code == 200
    body = resp.json()
    assert body["ok"] is True
    assert body["engine"] == "scripted"
    assert body["review_mode"] == "balanced"
    assert body["rules_version"] == "1"
    assert body["queue"]["total"] == 0


def test_unreadable_upload_is_rejected(client):
    resp = client.post("/documents", content=b"definitely not an image")
    assert resp.status_code == 422


def test_case_and_queue(client, case_id):
    resp = client.get(f"/cases/{case_id}")
    assert resp.status_code == 200
    case = resp.json()
    assert case["state"] == "pending"
    assert case["version"] == 1
    assert case["document_id"] == "bill-1"
    assert case["resolution"]["fields"]["total"]["normalized_value"] == "120.00"

    queue = client.get("/queue").json()
    assert [c["case_id"] for c in queue["cases"]] == [case_id]
    assert queue["cases"][0]["severity"] == 2
    assert queue["stats"]["queue_depth"] == 1


def _decide(client, case_id, **body):
    return client.post(f"/cases/{case_id}/decide", json=body)


def _transition(client, case_id, **body):
    return client.post(f"/cases/{case_id}/transition", json=body)


def test_unknown_case_is_404(client):
    assert client.get("/cases/case-missing").status_code == 404
    resp = _decide(client, "case-missing", decision="approve", actor="alice", expected_version=1)
    assert resp.status_code == 404


def test_writes_require_expected_version(client, case_id):
    assert _decide(client, case_id, decision="approve", actor="alice").status_code == 400
    assert _transition(client, case_id, action="start_review", actor="alice").status_code == 400
    assert client.get(f"/cases/{case_id}").json()["version"] == 1


def test_decide_validation_and_conflicts(client, case_id):
    assert _decide(client, case_id, decision="reject", actor="alice", expected_version=1).status_code == 400
    assert _decide(client, case_id, decision="maybe", actor="alice", expected_version=1).status_code == 400
    assert _decide(client, case_id, decision="approve", actor="alice", expected_version=4).status_code == 409

    resp = _decide(client, case_id, decision="reject", actor="alice", reason="duplicate bill", expected_version=1)
    assert resp.status_code == 200
    body = resp.json()
    assert body["state"] == "rejected"
    assert body["version"] == 3
    assert [entry["action"] for entry in body["audit"]] == ["start_review", "reject"]


def test_transitions(client, case_id):
    assert _transition(client, case_id, action="approve", actor="bob", expected_version=1).status_code == 422

    resp = _transition(client, case_id, action="start_review", actor="bob", expected_version=1)
    assert resp.status_code == 200
    assert resp.json()["state"] == "in_review"

    assert _transition(client, case_id, action="approve", actor="bob", expected_version=1).status_code == 409
    assert _transition(client, case_id, action="explode", actor="bob", expected_version=2).status_code == 400
    assert _transition(client, case_id, action="reject", actor="bob", expected_version=2).status_code == 422


def test_approval_records_ground_truth(client, pipeline, case_id):
    resp = _decide(
        client,
        case_id,
        decision="approve",
        actor="carol",
        expected_version=1,
        corrections={"total": "108.00"},
    )
    assert resp.status_code == 200
    assert resp.json()["state"] == "approved"

    pipeline.calibrator.flush()
    pipeline.calibrator.wait_idle(timeout=5)
    points = {p.field: p for p in pipeline.calibrator.ledger.points()}
    assert points["total"].actual_correct is False
    assert points["invoice_number"].actual_correct is True


def test_reocr_endpoint(client, case_id):
    resp = client.post(
        f"/cases/{case_id}/reocr",
        json={"zone": "totals", "profile": "numbers-only-totals", "actor": "dana", "expected_version": 1},
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["version"] == 2
    assert body["resolution"]["fields"]["total"]["normalized_value"] == "108.00"
    assert body["revisions"][0]["actor"] == "dana"

    resp = client.post(f"/cases/{case_id}/reocr", json={"zone": "totals", "profile": "no-such-profile"})
    assert resp.status_code == 422

    resp = client.post(f"/cases/{case_id}/reocr", json={"zone": "margin", "profile": "totals-block"})
    assert resp.status_code == 400


def test_document_run_happens_off_the_event_loop(client, pipeline, page_png, monkeypatch):
    loops = []
    process = pipeline.process

    def recording_process(*args, **kwargs):
        try:
            asyncio.get_running_loop()
            loops.append("event-loop")
        except RuntimeError:
            loops.append(threading.current_thread().name)
        return process(*args, **kwargs)

    monkeypatch.setattr(pipeline, "process", recording_process)

    resp = client.post("/documents", params={"document_id": "bill-2"}, content=page_png)

    assert resp.status_code == 200
    assert len(loops) == 1
    assert loops[0] != "event-loop"
