from __future__ import annotations

import threading
import time

import pytest
from fastapi.testclient import TestClient

from tradefill import main
from tradefill.field_registry import FIELD_NAMES
from tradefill.pipeline.field_mapper import FieldMapper
from tradefill.pipeline.ocr import TesseractGateway
from tradefill.pipeline.orchestrator import AutofillOrchestrator
from tradefill.sessions import SessionStore

OCR_TEXT = "Letter of Credit. Issuing Bank: HSBC London. Amount: 250,000 USD"


@pytest.fixture
def wire(monkeypatch, fake_gateway, fake_engine):
    """Point the app at fake OCR and LLM backends; returns (gateway, engine)."""

    def _wire(text=OCR_TEXT, gateway_error=None, reply="{}", engine_error=None, gate=None):
        gateway = fake_gateway(text=text, error=gateway_error, gate=gate)
        engine = fake_engine(reply=reply, error=engine_error)
        mapper = FieldMapper(engine)
        monkeypatch.setattr(main, "GATEWAY", gateway)
        monkeypatch.setattr(main, "MAPPER", mapper)
        monkeypatch.setattr(main, "SESSIONS", SessionStore(lambda: AutofillOrchestrator(gateway, mapper)))
        return gateway, engine

    return _wire


@pytest.fixture
def client() -> TestClient:
    return TestClient(main.app)


def _upload(client: TestClient, session_id: str, data: bytes = b"image"):
    return client.post(
        f"/sessions/{session_id}/upload", files={"topImage": ("lc.png", data, "image/png")}
    )


def test_health_and_registry(client, wire) -> None:
    wire()
    assert client.get("/health").json() == {"status": "ok", "ocr_provider": "fake"}
    body = client.get("/field_registry").json()
    assert [item["key"] for item in body["fields"]] == list(FIELD_NAMES)


def test_session_lifecycle(client, wire) -> None:
    wire()
    created = client.post("/sessions")
    assert created.status_code == 201
    session_id = created.json()["session_id"]
    assert created.json()["state"] == "idle"

    patched = client.patch(f"/sessions/{session_id}/fields", json={"amount": "10 USD"})
    assert patched.status_code == 200
    assert patched.json()["fields"]["amount"] == "10 USD"

    bad = client.patch(f"/sessions/{session_id}/fields", json={"bankAddress": "x"})
    assert bad.status_code == 400
    assert bad.json()["fields"] == ["bankAddress"]

    assert client.get(f"/sessions/{session_id}").json()["fields"]["amount"] == "10 USD"
    assert client.delete(f"/sessions/{session_id}").status_code == 200
    assert client.get(f"/sessions/{session_id}").status_code == 404


def test_upload_merges_fields(client, wire) -> None:
    wire(reply='```json\n{"issuingBank": "HSBC London", "amount": "250,000 USD"}\n```')
    session_id = client.post("/sessions").json()["session_id"]
    client.patch(f"/sessions/{session_id}/fields", json={"importerName": "Acme Imports"})

    response = _upload(client, session_id)

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "merged"
    assert body["fields"]["issuingBank"] == "HSBC London"
    assert body["fields"]["importerName"] == "Acme Imports"
    assert body["changed"] == ["amount", "issuingBank"]
    assert body["no_op"] is False
    assert body["strategy"] == "embedded_json"
    assert body["report"]["ok"] is True
    assert client.get(f"/sessions/{session_id}").json()["fields"]["amount"] == "250,000 USD"


def test_upload_gateway_failure_then_retry(client, wire) -> None:
    gateway, engine = wire(gateway_error="OCR.space API key not configured")
    session_id = client.post("/sessions").json()["session_id"]

    response = _upload(client, session_id)
    assert response.status_code == 502
    body = response.json()
    assert body["status"] == "failed"
    assert body["reason"] == "gateway_error"
    assert body["retryable"] is True
    assert engine.calls == []

    again = _upload(client, session_id)
    assert again.status_code == 409
    assert len(gateway.calls) == 1

    retried = client.post(f"/sessions/{session_id}/retry")
    assert retried.status_code == 200
    assert retried.json()["state"] == "idle"


def test_upload_no_usable_data(client, wire) -> None:
    wire(reply="error")
    session_id = client.post("/sessions").json()["session_id"]
    response = _upload(client, session_id)
    assert response.status_code == 422
    assert response.json()["reason"] == "no_usable_data"


def test_upload_engine_error(client, wire) -> None:
    wire(engine_error="LLM API key not configured")
    session_id = client.post("/sessions").json()["session_id"]
    response = _upload(client, session_id)
    assert response.status_code == 502
    assert response.json()["reason"] == "engine_error"
    assert response.json()["message"] == "LLM API key not configured"


def test_upload_requires_file_and_session(client, wire) -> None:
    wire()
    session_id = client.post("/sessions").json()["session_id"]
    assert client.post(f"/sessions/{session_id}/upload").status_code == 400
    assert _upload(client, session_id, data=b"").status_code == 400
    assert _upload(client, "missing").status_code == 404


def test_image_to_text(client, wire) -> None:
    wire()
    response = client.post("/imagetotext", files={"topImage": ("lc.png", b"image", "image/png")})
    assert response.status_code == 200
    assert response.json()["success"] is True
    assert response.json()["text"] == OCR_TEXT


def test_image_to_text_below_token_minimum(client, wire) -> None:
    wire(text="LC 1")
    response = client.post("/imagetotext", files={"topImage": ("lc.png", b"image", "image/png")})
    assert response.status_code == 422
    assert response.json()["success"] is False


def test_image_to_text_without_file(client, wire) -> None:
    wire()
    assert client.post("/imagetotext").status_code == 400


def test_map_endpoint(client, wire) -> None:
    wire(reply="Issuing Bank: Citibank\nLC Type: local")
    response = client.post(
        "/map", json={"text": OCR_TEXT, "current_fields": {"amount": "5 USD"}}
    )
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["outcome"] == "success"
    assert body["strategy"] == "labeled_regex"
    assert body["fields"]["issuingBank"] == "Citibank"
    assert body["merged"]["amount"] == "5 USD"
    assert body["merged"]["lcType"] == "local"


def test_map_endpoint_engine_error(client, wire) -> None:
    wire(engine_error="LLM endpoint not configured")
    response = client.post("/map", json={"text": OCR_TEXT})
    assert response.status_code == 502
    assert response.json()["outcome"] == "engine_error"


def test_validate_endpoint(client) -> None:
    response = client.post("/validate", json={"isLcIssued": "maybe", "amount": "100 USD"})
    assert response.status_code == 200
    report = response.json()["report"]
    assert report["ok"] is False
    assert [issue["field"] for issue in report["issues"]] == ["isLcIssued"]


def test_validate_rejects_unknown_fields(client) -> None:
    assert client.post("/validate", json={"bankAddress": "x"}).status_code == 422


def test_image_to_text_corrupt_pdf_is_a_gateway_error(client, monkeypatch) -> None:
    monkeypatch.setattr(main, "GATEWAY", TesseractGateway())
    response = client.post(
        "/imagetotext", files={"topImage": ("lc.pdf", b"%PDF-1.4 garbage", "application/pdf")}
    )
    assert response.status_code == 502
    body = response.json()
    assert body["success"] is False
    assert "PDF" in body["message"]


def test_upload_timeout_cancels_run_and_drops_late_result(client, wire, monkeypatch) -> None:
    gate = threading.Event()
    gateway, engine = wire(reply='{"amount": "250,000 USD"}', gate=gate)
    monkeypatch.setattr(main, "PIPELINE_TIMEOUT", 0.2)
    session_id = client.post("/sessions").json()["session_id"]

    response = _upload(client, session_id)

    assert response.status_code == 504
    body = response.json()
    assert body["reason"] == "cancelled"
    assert body["retryable"] is True
    state = client.get(f"/sessions/{session_id}").json()
    assert state["state"] == "failed"
    assert state["reason"] == "cancelled"

    # Let the abandoned worker finish; its result must not reach the form.
    gate.set()
    assert gateway.finished.wait(timeout=5)
    time.sleep(0.1)
    assert engine.calls == []
    assert client.get(f"/sessions/{session_id}").json()["fields"]["amount"] == ""

    assert client.post(f"/sessions/{session_id}/retry").json()["state"] == "idle"
    gateway.gate = None
    retried = _upload(client, session_id)
    assert retried.status_code == 200
    assert retried.json()["fields"]["amount"] == "250,000 USD"
