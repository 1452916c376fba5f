from __future__ import annotations

import threading

import pytest

from tradefill.field_registry import FIELD_NAMES, empty_record
from tradefill.pipeline.field_mapper import FieldMapper
from tradefill.pipeline.orchestrator import (
    AutofillOrchestrator,
    AutofillState,
    FailureReason,
    SubmissionRejected,
)

OCR_TEXT = "Payment Terms: Sight LC. Issuing Bank: Citibank."


def _orchestrator(gateway, engine) -> AutofillOrchestrator:
    return AutofillOrchestrator(gateway, FieldMapper(engine))


def test_end_to_end_regex_fallback(fake_gateway, fake_engine) -> None:
    # The engine echoes prose, so the mapper has to use the labeled fallback.
    engine = fake_engine(reply=OCR_TEXT)
    orchestrator = _orchestrator(fake_gateway(text=OCR_TEXT), engine)

    outcome = orchestrator.submit(b"image", empty_record())

    assert outcome.state == AutofillState.MERGED
    assert outcome.partial == {"paymentTerms": "Sight LC.", "issuingBank": "Citibank."}
    assert outcome.fields["paymentTerms"] == "Sight LC."
    assert outcome.fields["issuingBank"] == "Citibank."
    others = [key for key in FIELD_NAMES if key not in {"paymentTerms", "issuingBank"}]
    assert all(outcome.fields[key] == "" for key in others)
    assert outcome.changed == ["paymentTerms", "issuingBank"]
    assert orchestrator.state == AutofillState.IDLE


def test_merge_keeps_existing_values(fake_gateway, fake_engine) -> None:
    current = empty_record()
    current["amount"] = "100 USD"
    engine = fake_engine(reply='{"amount": "", "issuingBank": "HSBC"}')
    outcome = _orchestrator(fake_gateway(text=OCR_TEXT), engine).submit(b"image", current)
    assert outcome.fields["amount"] == "100 USD"
    assert outcome.fields["issuingBank"] == "HSBC"
    assert outcome.changed == ["issuingBank"]


def test_gateway_error_fails_without_calling_engine(fake_gateway, fake_engine) -> None:
    engine = fake_engine(reply="{}")
    orchestrator = _orchestrator(fake_gateway(error="OCR.space API key not configured"), engine)

    outcome = orchestrator.submit(b"image", empty_record())

    assert outcome.state == AutofillState.FAILED
    assert outcome.reason == FailureReason.GATEWAY_ERROR
    assert outcome.message == "OCR.space API key not configured"
    assert engine.calls == []
    assert orchestrator.state == AutofillState.FAILED


@pytest.mark.parametrize(
    "text,reply",
    [
        ("LC", '{"amount": "1"}'),
        (OCR_TEXT, "error"),
        (OCR_TEXT, ""),
    ],
)
def test_no_usable_data(fake_gateway, fake_engine, text, reply) -> None:
    orchestrator = _orchestrator(fake_gateway(text=text), fake_engine(reply=reply))
    outcome = orchestrator.submit(b"image", empty_record())
    assert outcome.state == AutofillState.FAILED
    assert outcome.reason == FailureReason.NO_USABLE_DATA
    assert outcome.fields == empty_record()


def test_engine_error(fake_gateway, fake_engine) -> None:
    orchestrator = _orchestrator(fake_gateway(text=OCR_TEXT), fake_engine(error="LLM API key not configured"))
    outcome = orchestrator.submit(b"image", empty_record())
    assert outcome.reason == FailureReason.ENGINE_ERROR
    assert outcome.ocr_text == OCR_TEXT


def test_empty_success_is_merged_noop(fake_gateway, fake_engine) -> None:
    orchestrator = _orchestrator(fake_gateway(text=OCR_TEXT), fake_engine(reply="{}"))
    outcome = orchestrator.submit(b"image", empty_record())
    assert outcome.state == AutofillState.MERGED
    assert outcome.no_op
    assert outcome.fields == empty_record()


def test_failed_requires_retry_before_resubmit(fake_gateway, fake_engine) -> None:
    gateway = fake_gateway(error="No text found in image")
    orchestrator = _orchestrator(gateway, fake_engine(reply="{}"))
    orchestrator.submit(b"image", empty_record())

    with pytest.raises(SubmissionRejected):
        orchestrator.submit(b"image", empty_record())
    assert len(gateway.calls) == 1

    assert orchestrator.retry() == AutofillState.IDLE
    gateway.error = None
    gateway.text = OCR_TEXT
    outcome = orchestrator.submit(b"other image", empty_record())
    assert outcome.state == AutofillState.MERGED
    assert len(gateway.calls) == 2


def test_concurrent_submit_is_rejected(fake_gateway, fake_engine) -> None:
    gate = threading.Event()
    gateway = fake_gateway(text=OCR_TEXT, gate=gate)
    orchestrator = _orchestrator(gateway, fake_engine(reply='{"amount": "5"}'))
    results = {}

    worker = threading.Thread(target=lambda: results.setdefault("first", orchestrator.submit(b"a", empty_record())))
    worker.start()
    assert gateway.started.wait(timeout=5)
    assert orchestrator.state == AutofillState.EXTRACTING

    with pytest.raises(SubmissionRejected) as excinfo:
        orchestrator.submit(b"b", empty_record())
    assert excinfo.value.state == AutofillState.EXTRACTING
    with pytest.raises(SubmissionRejected):
        orchestrator.retry()

    gate.set()
    worker.join(timeout=5)
    assert results["first"].state == AutofillState.MERGED
    assert len(gateway.calls) == 1


def test_cancel_discards_in_flight_result(fake_gateway, fake_engine) -> None:
    gate = threading.Event()
    gateway = fake_gateway(text=OCR_TEXT, gate=gate)
    orchestrator = _orchestrator(gateway, fake_engine(reply='{"amount": "5"}'))
    results = {}

    worker = threading.Thread(target=lambda: results.setdefault("run", orchestrator.submit(b"a", empty_record())))
    worker.start()
    assert gateway.started.wait(timeout=5)

    assert orchestrator.cancel("Autofill timed out after 1s")
    assert orchestrator.state == AutofillState.FAILED
    gate.set()
    worker.join(timeout=5)

    outcome = results["run"]
    assert outcome.state == AutofillState.FAILED
    assert outcome.reason == FailureReason.CANCELLED
    assert outcome.message == "Autofill timed out after 1s"
    assert outcome.fields == empty_record()
    assert orchestrator.state == AutofillState.FAILED
    assert not orchestrator.cancel("again")
