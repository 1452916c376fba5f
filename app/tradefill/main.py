from __future__ import annotations

import logging
from typing import Dict, Optional

import anyio
from fastapi import FastAPI, File, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import CONFIG
from .field_registry import empty_record, field_registry_payload
from .pipeline.field_mapper import FieldMapper, MapOutcome
from .pipeline.llm_extract import build_engine
from .pipeline.merge import merge_fields
from .pipeline.ocr import GatewayError, build_gateway, count_tokens
from .pipeline.orchestrator import (
    AutofillOrchestrator,
    AutofillOutcome,
    FailureReason,
    SubmissionRejected,
)
from .pipeline.rules import validate_record
from .schemas import FieldRecord, MapRequest
from .sessions import SessionStore, UnknownFieldError

logging.basicConfig(level=CONFIG.log_level, format="%(asctime)s %(levelname)s %(name)s - %(message)s")
LOGGER = logging.getLogger("tradefill")

PIPELINE_TIMEOUT = CONFIG.pipeline.timeout
MIN_TOKENS = CONFIG.pipeline.min_tokens

GATEWAY = build_gateway(CONFIG.ocr)
ENGINE = build_engine(CONFIG.llm)
MAPPER = FieldMapper(ENGINE, min_tokens=MIN_TOKENS)


def _new_orchestrator() -> AutofillOrchestrator:
    return AutofillOrchestrator(GATEWAY, MAPPER)


SESSIONS = SessionStore(_new_orchestrator, idle_ttl=CONFIG.pipeline.session_ttl)

FAILURE_STATUS = {
    FailureReason.GATEWAY_ERROR: 502,
    FailureReason.ENGINE_ERROR: 502,
    FailureReason.NO_USABLE_DATA: 422,
    FailureReason.CANCELLED: 504,
}

app = FastAPI(title="Trade Finance Autofill")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
async def health() -> Dict[str, str]:
    return {"status": "ok", "ocr_provider": GATEWAY.name}


@app.get("/field_registry")
async def field_registry() -> Dict[str, object]:
    return field_registry_payload()


def _session_not_found(session_id: str) -> JSONResponse:
    return JSONResponse({"error": f"Unknown session: {session_id}"}, status_code=404)


def _outcome_response(outcome: AutofillOutcome) -> JSONResponse:
    if outcome.merged:
        report = validate_record(outcome.fields)
        return JSONResponse(
            {
                "status": "merged",
                "fields": outcome.fields,
                "changed": outcome.changed,
                "no_op": not outcome.changed,
                "message": outcome.message,
                "strategy": outcome.attempt.strategy if outcome.attempt else None,
                "report": report.model_dump(),
            }
        )
    reason = outcome.reason or FailureReason.GATEWAY_ERROR
    return JSONResponse(
        {
            "status": "failed",
            "reason": reason.value,
            "message": outcome.message,
            "retryable": True,
            "fields": outcome.fields,
        },
        status_code=FAILURE_STATUS.get(reason, 500),
    )


@app.post("/sessions")
async def create_session():
    session = SESSIONS.create()
    return JSONResponse(session.payload(), status_code=201)


@app.get("/sessions/{session_id}")
async def get_session(session_id: str):
    session = SESSIONS.get(session_id)
    if session is None:
        return _session_not_found(session_id)
    return JSONResponse(session.payload())


@app.delete("/sessions/{session_id}")
async def delete_session(session_id: str):
    if not SESSIONS.drop(session_id):
        return _session_not_found(session_id)
    return JSONResponse({"deleted": session_id})


@app.patch("/sessions/{session_id}/fields")
async def edit_session_fields(session_id: str, updates: Dict[str, Optional[str]]):
    session = SESSIONS.get(session_id)
    if session is None:
        return _session_not_found(session_id)
    try:
        session.edit_fields(updates)
    except UnknownFieldError as exc:
        return JSONResponse({"error": str(exc), "fields": exc.keys}, status_code=400)
    return JSONResponse(session.payload())


@app.post("/sessions/{session_id}/upload")
async def upload(session_id: str, topImage: UploadFile = File(None)):
    session = SESSIONS.get(session_id)
    if session is None:
        return _session_not_found(session_id)
    if topImage is None:
        return JSONResponse({"status": "failed", "message": "No file uploaded"}, status_code=400)
    data = await topImage.read()
    if not data:
        return JSONResponse({"status": "failed", "message": "No file uploaded"}, status_code=400)

    LOGGER.info("Session %s: upload %s (%d bytes)", session_id, topImage.filename, len(data))
    try:
        with anyio.fail_after(PIPELINE_TIMEOUT):
            outcome = await anyio.to_thread.run_sync(
                session.upload, data, topImage.filename, abandon_on_cancel=True
            )
    except SubmissionRejected as exc:
        return JSONResponse(
            {"status": "rejected", "state": exc.state.value, "message": str(exc)}, status_code=409
        )
    except TimeoutError:
        message = f"Autofill timed out after {PIPELINE_TIMEOUT:.0f}s"
        session.cancel(message)
        return JSONResponse(
            {
                "status": "failed",
                "reason": FailureReason.CANCELLED.value,
                "message": message,
                "retryable": True,
                "fields": session.snapshot(),
            },
            status_code=504,
        )
    return _outcome_response(outcome)


@app.post("/sessions/{session_id}/retry")
async def retry(session_id: str):
    session = SESSIONS.get(session_id)
    if session is None:
        return _session_not_found(session_id)
    try:
        session.retry()
    except SubmissionRejected as exc:
        return JSONResponse(
            {"status": "rejected", "state": exc.state.value, "message": str(exc)}, status_code=409
        )
    return JSONResponse(session.payload())


@app.post("/imagetotext")
async def image_to_text(topImage: UploadFile = File(None)):
    if topImage is None:
        return JSONResponse({"success": False, "message": "No file uploaded"}, status_code=400)
    data = await topImage.read()
    try:
        text = await anyio.to_thread.run_sync(GATEWAY.extract, data, topImage.filename)
    except GatewayError as exc:
        status = 400 if not data else 502
        return JSONResponse({"success": False, "message": str(exc)}, status_code=status)
    except Exception as exc:  # noqa: BLE001
        LOGGER.exception("Text extraction crashed")
        return JSONResponse({"success": False, "message": f"Text extraction failed: {exc}"}, status_code=502)
    tokens = count_tokens(text)
    if tokens < MIN_TOKENS:
        return JSONResponse(
            {
                "success": False,
                "message": f"Extracted text below {MIN_TOKENS}-token minimum",
                "text": text,
            },
            status_code=422,
        )
    return JSONResponse({"success": True, "text": text, "token_count": tokens})


@app.post("/map")
async def map_text(payload: MapRequest):
    current = payload.current_fields.model_dump() if payload.current_fields else empty_record()
    attempt = await anyio.to_thread.run_sync(MAPPER.map, payload.text, current)
    body = attempt.to_payload()
    body["success"] = attempt.outcome == MapOutcome.SUCCESS
    if attempt.outcome == MapOutcome.SUCCESS:
        body["merged"] = merge_fields(current, attempt.fields)
    status = 502 if attempt.outcome == MapOutcome.ENGINE_ERROR else 200
    return JSONResponse(body, status_code=status)


@app.post("/validate")
async def validate(payload: FieldRecord):
    report = validate_record(payload.model_dump())
    return JSONResponse({"report": report.model_dump()})
