from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Mapping, Optional

from .field_mapper import ExtractionAttempt, FieldMapper, MapOutcome
from .merge import changed_fields, complete_record, merge_fields
from .ocr import GatewayError, TextExtractionGateway

LOGGER = logging.getLogger(__name__)


class AutofillState(str, Enum):
    IDLE = "idle"
    EXTRACTING = "extracting"
    MAPPING = "mapping"
    MERGED = "merged"
    FAILED = "failed"


class FailureReason(str, Enum):
    GATEWAY_ERROR = "gateway_error"
    NO_USABLE_DATA = "no_usable_data"
    ENGINE_ERROR = "engine_error"
    CANCELLED = "cancelled"


class SubmissionRejected(Exception):
    """A submission arrived while another one was in flight or unacknowledged."""

    def __init__(self, state: AutofillState) -> None:
        super().__init__(f"Autofill is {state.value}; wait for it to finish or retry first")
        self.state = state


@dataclass
class AutofillOutcome:
    state: AutofillState
    fields: Dict[str, str]
    partial: Dict[str, str] = field(default_factory=dict)
    changed: List[str] = field(default_factory=list)
    reason: Optional[FailureReason] = None
    message: Optional[str] = None
    ocr_text: Optional[str] = None
    attempt: Optional[ExtractionAttempt] = None

    @property
    def merged(self) -> bool:
        return self.state == AutofillState.MERGED

    @property
    def no_op(self) -> bool:
        return self.merged and not self.changed


_NO_USABLE_DATA = {
    MapOutcome.INSUFFICIENT_TEXT,
    MapOutcome.EXPLICIT_FAILURE,
    MapOutcome.UNPARSEABLE,
}


class AutofillOrchestrator:
    """Runs extract -> map -> merge for one upload at a time.

    The orchestrator never holds form state: ``submit`` takes a snapshot and returns
    the partial update plus the merged record computed from that snapshot.
    """

    def __init__(self, gateway: TextExtractionGateway, mapper: FieldMapper) -> None:
        self.gateway = gateway
        self.mapper = mapper
        self._lock = threading.Lock()
        self._state = AutofillState.IDLE
        self._run_id = 0
        self._last_failure: Optional[AutofillOutcome] = None

    @property
    def state(self) -> AutofillState:
        with self._lock:
            return self._state

    @property
    def last_failure(self) -> Optional[AutofillOutcome]:
        with self._lock:
            return self._last_failure

    def _begin(self) -> int:
        with self._lock:
            if self._state != AutofillState.IDLE:
                LOGGER.info("Rejected submission while %s", self._state.value)
                raise SubmissionRejected(self._state)
            self._run_id += 1
            self._state = AutofillState.EXTRACTING
            self._last_failure = None
            return self._run_id

    def _cancelled_outcome_locked(self, snapshot: Dict[str, str]) -> AutofillOutcome:
        failure = self._last_failure
        return AutofillOutcome(
            state=AutofillState.FAILED,
            fields=snapshot,
            reason=FailureReason.CANCELLED,
            message=failure.message if failure else "Autofill was cancelled",
        )

    def _fail(
        self,
        run_id: int,
        snapshot: Dict[str, str],
        reason: FailureReason,
        message: str,
        ocr_text: Optional[str] = None,
        attempt: Optional[ExtractionAttempt] = None,
    ) -> AutofillOutcome:
        outcome = AutofillOutcome(
            state=AutofillState.FAILED,
            fields=snapshot,
            reason=reason,
            message=message,
            ocr_text=ocr_text,
            attempt=attempt,
        )
        with self._lock:
            if run_id != self._run_id:
                return self._cancelled_outcome_locked(snapshot)
            self._state = AutofillState.FAILED
            self._last_failure = outcome
        LOGGER.info("Autofill failed (%s): %s", reason.value, message)
        return outcome

    def submit(
        self,
        image_bytes: bytes,
        current_fields: Optional[Mapping[str, object]] = None,
        filename: Optional[str] = None,
    ) -> AutofillOutcome:
        run_id = self._begin()
        snapshot = complete_record(current_fields)

        try:
            text = self.gateway.extract(image_bytes, filename)
        except GatewayError as exc:
            return self._fail(run_id, snapshot, FailureReason.GATEWAY_ERROR, str(exc))
        except Exception as exc:  # noqa: BLE001
            LOGGER.exception("Text extraction crashed")
            return self._fail(run_id, snapshot, FailureReason.GATEWAY_ERROR, f"Text extraction failed: {exc}")

        with self._lock:
            if run_id != self._run_id:
                return self._cancelled_outcome_locked(snapshot)
            self._state = AutofillState.MAPPING

        try:
            attempt = self.mapper.map(text, snapshot)
        except Exception as exc:  # noqa: BLE001
            LOGGER.exception("Field mapping crashed")
            return self._fail(
                run_id, snapshot, FailureReason.ENGINE_ERROR, f"AI processing failed: {exc}", ocr_text=text
            )
        if attempt.outcome == MapOutcome.ENGINE_ERROR:
            return self._fail(
                run_id, snapshot, FailureReason.ENGINE_ERROR, attempt.message or "AI processing failed",
                ocr_text=text, attempt=attempt,
            )
        if attempt.outcome in _NO_USABLE_DATA:
            return self._fail(
                run_id, snapshot, FailureReason.NO_USABLE_DATA, attempt.message or "No usable data",
                ocr_text=text, attempt=attempt,
            )

        merged = merge_fields(snapshot, attempt.fields)
        changed = changed_fields(snapshot, merged)
        with self._lock:
            if run_id != self._run_id or self._state != AutofillState.MAPPING:
                return self._cancelled_outcome_locked(snapshot)
            # Merged is terminal for the run; the machine is immediately ready again.
            self._state = AutofillState.IDLE
        LOGGER.info("Autofill merged %d field(s): %s", len(changed), ", ".join(changed) or "none")
        return AutofillOutcome(
            state=AutofillState.MERGED,
            fields=merged,
            partial=dict(attempt.fields),
            changed=changed,
            message=attempt.message,
            ocr_text=text,
            attempt=attempt,
        )

    def retry(self) -> AutofillState:
        """Leave the failed state so a new image can be submitted; never resubmits."""
        with self._lock:
            if self._state in {AutofillState.EXTRACTING, AutofillState.MAPPING}:
                raise SubmissionRejected(self._state)
            self._state = AutofillState.IDLE
            self._last_failure = None
            return self._state

    def cancel(self, message: str = "Autofill was cancelled") -> bool:
        """Force the in-flight run to failed; its eventual result is discarded."""
        with self._lock:
            if self._state not in {AutofillState.EXTRACTING, AutofillState.MAPPING}:
                return False
            self._run_id += 1
            self._state = AutofillState.FAILED
            self._last_failure = AutofillOutcome(
                state=AutofillState.FAILED,
                fields={},
                reason=FailureReason.CANCELLED,
                message=message,
            )
        LOGGER.warning("Autofill cancelled: %s", message)
        return True
