from __future__ import annotations

import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Mapping, Optional

from .field_registry import FIELD_NAMES, empty_record
from .pipeline.merge import changed_fields, merge_fields
from .pipeline.orchestrator import AutofillOrchestrator, AutofillOutcome, AutofillState

LOGGER = logging.getLogger(__name__)

IN_FLIGHT = {AutofillState.EXTRACTING, AutofillState.MAPPING}


class UnknownFieldError(ValueError):
    def __init__(self, keys: List[str]) -> None:
        super().__init__(f"Unknown field(s): {', '.join(sorted(keys))}")
        self.keys = keys


@dataclass
class FormSession:
    """One browser form: its field values plus the autofill state machine."""

    session_id: str
    orchestrator: AutofillOrchestrator
    fields: Dict[str, str] = field(default_factory=empty_record)
    message: Optional[str] = None
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def snapshot(self) -> Dict[str, str]:
        with self._lock:
            return dict(self.fields)

    def edit_fields(self, updates: Mapping[str, object]) -> Dict[str, str]:
        unknown = [key for key in updates if key not in FIELD_NAMES]
        if unknown:
            raise UnknownFieldError(unknown)
        with self._lock:
            for key, value in updates.items():
                self.fields[key] = value.strip() if isinstance(value, str) else ""
            return dict(self.fields)

    def upload(self, image_bytes: bytes, filename: Optional[str] = None) -> AutofillOutcome:
        outcome = self.orchestrator.submit(image_bytes, self.snapshot(), filename)
        with self._lock:
            if outcome.merged:
                # Re-merge over the live record so edits made during the run survive.
                before = dict(self.fields)
                self.fields = merge_fields(before, outcome.partial)
                outcome.fields = dict(self.fields)
                outcome.changed = changed_fields(before, self.fields)
            else:
                outcome.fields = dict(self.fields)
            self.message = outcome.message
        return outcome

    def retry(self) -> AutofillState:
        state = self.orchestrator.retry()
        with self._lock:
            self.message = None
        return state

    def cancel(self, message: str) -> bool:
        cancelled = self.orchestrator.cancel(message)
        if cancelled:
            with self._lock:
                self.message = message
        return cancelled

    def payload(self) -> Dict[str, object]:
        failure = self.orchestrator.last_failure
        with self._lock:
            return {
                "session_id": self.session_id,
                "state": self.orchestrator.state.value,
                "fields": dict(self.fields),
                "message": self.message,
                "reason": failure.reason.value if failure and failure.reason else None,
            }


class SessionStore:
    """In-memory sessions; ones idle longer than ``idle_ttl`` seconds are swept on ``create``."""

    def __init__(
        self,
        orchestrator_factory: Callable[[], AutofillOrchestrator],
        idle_ttl: float = 3600.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._factory = orchestrator_factory
        self._idle_ttl = idle_ttl
        self._clock = clock
        self._sessions: Dict[str, FormSession] = {}
        self._last_seen: Dict[str, float] = {}
        self._lock = threading.Lock()

    def _sweep_locked(self, now: float) -> None:
        if self._idle_ttl <= 0:
            return
        for session_id, seen in list(self._last_seen.items()):
            if now - seen < self._idle_ttl:
                continue
            # A run still in flight keeps its session alive until it settles.
            if self._sessions[session_id].orchestrator.state in IN_FLIGHT:
                continue
            del self._sessions[session_id]
            del self._last_seen[session_id]
            LOGGER.info("Expired idle form session %s", session_id)

    def create(self) -> FormSession:
        session = FormSession(session_id=uuid.uuid4().hex, orchestrator=self._factory())
        with self._lock:
            now = self._clock()
            self._sweep_locked(now)
            self._sessions[session.session_id] = session
            self._last_seen[session.session_id] = now
        LOGGER.info("Created form session %s", session.session_id)
        return session

    def get(self, session_id: str) -> Optional[FormSession]:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is not None:
                self._last_seen[session_id] = self._clock()
            return session

    def drop(self, session_id: str) -> bool:
        with self._lock:
            self._last_seen.pop(session_id, None)
            return self._sessions.pop(session_id, None) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
