from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Mapping, Optional

from ..field_registry import is_field_name
from .llm_extract import GenerativeEngine
from .ocr import count_tokens
from .prompts import build_field_mapping_prompt
from .reply_parser import is_error_sentinel, parse_reply

LOGGER = logging.getLogger(__name__)

MIN_TOKENS = 3


class MapOutcome(str, Enum):
    SUCCESS = "success"
    INSUFFICIENT_TEXT = "insufficient_text"
    EXPLICIT_FAILURE = "explicit_failure"
    UNPARSEABLE = "unparseable"
    ENGINE_ERROR = "engine_error"


@dataclass
class ExtractionAttempt:
    raw_text: str
    outcome: MapOutcome
    fields: Dict[str, str] = field(default_factory=dict)
    reply: Optional[str] = None
    strategy: Optional[str] = None
    message: Optional[str] = None

    @property
    def usable(self) -> bool:
        return self.outcome == MapOutcome.SUCCESS and bool(self.fields)

    def to_payload(self) -> Dict[str, object]:
        return {
            "outcome": self.outcome.value,
            "fields": dict(self.fields),
            "strategy": self.strategy,
            "reply": self.reply,
            "message": self.message,
        }


class FieldMapper:
    def __init__(
        self,
        engine: GenerativeEngine,
        min_tokens: int = MIN_TOKENS,
        include_current_fields: bool = True,
    ) -> None:
        self.engine = engine
        self.min_tokens = min_tokens
        self.include_current_fields = include_current_fields

    def build_directive(self, current_fields: Optional[Mapping[str, str]] = None) -> str:
        context = None
        if self.include_current_fields and current_fields:
            context = {k: v for k, v in current_fields.items() if is_field_name(k)}
        return build_field_mapping_prompt(context)

    def map(self, raw_text: str, current_fields: Optional[Mapping[str, str]] = None) -> ExtractionAttempt:
        text = raw_text or ""
        tokens = count_tokens(text)
        if tokens < self.min_tokens:
            LOGGER.info("Skipping LLM mapping: %d token(s) recognized, need %d", tokens, self.min_tokens)
            return ExtractionAttempt(
                raw_text=text,
                outcome=MapOutcome.INSUFFICIENT_TEXT,
                message=f"Not enough text recognized ({tokens} token(s), need at least {self.min_tokens})",
            )

        reply, error = self.engine.complete(text, self.build_directive(current_fields))
        if error:
            return ExtractionAttempt(raw_text=text, outcome=MapOutcome.ENGINE_ERROR, message=error)
        reply = reply or ""

        if is_error_sentinel(reply):
            return ExtractionAttempt(
                raw_text=text,
                outcome=MapOutcome.EXPLICIT_FAILURE,
                reply=reply,
                message="The document did not contain any recognizable form fields",
            )
        if not reply.strip():
            return ExtractionAttempt(
                raw_text=text,
                outcome=MapOutcome.UNPARSEABLE,
                reply=reply,
                message="The language model returned an empty reply",
            )

        fields, strategy = parse_reply(reply)
        LOGGER.info("Mapped %d field(s) via %s", len(fields), strategy)
        return ExtractionAttempt(
            raw_text=text,
            outcome=MapOutcome.SUCCESS,
            fields=fields,
            reply=reply,
            strategy=strategy,
            message=None if fields else "No fields could be extracted from the document",
        )
