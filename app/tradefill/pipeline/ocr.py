from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Protocol

import boto3
import pytesseract
import requests
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from PIL import Image
from pytesseract import Output

from ..config import OcrConfig
from .ingest import RendererUnavailable, UnsupportedDocument, load_upload, preprocess_image

LOGGER = logging.getLogger(__name__)


class GatewayError(Exception):
    """Text extraction failed; the message is shown to the user as-is."""


class TextExtractionGateway(Protocol):
    name: str

    def extract(self, image_bytes: bytes, filename: Optional[str] = None) -> str:
        ...


@dataclass
class PageRead:
    """One Tesseract pass over a page: its text plus per-word confidences (0..1)."""

    text: str
    layout: str
    confidences: List[float] = field(default_factory=list)

    @property
    def word_count(self) -> int:
        return len(self.confidences)

    @property
    def score(self) -> float:
        if not self.confidences:
            return 0.0
        scored = [conf for conf in self.confidences if conf > 0]
        mean = sum(scored) / len(scored) if scored else 0.0
        # More recognized words nudge the score up, capped so noise can't dominate.
        return mean + min(self.word_count, 120) * 0.0025


def count_tokens(text: Optional[str]) -> int:
    if not text:
        return 0
    return len(text.split())


def _require_bytes(image_bytes: Optional[bytes]) -> bytes:
    if not image_bytes:
        raise GatewayError("No file provided")
    return image_bytes


def _require_text(text: str, provider: str) -> str:
    cleaned = (text or "").strip()
    if not cleaned:
        LOGGER.info("%s returned no text", provider)
        raise GatewayError("No text found in image")
    return cleaned


class TesseractGateway:
    """Local Tesseract OCR with page-layout fallbacks for low-confidence scans."""

    name = "tesseract"
    # Tried in order when the default layout reads poorly: uniform block, columns, sparse text.
    FALLBACK_LAYOUTS = ("--psm 6", "--psm 4", "--psm 11")
    MIN_CONFIDENT_SCORE = 0.45
    MIN_CONFIDENT_WORDS = 5

    def __init__(self, lang: str = "eng", timeout: float = 60.0) -> None:
        self.lang = lang
        self.timeout = timeout

    def _read(self, image: Image.Image, layout: str) -> PageRead:
        data = pytesseract.image_to_data(
            image, output_type=Output.DICT, lang=self.lang, config=layout, timeout=self.timeout
        )
        text = pytesseract.image_to_string(image, lang=self.lang, config=layout, timeout=self.timeout)
        confidences: List[float] = []
        raw_confs = data.get("conf", [])
        for index, token in enumerate(data.get("text", [])):
            if not token or not token.strip():
                continue
            try:
                confidences.append(float(raw_confs[index]) / 100.0)
            except (IndexError, ValueError):
                confidences.append(0.0)
        return PageRead(text=text, layout=layout or "default", confidences=confidences)

    def read_page(self, image: Image.Image) -> PageRead:
        first = self._read(image, "")
        if first.score >= self.MIN_CONFIDENT_SCORE and first.word_count >= self.MIN_CONFIDENT_WORDS:
            return first
        reads = [first] + [self._read(image, layout) for layout in self.FALLBACK_LAYOUTS]
        best = max(reads, key=lambda read: read.score)
        LOGGER.debug("Tesseract kept %s layout (%d words, score %.2f)", best.layout, best.word_count, best.score)
        return best

    def extract(self, image_bytes: bytes, filename: Optional[str] = None) -> str:
        data = _require_bytes(image_bytes)
        try:
            pages = load_upload(data, filename)
        except UnsupportedDocument as exc:
            raise GatewayError(str(exc)) from exc
        except RendererUnavailable as exc:
            LOGGER.warning("PDF rendering failed: %s", exc)
            raise GatewayError(str(exc)) from exc
        chunks: List[str] = []
        try:
            for page in pages:
                result = self.read_page(preprocess_image(page))
                if result.text and result.text.strip():
                    chunks.append(result.text.strip())
        except pytesseract.TesseractNotFoundError as exc:
            raise GatewayError("Tesseract OCR not configured (binary not found)") from exc
        except (pytesseract.TesseractError, RuntimeError) as exc:
            # pytesseract raises RuntimeError on timeout.
            LOGGER.warning("Tesseract failed: %s", exc)
            raise GatewayError(f"Tesseract error: {exc}") from exc
        return _require_text("\n".join(chunks), self.name)


class OcrSpaceGateway:
    name = "ocrspace"

    def __init__(
        self,
        api_key: Optional[str],
        endpoint: str,
        lang: str = "eng",
        engine: str = "2",
        timeout: float = 60.0,
    ) -> None:
        self.api_key = api_key
        self.endpoint = endpoint
        self.lang = lang
        self.engine = engine
        self.timeout = timeout

    def extract(self, image_bytes: bytes, filename: Optional[str] = None) -> str:
        data = _require_bytes(image_bytes)
        if not self.api_key:
            raise GatewayError("OCR.space API key not configured")
        upload_name = filename or "image.jpg"
        payload = {
            "apikey": self.api_key,
            "language": self.lang,
            "OCREngine": self.engine,
            "scale": "true",
            "isOverlayRequired": "false",
        }
        try:
            resp = requests.post(
                self.endpoint,
                data=payload,
                files={"file": (upload_name, data)},
                timeout=self.timeout,
            )
            resp.raise_for_status()
            body = resp.json()
        except (requests.RequestException, ValueError) as exc:
            LOGGER.warning("OCR.space request failed: %s", exc)
            raise GatewayError(f"OCR.space error: {exc}") from exc

        if body.get("IsErroredOnProcessing"):
            message = body.get("ErrorMessage") or "processing failed"
            if isinstance(message, list):
                message = "; ".join(str(m) for m in message)
            raise GatewayError(f"OCR.space error: {message}")
        results = body.get("ParsedResults") or []
        text = "\n".join((item.get("ParsedText") or "") for item in results)
        return _require_text(text, self.name)


class TextractGateway:
    name = "textract"

    def __init__(self, client) -> None:
        self.client = client

    @classmethod
    def from_config(cls, config: OcrConfig) -> "TextractGateway":
        if not config.aws_region:
            return cls(None)
        boto_config = Config(
            retries={"max_attempts": 3, "mode": "standard"},
            connect_timeout=10,
            read_timeout=config.timeout,
        )
        try:
            client = boto3.client("textract", region_name=config.aws_region, config=boto_config)
        except (BotoCoreError, ClientError) as exc:
            LOGGER.warning("Failed to initialize Textract client: %s", exc)
            client = None
        return cls(client)

    def extract(self, image_bytes: bytes, filename: Optional[str] = None) -> str:
        data = _require_bytes(image_bytes)
        if self.client is None:
            raise GatewayError("AWS Textract not configured (set AWS_REGION)")
        try:
            response = self.client.detect_document_text(Document={"Bytes": data})
        except (BotoCoreError, ClientError) as exc:
            LOGGER.warning("Textract failed: %s", exc)
            raise GatewayError(f"Textract error: {exc}") from exc
        lines = [
            block.get("Text", "")
            for block in response.get("Blocks", [])
            if block.get("BlockType") == "LINE"
        ]
        return _require_text("\n".join(lines), self.name)


def build_gateway(config: OcrConfig) -> TextExtractionGateway:
    if config.provider == "ocrspace":
        return OcrSpaceGateway(
            api_key=config.ocr_space_api_key,
            endpoint=config.ocr_space_endpoint,
            lang=config.lang,
            engine=config.ocr_space_engine,
            timeout=config.timeout,
        )
    if config.provider == "textract":
        return TextractGateway.from_config(config)
    return TesseractGateway(lang=config.lang, timeout=config.timeout)
