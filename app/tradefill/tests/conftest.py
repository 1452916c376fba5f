import sys
import threading
from io import BytesIO
from pathlib import Path
from typing import List, Optional, Tuple

import pytest
from PIL import Image

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from tradefill.pipeline.ocr import GatewayError  # noqa: E402


class FakeEngine:
    def __init__(self, reply: Optional[str] = None, error: Optional[str] = None) -> None:
        self.reply = reply
        self.error = error
        self.calls: List[Tuple[str, str]] = []

    def complete(self, raw_text: str, directive: str):
        self.calls.append((raw_text, directive))
        if self.error:
            return None, self.error
        return self.reply, None


class FakeGateway:
    name = "fake"

    def __init__(
        self,
        text: Optional[str] = None,
        error: Optional[str] = None,
        gate: Optional[threading.Event] = None,
    ) -> None:
        self.text = text
        self.error = error
        self.gate = gate
        self.started = threading.Event()
        self.finished = threading.Event()
        self.calls: List[bytes] = []

    def extract(self, image_bytes: bytes, filename: Optional[str] = None) -> str:
        self.calls.append(image_bytes)
        self.started.set()
        try:
            if self.gate is not None:
                self.gate.wait(timeout=5)
            if self.error:
                raise GatewayError(self.error)
            return self.text or ""
        finally:
            self.finished.set()


@pytest.fixture
def fake_engine():
    return FakeEngine


@pytest.fixture
def fake_gateway():
    return FakeGateway


@pytest.fixture
def png_bytes() -> bytes:
    img = Image.new("RGB", (400, 200), "white")
    buffer = BytesIO()
    img.save(buffer, format="PNG")
    return buffer.getvalue()
