from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

DEFAULT_OPENAI_ENDPOINT = "https://api.openai.com/v1/chat/completions"
DEFAULT_OPENAI_MODEL = "gpt-4o-mini"
DEFAULT_OCR_SPACE_ENDPOINT = "https://api.ocr.space/parse/image"
OCR_PROVIDERS = ("tesseract", "ocrspace", "textract")


def _load_dotenv() -> None:
    repo_root = Path(__file__).resolve().parents[2]
    candidates = [repo_root / ".env", Path.cwd() / ".env"]
    for env_path in candidates:
        if not env_path.exists():
            continue
        try:
            for line in env_path.read_text().splitlines():
                stripped = line.strip()
                if not stripped or stripped.startswith("#") or "=" not in stripped:
                    continue
                key, value = stripped.split("=", 1)
                key = key.strip()
                value = value.strip().strip('"').strip("'")
                if key and key not in os.environ:
                    os.environ[key] = value
        except OSError:
            continue
        break


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class OcrConfig:
    provider: str = "tesseract"
    lang: str = "eng"
    timeout: float = 60.0
    ocr_space_api_key: Optional[str] = None
    ocr_space_endpoint: str = DEFAULT_OCR_SPACE_ENDPOINT
    ocr_space_engine: str = "2"
    aws_region: Optional[str] = None


@dataclass(frozen=True)
class LlmConfig:
    endpoint: Optional[str] = None
    api_key: Optional[str] = None
    model: str = DEFAULT_OPENAI_MODEL
    timeout: float = 30.0


@dataclass(frozen=True)
class PipelineConfig:
    # Overall budget for one upload (OCR + LLM); a run past this is forced to failed.
    timeout: float = 120.0
    min_tokens: int = 3
    # Sessions untouched for this long are dropped; 0 disables expiry.
    session_ttl: float = 3600.0


@dataclass(frozen=True)
class AppConfig:
    log_level: str = "INFO"
    ocr: OcrConfig = field(default_factory=OcrConfig)
    llm: LlmConfig = field(default_factory=LlmConfig)
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)


def _resolve_ocr_config() -> OcrConfig:
    provider = os.getenv("TRADEFILL_OCR_PROVIDER", "tesseract").strip().lower()
    if provider not in OCR_PROVIDERS:
        raise ValueError(f"Unsupported OCR provider: {provider} (expected one of {', '.join(OCR_PROVIDERS)})")
    return OcrConfig(
        provider=provider,
        lang=os.getenv("OCR_LANG", "eng").strip() or "eng",
        timeout=_env_float("OCR_TIMEOUT", 60.0),
        ocr_space_api_key=os.getenv("OCR_SPACE_API_KEY") or None,
        ocr_space_endpoint=os.getenv("OCR_SPACE_ENDPOINT", DEFAULT_OCR_SPACE_ENDPOINT),
        ocr_space_engine=os.getenv("OCR_SPACE_ENGINE", "2"),
        aws_region=os.getenv("AWS_REGION") or os.getenv("AWS_DEFAULT_REGION") or None,
    )


def _resolve_llm_config() -> LlmConfig:
    endpoint = os.getenv("LLM_ENDPOINT")
    api_key = os.getenv("LLM_API_KEY") or os.getenv("OPENAI_API_KEY")
    model = (
        os.getenv("LLM_MODEL")
        or os.getenv("OPENAI_MODEL")
        or DEFAULT_OPENAI_MODEL
    ).strip()
    if not endpoint and os.getenv("OPENAI_API_KEY"):
        endpoint = DEFAULT_OPENAI_ENDPOINT
    return LlmConfig(
        endpoint=endpoint or None,
        api_key=api_key or None,
        model=model,
        timeout=_env_float("LLM_TIMEOUT", 30.0),
    )


def load_config() -> AppConfig:
    """Resolve process-wide configuration from the environment (and .env, if present)."""
    _load_dotenv()
    return AppConfig(
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        ocr=_resolve_ocr_config(),
        llm=_resolve_llm_config(),
        pipeline=PipelineConfig(
            timeout=_env_float("TRADEFILL_PIPELINE_TIMEOUT", 120.0),
            min_tokens=int(_env_float("TRADEFILL_MIN_TOKENS", 3)),
            session_ttl=_env_float("TRADEFILL_SESSION_TTL", 3600.0),
        ),
    )


CONFIG = load_config()
