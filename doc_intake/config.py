from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from doc_intake.retention import get_retention_policy

DEFAULT_MODEL = "gemma3n:e4b-it-fp16"
DEFAULT_CORS_ORIGINS = "http://localhost:3000,http://127.0.0.1:3000"


@dataclass(frozen=True)
class Settings:
    upload_dir: Path
    types_file: Path
    static_dir: Path
    default_model: str
    ocr_languages: str
    snippet_chars: int
    retention: str
    cors_allowed_origins: list[str]
    host: str
    port: int
    ollama_base_url: str
    ollama_timeout_seconds: float | None
    log_level: str


def _int_from_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got '{raw}'.") from exc


def _optional_float_from_env(name: str) -> float | None:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return None
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got '{raw}'.") from exc


def _split_origins(value: str) -> list[str]:
    return [origin.strip() for origin in value.split(",") if origin.strip()]


def load_settings() -> Settings:
    retention = os.getenv("INTAKE_RETENTION", "keep").strip().lower() or "keep"
    get_retention_policy(retention)

    return Settings(
        upload_dir=Path(os.getenv("INTAKE_UPLOAD_DIR", "uploads")),
        types_file=Path(os.getenv("INTAKE_TYPES_FILE", "types.json")),
        static_dir=Path(os.getenv("INTAKE_STATIC_DIR", "public")),
        default_model=os.getenv("INTAKE_DEFAULT_MODEL", DEFAULT_MODEL),
        ocr_languages=os.getenv("INTAKE_OCR_LANGUAGES", "eng+rus"),
        snippet_chars=_int_from_env("INTAKE_SNIPPET_CHARS", 3000),
        retention=retention,
        cors_allowed_origins=_split_origins(
            os.getenv("INTAKE_CORS_ALLOWED_ORIGINS", DEFAULT_CORS_ORIGINS)
        ),
        host=os.getenv("INTAKE_HOST", "0.0.0.0"),
        port=_int_from_env("INTAKE_PORT", 3000),
        ollama_base_url=os.getenv("OLLAMA_BASE_URL", "http://localhost:11434").rstrip("/"),
        ollama_timeout_seconds=_optional_float_from_env("OLLAMA_TIMEOUT_SECONDS"),
        log_level=os.getenv("INTAKE_LOG_LEVEL", "INFO").upper(),
    )
