"""
Unified configuration loader for the archivist pipeline.

This module is the single source of truth for all configuration:
- Settings dataclass (gate flags, retrieval thresholds, LLM settings)
- Loading settings from config/settings.yaml with env var overrides
- Pydantic schema validation of the raw YAML for readable error reporting

All code should import configuration from this module, not from settings.yaml directly.
"""

from __future__ import annotations

import functools
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

logger = logging.getLogger(__name__)

_REPO_ROOT = Path(__file__).resolve().parents[2]
_CONFIG_DIR = _REPO_ROOT / "config"


# ─────────────────────────────────────────────────────────────────────────────
# Core Settings Dataclass
# ─────────────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Settings:
    """Application settings - loaded from config/settings.yaml.

    Frozen to ensure immutability after loading. The gate flags and the
    exclusion patterns are owned by the settings layer; the pipeline only
    reads them.
    """
    # OpenAI settings
    chat_model: str = ""
    temperature: float | None = None

    # Evidence gate
    strict_evidence_gate: bool = True
    inline_citations: bool = True

    # Retrieval routing / fallback
    weak_score_threshold: float = 0.25
    max_salient_terms: int = 10
    title_source_limit: int = 10
    max_source_chunks: int = 8
    qa_exclusions: str = ""


def _get_settings_path() -> Path:
    """Settings file location. Can be overridden via ARCHIVIST_SETTINGS_PATH for testing."""
    override = os.getenv("ARCHIVIST_SETTINGS_PATH")
    if override:
        return Path(override)
    return _CONFIG_DIR / "settings.yaml"


# ─────────────────────────────────────────────────────────────────────────────
# Pydantic Schema for settings.yaml
# ─────────────────────────────────────────────────────────────────────────────


class OpenAISectionSchema(BaseModel):
    model_config = ConfigDict(extra="allow")

    chat_model: str = ""
    temperature: float | None = None
    timeout_secs: float = 120
    max_retries: int = 3


class GateSectionSchema(BaseModel):
    strict_evidence_gate: bool = True
    inline_citations: bool = True


class RagSectionSchema(BaseModel):
    weak_score_threshold: float = 0.25
    max_salient_terms: int = 10
    title_source_limit: int = 10
    max_source_chunks: int = 8
    qa_exclusions: str = ""

    @field_validator("qa_exclusions", mode="before")
    @classmethod
    def ensure_csv(cls, v: Any) -> str:
        if v is None:
            return ""
        if isinstance(v, (list, tuple)):
            return ",".join(str(x) for x in v if x)
        return str(v)


class SettingsSchema(BaseModel):
    """Schema for config/settings.yaml."""
    model_config = ConfigDict(extra="allow")

    openai: OpenAISectionSchema = OpenAISectionSchema()
    gate: GateSectionSchema = GateSectionSchema()
    rag: RagSectionSchema = RagSectionSchema()

    @field_validator("openai", "gate", "rag", mode="before")
    @classmethod
    def ensure_mapping(cls, v: Any) -> Any:
        if v is None:
            return {}
        return v


def validate_settings_config(config: dict[str, Any]) -> SettingsSchema | None:
    """Validate raw settings against the schema.

    Returns the validated config or None if validation fails.
    Logs detailed error messages for malformed configs.
    """
    try:
        return SettingsSchema.model_validate(config)
    except ValidationError as e:
        logger.warning("Invalid settings.yaml: %s", e.errors())
        return None


# ─────────────────────────────────────────────────────────────────────────────
# Settings Loading Helpers
# ─────────────────────────────────────────────────────────────────────────────


def _validate_settings(settings: Settings) -> None:
    """Validate settings values."""
    if not (0.0 <= settings.weak_score_threshold <= 1.0):
        raise ValueError(
            f"rag.weak_score_threshold must be within [0, 1] (got {settings.weak_score_threshold})"
        )
    if settings.max_salient_terms < 1:
        raise ValueError(f"rag.max_salient_terms must be >= 1 (got {settings.max_salient_terms})")
    if settings.title_source_limit < 1:
        raise ValueError(f"rag.title_source_limit must be >= 1 (got {settings.title_source_limit})")
    if settings.max_source_chunks < 1:
        raise ValueError(f"rag.max_source_chunks must be >= 1 (got {settings.max_source_chunks})")


def _load_settings_yaml() -> dict[str, Any]:
    """Load raw settings from config/settings.yaml."""
    settings_path = _get_settings_path()
    if not settings_path.exists():
        return {}
    with open(settings_path, encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _env_int(key: str, default: int) -> int:
    val = os.getenv(key)
    return int(val) if val and val.strip() else default


def _env_float(key: str, default: float | None) -> float | None:
    val = os.getenv(key)
    if val is None or val.strip() == "":
        return default
    return float(val)


def _parse_bool_env(env_key: str, default: bool) -> bool:
    """Parse a boolean from environment variable, falling back to default."""
    val = os.getenv(env_key)
    if val is None:
        return default
    return val.strip().lower() in ("true", "1", "yes", "on")


@functools.lru_cache(maxsize=1)
def load_settings() -> Settings:
    """Load and validate application settings from config/settings.yaml.

    Environment variables override YAML values:
    - OPENAI_CHAT_MODEL
    - ARCHIVIST_STRICT_EVIDENCE_GATE, ARCHIVIST_INLINE_CITATIONS
    - ARCHIVIST_WEAK_SCORE_THRESHOLD, ARCHIVIST_MAX_SOURCE_CHUNKS
    - ARCHIVIST_QA_EXCLUSIONS

    Returns:
        Settings: Validated, frozen settings object
    """
    load_dotenv()

    raw = _load_settings_yaml()
    schema = validate_settings_config(raw)
    if schema is None:
        logger.error("settings.yaml failed validation; using defaults")
        schema = SettingsSchema()

    openai_cfg = schema.openai
    gate_cfg = schema.gate
    rag_cfg = schema.rag

    settings = Settings(
        chat_model=str(os.getenv("OPENAI_CHAT_MODEL") or openai_cfg.chat_model),
        temperature=openai_cfg.temperature,
        strict_evidence_gate=_parse_bool_env(
            "ARCHIVIST_STRICT_EVIDENCE_GATE", gate_cfg.strict_evidence_gate
        ),
        inline_citations=_parse_bool_env("ARCHIVIST_INLINE_CITATIONS", gate_cfg.inline_citations),
        weak_score_threshold=float(
            _env_float("ARCHIVIST_WEAK_SCORE_THRESHOLD", rag_cfg.weak_score_threshold)
        ),
        max_salient_terms=int(rag_cfg.max_salient_terms),
        title_source_limit=int(rag_cfg.title_source_limit),
        max_source_chunks=_env_int("ARCHIVIST_MAX_SOURCE_CHUNKS", int(rag_cfg.max_source_chunks)),
        qa_exclusions=os.getenv("ARCHIVIST_QA_EXCLUSIONS") or rag_cfg.qa_exclusions,
    )

    _validate_settings(settings)
    return settings


def get_settings_yaml() -> dict[str, Any]:
    """Get raw settings dict from YAML (for sections not modelled in Settings)."""
    return _load_settings_yaml()


def get_openai_settings() -> dict[str, Any]:
    """Get the openai section with env overrides for client construction."""
    openai_cfg = get_settings_yaml().get("openai", {}) or {}
    return {
        "chat_model": os.getenv("OPENAI_CHAT_MODEL") or openai_cfg.get("chat_model", ""),
        "temperature": openai_cfg.get("temperature"),
        "timeout_secs": float(
            os.getenv("ARCHIVIST_OPENAI_TIMEOUT_SECS") or openai_cfg.get("timeout_secs", 120)
        ),
        "max_retries": int(
            os.getenv("ARCHIVIST_OPENAI_MAX_RETRIES") or openai_cfg.get("max_retries", 3)
        ),
    }


def get_model_capabilities() -> dict[str, Any]:
    """Get model capability lists from settings.yaml."""
    return get_settings_yaml().get("model_capabilities", {}) or {}


def clear_config_cache() -> None:
    """Clear all cached configurations (useful for testing)."""
    load_settings.cache_clear()
