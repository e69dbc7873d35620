"""Process-wide settings for the equiptrak persistence core.

All configuration is environment-driven with the ``EQUIPTRAK_`` prefix and
validated once at startup. The storage backend in particular is read a
single time: drivers are built from one ``EquiptrakSettings`` instance and
never re-branch on configuration per call.

Examples:
    >>> import os
    >>> os.environ["EQUIPTRAK_STORAGE_BACKEND"] = "rest"
    >>> os.environ["EQUIPTRAK_REST_URL"] = "https://example.supabase.co/rest/v1"
    >>> get_settings(_force_reload=True).storage_backend
    <StorageBackend.REST: 'rest'>

Tags:
    settings, configuration, pydantic, environment, equiptrak

Doc-Types:
    - API Reference
    - Configuration Guide
"""

from __future__ import annotations

from decimal import Decimal
from threading import Lock

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .enums import SequenceMode, StorageBackend


class EquiptrakSettings(BaseSettings):
    """Settings for storage, numbering, and observability.

    Fields
    ──────
    storage_backend   : ``sql`` (direct relational) or ``rest`` (PostgREST BaaS)
    database_url      : ``sqlite:///path``, ``sqlite:///:memory:`` or ``postgresql://...``
    rest_url          : Base URL of the REST API, e.g. ``https://x.supabase.co/rest/v1``
    sequence_mode     : ``read_last`` | ``locked`` | ``atomic``
    default_vat_rate  : Percentage applied when a work order names no rate
    """

    model_config = SettingsConfigDict(
        env_prefix="EQUIPTRAK_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Backend ──────────────────────────────────────────────────
    storage_backend: StorageBackend = Field(default=StorageBackend.SQL)

    # ── Relational driver ────────────────────────────────────────
    database_url: str = Field(default="sqlite:///data/equiptrak.db")
    database_pool_size: int = Field(default=5, ge=1)
    database_connect_timeout: int = Field(default=10, ge=1)

    # ── REST driver ──────────────────────────────────────────────
    rest_url: str = Field(default="")
    rest_api_key: str = Field(default="", repr=False)
    rest_timeout_seconds: float = Field(default=10.0, gt=0)

    # ── Numbering ────────────────────────────────────────────────
    sequence_mode: SequenceMode = Field(default=SequenceMode.LOCKED)
    certificate_prefix: str = Field(default="BWS-")
    certificate_floor: int = Field(default=1000, ge=0)
    compressor_prefix: str = Field(default="CMP-")
    lift_service_prefix: str = Field(default="LFT-")
    spot_welder_prefix: str = Field(default="SW-")
    work_order_prefix: str = Field(default="WO-")
    work_order_floor: int = Field(default=1000, ge=0)

    # ── Records ──────────────────────────────────────────────────
    default_vat_rate: Decimal = Field(default=Decimal("20"), ge=0)
    transaction_timeout_seconds: float | None = Field(default=30.0)

    # ── Observability ────────────────────────────────────────────
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="console")

    @model_validator(mode="after")
    def _validate_backend(self) -> EquiptrakSettings:
        if self.storage_backend == StorageBackend.REST and not self.rest_url:
            raise ValueError("EQUIPTRAK_REST_URL is required when storage_backend is 'rest'")
        if self.log_format not in ("console", "json"):
            raise ValueError(f"log_format must be 'console' or 'json', got {self.log_format!r}")
        return self

    @property
    def is_rest(self) -> bool:
        return self.storage_backend == StorageBackend.REST


# ── Settings factory with caching ────────────────────────────────────────

_settings: EquiptrakSettings | None = None
_settings_lock = Lock()


def get_settings(*, _force_reload: bool = False) -> EquiptrakSettings:
    """Load, validate, and cache the process settings."""
    global _settings
    with _settings_lock:
        if _settings is None or _force_reload:
            _settings = EquiptrakSettings()
        return _settings


__all__ = [
    "EquiptrakSettings",
    "get_settings",
]
