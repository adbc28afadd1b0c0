from __future__ import annotations

import os
from dataclasses import dataclass
from importlib import metadata
from pathlib import Path

from dotenv import load_dotenv

_DIST_NAME = "job-board-edge-gate"

# Load a local .env for developer convenience.
# Already-set environment variables win; a missing file is a no-op.
_REPO_ROOT = Path(__file__).resolve().parents[1]
_ENV_PATH = _REPO_ROOT / ".env"
if _ENV_PATH.exists():
    load_dotenv(dotenv_path=_ENV_PATH, override=False)


def _env_str(name: str, default: str) -> str:
    v = os.getenv(name)
    return v if v is not None and v.strip() != "" else default


def _package_version() -> str:
    # Source checkouts run without dist metadata; APP_VERSION overrides either way.
    try:
        return metadata.version(_DIST_NAME)
    except metadata.PackageNotFoundError:
        return "0.0.0+local"


def _env_first(*names: str) -> str | None:
    for name in names:
        v = os.getenv(name)
        if v is not None and v.strip():
            return v.strip()
    return None


def _env_float(name: str, default: float) -> float:
    v = os.getenv(name)
    if v is None:
        return default
    try:
        return float(v.strip())
    except Exception:
        return default


def _env_bool(name: str, default: bool) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    return v.strip().lower() in {"1", "true", "t", "yes", "y", "on"}


def _env_list(name: str) -> tuple[str, ...]:
    raw = os.getenv(name) or ""
    return tuple(p.strip() for p in raw.split(",") if p.strip())


def _normalize_path(raw: str) -> str:
    p = "/" + raw.strip().strip("/")
    return p if p != "/" else "/waitlist"


@dataclass(frozen=True)
class Settings:
    """Central configuration for the gate.

    Every field comes from the environment (see `load_settings`). Tests build
    their own instances directly instead of mutating the module-level one.
    """

    # ---- Build / runtime ----
    version: str
    environment: str  # development | production | test | ...

    # ---- Product mode ----
    prelaunch_mode: bool
    waitlist_path: str

    # ---- Public URL / origins ----
    public_app_url: str
    cors_extra_origins: tuple[str, ...]
    csp_extra_connect_src: tuple[str, ...]

    # ---- Rate limiting ----
    rate_limit_enabled: bool
    rate_limit_sweep_interval_s: float
    trust_forwarded_headers: bool

    # ---- Hosted auth collaborator ----
    supabase_url: str | None
    supabase_anon_key: str | None
    session_refresh_timeout_s: float

    # ---- Logging / OpenTelemetry ----
    log_level: str
    otel_enabled: bool
    otel_exporter_otlp_endpoint: str | None
    otel_service_name: str

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def session_backend_configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_anon_key)


def load_settings() -> Settings:
    environment = (_env_first("APP_ENV", "NODE_ENV") or "development").lower()

    public_app_url = (_env_first("PUBLIC_APP_URL", "NEXT_PUBLIC_APP_URL") or "").rstrip("/")

    supabase_url = _env_first("SUPABASE_URL", "NEXT_PUBLIC_SUPABASE_URL")
    if supabase_url:
        supabase_url = supabase_url.rstrip("/")
    supabase_anon_key = _env_first("SUPABASE_ANON_KEY", "NEXT_PUBLIC_SUPABASE_ANON_KEY")

    sweep_interval = _env_float("RATE_LIMIT_SWEEP_INTERVAL_S", 60.0)
    if sweep_interval <= 0:
        sweep_interval = 60.0

    return Settings(
        version=_env_str("APP_VERSION", _package_version()),
        environment=environment,
        prelaunch_mode=_env_bool("PRELAUNCH_MODE", True),
        waitlist_path=_normalize_path(_env_str("WAITLIST_PATH", "/waitlist")),
        public_app_url=public_app_url,
        cors_extra_origins=_env_list("CORS_EXTRA_ORIGINS"),
        csp_extra_connect_src=_env_list("CSP_EXTRA_CONNECT_SRC"),
        rate_limit_enabled=_env_bool("RATE_LIMIT_ENABLED", True),
        rate_limit_sweep_interval_s=sweep_interval,
        trust_forwarded_headers=_env_bool("TRUST_FORWARDED_HEADERS", True),
        supabase_url=supabase_url,
        supabase_anon_key=supabase_anon_key,
        session_refresh_timeout_s=_env_float("SESSION_REFRESH_TIMEOUT_S", 10.0),
        log_level=_env_str("LOG_LEVEL", "INFO").upper().strip(),
        otel_enabled=_env_bool("OTEL_ENABLED", False),
        otel_exporter_otlp_endpoint=os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT") or None,
        otel_service_name=_env_str("OTEL_SERVICE_NAME", "job-board-edge-gate"),
    )


settings = load_settings()
