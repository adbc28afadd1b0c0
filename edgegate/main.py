from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse, JSONResponse
from pydantic import BaseModel, Field

from .client_ip import client_identifier
from .config import Settings, load_settings
from .gate import EdgeGate
from .headers import allowed_origins, security_headers
from .observability import Timer, configure_logging, log_http_request, request_id_from_headers
from .otel import otel_ready, record_http_request_metric, setup_otel
from .ratelimit import Clock, RateLimitStore, now_ms
from .routing import DEFAULT_RATE_LIMIT_POLICY, RATE_LIMIT_POLICIES
from .session import ANONYMOUS, SessionRefresher, SessionResult


class RateLimitPolicyModel(BaseModel):
    prefix: str
    requests: int
    window_ms: int


class MetaResponse(BaseModel):
    version: str
    environment: str
    prelaunch_mode: bool
    waitlist_path: str
    rate_limit_enabled: bool
    rate_limit_policies: list[RateLimitPolicyModel]
    cors_allowed_origins: list[str]
    csp_enabled: bool
    session_backend: str = Field(..., description="supabase | none")


class SessionResponse(BaseModel):
    authenticated: bool
    user_id: str | None = None


_WAITLIST_HTML = """<!doctype html>
<html lang="en">
<head><meta charset="utf-8"><title>Join the waitlist</title></head>
<body>
<main>
<h1>We're launching soon</h1>
<p>Join the waitlist to hear when job postings open.</p>
</main>
</body>
</html>
"""


def _status_severity(status: int) -> str:
    if status >= 500:
        return "ERROR"
    if status in {401, 403, 429}:
        return "WARNING"
    return "INFO"


def create_app(
    settings: Settings | None = None,
    *,
    store: RateLimitStore | None = None,
    refresher: SessionRefresher | None = None,
    clock: Clock = now_ms,
) -> FastAPI:
    cfg = settings or load_settings()
    gate = EdgeGate(cfg, store=store, refresher=refresher, clock=clock)

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        """Start the rate-limit sweeper; release the auth client on shutdown."""
        await gate.startup()
        try:
            yield
        finally:
            await gate.shutdown()

    app = FastAPI(
        title="Job Board Edge Gate",
        version=cfg.version,
        docs_url="/api/swagger",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
        lifespan=lifespan,
    )
    app.state.settings = cfg
    app.state.gate = gate

    # JSON logging early so hosted log pipelines parse fields.
    configure_logging(cfg.log_level)
    setup_otel(app, cfg)

    @app.middleware("http")
    async def _request_middleware(request: Request, call_next):
        """Attach a request id, run the edge gate, emit one structured log line."""

        timer = Timer()
        rid = request_id_from_headers({k.lower(): v for k, v in request.headers.items()})
        request.state.request_id = rid
        remote_ip = client_identifier(request, trust_forwarded=cfg.trust_forwarded_headers)
        user_agent = request.headers.get("user-agent", "")

        try:
            response = await gate.dispatch(request, call_next)
        except Exception as e:
            latency_ms = timer.ms()
            record_http_request_metric(
                method=request.method,
                path=request.url.path,
                status_code=500,
                latency_ms=latency_ms,
            )
            log_http_request(
                request_id=rid,
                method=request.method,
                url=str(request.url),
                path=request.url.path,
                status=500,
                latency_ms=latency_ms,
                remote_ip=remote_ip,
                user_agent=user_agent,
                outcome=getattr(request.state, "gate_outcome", "error"),
                error_type=type(e).__name__,
                severity="ERROR",
            )
            raise

        response.headers["X-Request-Id"] = rid

        latency_ms = timer.ms()
        status_code = int(response.status_code)
        outcome = getattr(request.state, "gate_outcome", "passed")
        record_http_request_metric(
            method=request.method,
            path=request.url.path,
            status_code=status_code,
            latency_ms=latency_ms,
        )
        log_http_request(
            request_id=rid,
            method=request.method,
            url=str(request.url),
            path=request.url.path,
            status=status_code,
            latency_ms=latency_ms,
            remote_ip=remote_ip,
            user_agent=user_agent,
            outcome=outcome,
            limited=outcome == "rate_limited",
            severity=_status_severity(status_code),
        )
        return response

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):  # noqa: ARG001
        """Safe JSON 500 that keeps request correlation and the fixed security headers."""
        headers = security_headers(cfg)
        rid = getattr(request.state, "request_id", None)
        if rid:
            headers["X-Request-Id"] = rid
        return JSONResponse(status_code=500, content={"detail": "Internal Server Error"}, headers=headers)

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/ready")
    def ready() -> dict[str, object]:
        return {"status": "ready", "sweeper_running": gate.sweeper.running, "otel_ready": otel_ready()}

    @app.get("/api/meta", response_model=MetaResponse)
    def meta() -> MetaResponse:
        policies = [*RATE_LIMIT_POLICIES, DEFAULT_RATE_LIMIT_POLICY]
        return MetaResponse(
            version=cfg.version,
            environment=cfg.environment,
            prelaunch_mode=cfg.prelaunch_mode,
            waitlist_path=cfg.waitlist_path,
            rate_limit_enabled=cfg.rate_limit_enabled,
            rate_limit_policies=[
                RateLimitPolicyModel(prefix=p.prefix, requests=p.requests, window_ms=p.window_ms) for p in policies
            ],
            cors_allowed_origins=list(allowed_origins(cfg)),
            csp_enabled=cfg.is_production,
            session_backend="supabase" if cfg.session_backend_configured else "none",
        )

    @app.get("/api/session", response_model=SessionResponse)
    def current_session(request: Request) -> SessionResponse:
        session: SessionResult = getattr(request.state, "session", ANONYMOUS)
        return SessionResponse(authenticated=session.authenticated, user_id=session.user_id)

    @app.get(cfg.waitlist_path, response_class=HTMLResponse)
    def waitlist() -> str:
        return _WAITLIST_HTML

    return app


# Dev:
#   - run with `uvicorn edgegate.main:app --reload --port 3000`
#   - or `python -m edgegate.cli serve --reload`
app = create_app()
