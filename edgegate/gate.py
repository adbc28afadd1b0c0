from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Literal

from fastapi.responses import JSONResponse, RedirectResponse
from starlette.requests import Request
from starlette.responses import Response

from .client_ip import client_identifier
from .config import Settings
from .headers import apply_asset_cache_headers, apply_cors_headers, apply_security_headers
from .observability import Timer, log_event
from .otel import record_gate_outcome, record_session_refresh_metric, span
from .ratelimit import (
    Clock,
    FixedWindowRateLimiter,
    InMemoryRateLimitStore,
    RateLimitExceeded,
    RateLimitStatus,
    RateLimitStore,
    RateLimitSweeper,
    now_ms,
    rate_limit_key,
)
from .routing import classify, is_api_path, is_gate_exempt, path_group
from .session import (
    ANONYMOUS,
    SessionRefresher,
    SessionRefreshFailure,
    SessionResult,
    apply_session_cookies,
    build_session_refresher,
)

GateOutcome = Literal["asset", "legacy_redirect", "prelaunch_redirect", "rate_limited", "preflight", "passed"]
CallNext = Callable[[Request], Awaitable[Response]]

TOO_MANY_REQUESTS_DETAIL = "Too many requests. Please try again later."


class EdgeGate:
    """Per-request pipeline in front of every page and API handler.

    Stages run in a fixed order and each may end the request early:

      asset passthrough -> legacy redirect -> pre-launch redirect ->
      rate limit (429) -> session refresh -> base response ->
      session cookies + rate-limit and security headers + CORS

    The rate-limit store and the session collaborator are injected so tests
    (and multi-instance deployments) can swap them without touching the gate.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        store: RateLimitStore | None = None,
        refresher: SessionRefresher | None = None,
        clock: Clock = now_ms,
    ) -> None:
        self.settings = settings
        self.store: RateLimitStore = store if store is not None else InMemoryRateLimitStore()
        self.limiter = FixedWindowRateLimiter(self.store, clock=clock)
        self.refresher: SessionRefresher = refresher if refresher is not None else build_session_refresher(settings)
        self.sweeper = RateLimitSweeper(self.store, interval_s=settings.rate_limit_sweep_interval_s, clock=clock)

    async def startup(self) -> None:
        if self.settings.rate_limit_enabled:
            self.sweeper.start()

    async def shutdown(self) -> None:
        await self.sweeper.stop()
        await self.refresher.aclose()

    def _finish(self, request: Request, outcome: GateOutcome, response: Response) -> Response:
        request.state.gate_outcome = outcome
        record_gate_outcome(outcome=outcome, path_group=path_group(request.url.path))
        return response

    async def _refresh_session(self, request: Request) -> SessionResult:
        timer = Timer()
        with span("edgegate.session.refresh"):
            try:
                result = await self.refresher.refresh(request)
            except SessionRefreshFailure as e:
                record_session_refresh_metric(latency_ms=timer.ms(), outcome="failed")
                log_event(
                    "session.refresh_failed",
                    severity="WARNING",
                    request_id=getattr(request.state, "request_id", None),
                    path=request.url.path,
                    detail=e.detail,
                    status=e.status_code,
                )
                return ANONYMOUS
        record_session_refresh_metric(
            latency_ms=timer.ms(),
            outcome="refreshed" if result.refreshed else ("valid" if result.authenticated else "anonymous"),
        )
        return result

    async def dispatch(self, request: Request, call_next: CallNext) -> Response:
        path = request.url.path
        settings = self.settings

        if is_gate_exempt(path):
            response = await call_next(request)
            apply_asset_cache_headers(response.headers, path)
            return self._finish(request, "asset", response)

        decision = classify(path, waitlist_path=settings.waitlist_path)

        if decision.legacy_redirect:
            target = str(request.url.replace(path=decision.legacy_redirect))
            return self._finish(request, "legacy_redirect", RedirectResponse(target, status_code=308))

        if settings.prelaunch_mode and not decision.prelaunch_allowed:
            target = str(request.url.replace(path=settings.waitlist_path, query=""))
            return self._finish(request, "prelaunch_redirect", RedirectResponse(target, status_code=307))

        limit_status: RateLimitStatus | None = None
        if settings.rate_limit_enabled and decision.policy is not None:
            client_id = client_identifier(request, trust_forwarded=settings.trust_forwarded_headers)
            key = rate_limit_key(client_id, decision.path_group)
            try:
                limit_status = self.limiter.hit(key, decision.policy)
            except RateLimitExceeded as exc:
                log_event(
                    "ratelimit.exceeded",
                    severity="WARNING",
                    request_id=getattr(request.state, "request_id", None),
                    key=key,
                    policy=decision.policy.prefix,
                    limit=exc.limit,
                    retry_after_s=exc.retry_after_s,
                )
                response = JSONResponse(
                    status_code=429,
                    content={"detail": TOO_MANY_REQUESTS_DETAIL},
                    headers=exc.headers(),
                )
                return self._finish(request, "rate_limited", response)

        session = await self._refresh_session(request)
        request.state.session = session

        api = is_api_path(path)
        preflight = api and request.method == "OPTIONS"
        if preflight:
            # Browsers only need the headers; downstream handlers never see preflights.
            response = Response(status_code=200)
        else:
            response = await call_next(request)

        apply_session_cookies(response, session, secure=settings.is_production)
        if limit_status is not None:
            response.headers.update(limit_status.headers())
        apply_security_headers(response.headers, settings)
        if api:
            apply_cors_headers(response.headers, request.headers.get("origin"), settings)

        return self._finish(request, "preflight" if preflight else "passed", response)
