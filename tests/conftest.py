"""pytest configuration.

The repo is usable without installing the package: running `pytest` from the
repo root must resolve `import edgegate` to `./edgegate`, so the root is put
on `sys.path` here.
"""

from __future__ import annotations

import sys
from dataclasses import replace
from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from edgegate.config import Settings  # noqa: E402
from edgegate.session import ANONYMOUS, SessionResult  # noqa: E402

BASE_SETTINGS = Settings(
    version="0.0.0-test",
    environment="test",
    prelaunch_mode=True,
    waitlist_path="/waitlist",
    public_app_url="https://jobs.example.com",
    cors_extra_origins=(),
    csp_extra_connect_src=(),
    rate_limit_enabled=True,
    rate_limit_sweep_interval_s=60.0,
    trust_forwarded_headers=True,
    supabase_url=None,
    supabase_anon_key=None,
    session_refresh_timeout_s=5.0,
    log_level="WARNING",
    otel_enabled=False,
    otel_exporter_otlp_endpoint=None,
    otel_service_name="edgegate-test",
)


class FakeClock:
    """Epoch-millisecond clock that only moves when told to."""

    def __init__(self, start_ms: int = 1_700_000_000_000) -> None:
        self.now = start_ms

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class FakeRefresher:
    def __init__(self, result: SessionResult = ANONYMOUS, error: Exception | None = None) -> None:
        self.result = result
        self.error = error
        self.calls = 0
        self.closed = False

    async def refresh(self, request):  # noqa: ARG002
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.result

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def make_settings():
    def _make(**overrides) -> Settings:
        return replace(BASE_SETTINGS, **overrides)

    return _make


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_refresher() -> FakeRefresher:
    return FakeRefresher()
