"""Path classification for the edge gate.

Everything here is a pure function of the request path and the fixed tables
below. The gate asks three questions of a path:

- is it a static asset the gate should not touch at all?
- is it reachable while the product is in pre-launch (waitlist) mode?
- which rate-limit policy, if any, applies to it?
"""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass
from typing import Any

# Paths the gate never intercepts (framework static output, favicon, public images).
_GATE_EXEMPT_PREFIXES = ("/_next/static", "/_next/image", "/favicon.ico")
_GATE_EXEMPT_RE = re.compile(r"\.(?:svg|png|jpg|jpeg|gif|webp)$")

# Health probes stay reachable in pre-launch mode.
_PRELAUNCH_ALLOWED_PREFIXES = ("/waitlist", "/api", "/_next", "/favicon.ico", "/health", "/ready")
_PRELAUNCH_ASSET_RE = re.compile(r"\.(?:svg|png|jpg|jpeg|gif|webp|ico)$")

_RATE_LIMIT_EXEMPT_PREFIXES = ("/_next", "/static")
_RATE_LIMIT_EXEMPT_RE = re.compile(r"\.(?:ico|png|jpg|jpeg|svg|css|js)$")

# Long-lived cache headers for immutable build output and image files.
_CACHEABLE_ASSET_PREFIXES = ("/_next/static/",)
_CACHEABLE_ASSET_RE = re.compile(r"\.(?:svg|jpg|png|webp|avif)$")

API_PREFIX = "/api"

# Permanent redirects kept for URL consistency with older links.
LEGACY_REDIRECTS: dict[str, str] = {
    "/sign-up": "/signup",
    "/sign-in": "/signin",
}


@dataclass(frozen=True)
class RateLimitPolicy:
    prefix: str
    requests: int
    window_ms: int

    @property
    def window_s(self) -> int:
        return -(-self.window_ms // 1000)


# First matching prefix wins, so more specific prefixes go first.
RATE_LIMIT_POLICIES: tuple[RateLimitPolicy, ...] = (
    RateLimitPolicy(prefix="/api/auth", requests=5, window_ms=60_000),
    RateLimitPolicy(prefix="/api/payments", requests=10, window_ms=60_000),
    RateLimitPolicy(prefix="/api/ai", requests=20, window_ms=60_000),
    RateLimitPolicy(prefix="/api", requests=100, window_ms=60_000),
)
DEFAULT_RATE_LIMIT_POLICY = RateLimitPolicy(prefix="*", requests=200, window_ms=60_000)


@dataclass(frozen=True)
class RouteDecision:
    path: str
    exempt: bool
    legacy_redirect: str | None
    prelaunch_allowed: bool
    policy: RateLimitPolicy | None
    path_group: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def is_gate_exempt(path: str) -> bool:
    p = path or "/"
    return p.startswith(_GATE_EXEMPT_PREFIXES) or bool(_GATE_EXEMPT_RE.search(p))


def is_cacheable_asset(path: str) -> bool:
    p = path or "/"
    return p.startswith(_CACHEABLE_ASSET_PREFIXES) or bool(_CACHEABLE_ASSET_RE.search(p))


def is_api_path(path: str) -> bool:
    return (path or "").startswith(API_PREFIX)


def prelaunch_allows(path: str, *, waitlist_path: str = "/waitlist") -> bool:
    """Return True when `path` stays reachable while the waitlist gate is on."""
    p = path or "/"
    if p.startswith(waitlist_path) or p.startswith(_PRELAUNCH_ALLOWED_PREFIXES):
        return True
    return bool(_PRELAUNCH_ASSET_RE.search(p))


def legacy_redirect_for(path: str) -> str | None:
    return LEGACY_REDIRECTS.get(path or "/")


def select_policy(
    path: str,
    policies: tuple[RateLimitPolicy, ...] = RATE_LIMIT_POLICIES,
    default: RateLimitPolicy = DEFAULT_RATE_LIMIT_POLICY,
) -> RateLimitPolicy | None:
    """Pick the rate-limit policy for a path, or None for uncounted static paths."""
    p = path or "/"
    if p.startswith(_RATE_LIMIT_EXEMPT_PREFIXES) or _RATE_LIMIT_EXEMPT_RE.search(p):
        return None
    for policy in policies:
        if p.startswith(policy.prefix):
            return policy
    return default


def path_group(path: str) -> str:
    # "/api/auth/callback" -> "/api/auth"; "/jobs" -> "/jobs"
    return "/".join((path or "/").split("/")[:3])


def classify(path: str, *, waitlist_path: str = "/waitlist") -> RouteDecision:
    p = path or "/"
    return RouteDecision(
        path=p,
        exempt=is_gate_exempt(p),
        legacy_redirect=legacy_redirect_for(p),
        prelaunch_allowed=prelaunch_allows(p, waitlist_path=waitlist_path),
        policy=select_policy(p),
        path_group=path_group(p),
    )
