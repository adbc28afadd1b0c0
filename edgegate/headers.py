from __future__ import annotations

from collections.abc import Iterable

from starlette.datastructures import MutableHeaders

from .config import Settings
from .routing import is_cacheable_asset

SECURITY_HEADERS: dict[str, str] = {
    "X-DNS-Prefetch-Control": "on",
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
    "X-Frame-Options": "SAMEORIGIN",
    "X-Content-Type-Options": "nosniff",
    "X-XSS-Protection": "1; mode=block",
    "Referrer-Policy": "origin-when-cross-origin",
    "Permissions-Policy": "camera=(), microphone=(), geolocation=()",
}

# Third-party origins the browser talks to directly: hosting previews, the hosted
# database/auth provider, the AI provider, the email provider, the payment provider.
_SCRIPT_ORIGINS = ("https://vercel.live", "https://va.vercel-scripts.com")
_CONNECT_ORIGINS = (
    "https://*.supabase.co",
    "wss://*.supabase.co",
    "https://api.openai.com",
    "https://api.resend.com",
    "https://*.paymaya.com",
)
_FRAME_ORIGINS = ("https://*.paymaya.com",)

LOCAL_DEV_ORIGINS = ("http://localhost:3000", "http://localhost:3001")
CORS_ALLOW_METHODS = "GET, POST, PUT, DELETE, OPTIONS"
CORS_ALLOW_HEADERS = "Content-Type, Authorization"

ASSET_CACHE_CONTROL = "public, max-age=31536000, immutable"


def _dedupe(values: Iterable[str]) -> list[str]:
    out: list[str] = []
    for v in values:
        if v and v not in out:
            out.append(v)
    return out


def build_csp(settings: Settings) -> str:
    connect_src = _dedupe(["'self'", *_CONNECT_ORIGINS, settings.public_app_url, *settings.csp_extra_connect_src])
    directives = [
        "default-src 'self'",
        "script-src " + " ".join(["'self'", "'unsafe-inline'", "'unsafe-eval'", *_SCRIPT_ORIGINS]),
        "style-src 'self' 'unsafe-inline'",
        "img-src 'self' data: https: blob:",
        "font-src 'self' data:",
        "connect-src " + " ".join(connect_src),
        "frame-src " + " ".join(["'self'", *_FRAME_ORIGINS]),
        "object-src 'none'",
        "base-uri 'self'",
        "form-action 'self'",
        "frame-ancestors 'self'",
        "upgrade-insecure-requests",
    ]
    return "; ".join(directives) + ";"


def security_headers(settings: Settings) -> dict[str, str]:
    headers = dict(SECURITY_HEADERS)
    if settings.is_production:
        headers["Content-Security-Policy"] = build_csp(settings)
    return headers


def apply_security_headers(headers: MutableHeaders, settings: Settings) -> None:
    for key, value in security_headers(settings).items():
        headers[key] = value


def allowed_origins(settings: Settings) -> tuple[str, ...]:
    return tuple(_dedupe([settings.public_app_url, *LOCAL_DEV_ORIGINS, *settings.cors_extra_origins]))


def cors_headers(origin: str | None, settings: Settings) -> dict[str, str]:
    """CORS grant for an exact allow-listed origin; empty for anything else."""
    if not origin or origin not in allowed_origins(settings):
        return {}
    return {
        # Echo the exact origin; a wildcard is invalid alongside credentials.
        "Access-Control-Allow-Origin": origin,
        "Access-Control-Allow-Credentials": "true",
        "Access-Control-Allow-Methods": CORS_ALLOW_METHODS,
        "Access-Control-Allow-Headers": CORS_ALLOW_HEADERS,
    }


def apply_cors_headers(headers: MutableHeaders, origin: str | None, settings: Settings) -> None:
    grant = cors_headers(origin, settings)
    for key, value in grant.items():
        headers[key] = value
    if grant:
        headers.add_vary_header("Origin")


def apply_asset_cache_headers(headers: MutableHeaders, path: str) -> None:
    if is_cacheable_asset(path) and "cache-control" not in headers:
        headers["Cache-Control"] = ASSET_CACHE_CONTROL
