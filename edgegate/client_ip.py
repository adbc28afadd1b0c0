from __future__ import annotations

from starlette.requests import Request

UNKNOWN_CLIENT = "unknown"


def client_identifier(request: Request, *, trust_forwarded: bool = True) -> str:
    """Best-effort client identity for rate limiting.

    Forwarded headers are client-controlled unless a trusted proxy overwrites
    them. With `trust_forwarded=False` only the socket peer is used.
    """

    if trust_forwarded:
        xff = request.headers.get("x-forwarded-for")
        if xff:
            first = xff.split(",")[0].strip()
            if first:
                return first
        real_ip = (request.headers.get("x-real-ip") or "").strip()
        return real_ip or UNKNOWN_CLIENT

    if request.client and request.client.host:
        return request.client.host
    return UNKNOWN_CLIENT
