from __future__ import annotations

import argparse
import json
from dataclasses import asdict

from .routing import DEFAULT_RATE_LIMIT_POLICY, RATE_LIMIT_POLICIES, classify


def cmd_policies() -> None:
    rows = [asdict(p) for p in (*RATE_LIMIT_POLICIES, DEFAULT_RATE_LIMIT_POLICY)]
    print(json.dumps(rows, indent=2))


def cmd_classify(path: str, *, waitlist_path: str | None) -> None:
    from .config import settings

    if not path.startswith("/"):
        raise SystemExit(f"Path must start with '/': {path}")
    decision = classify(path, waitlist_path=waitlist_path or settings.waitlist_path)
    payload = decision.to_dict()
    payload["prelaunch_redirect"] = bool(settings.prelaunch_mode and not decision.prelaunch_allowed)
    print(json.dumps(payload, indent=2))


def cmd_serve(*, host: str, port: int, reload: bool) -> None:
    import uvicorn

    uvicorn.run("edgegate.main:app", host=host, port=port, reload=reload)


def main() -> None:
    parser = argparse.ArgumentParser(prog="edgegate", description="Job board edge gate tooling")
    sub = parser.add_subparsers(dest="cmd", required=True)

    sub.add_parser("policies", help="Print the rate-limit policy table as JSON.")

    p_classify = sub.add_parser("classify", help="Show how the gate treats a request path.")
    p_classify.add_argument("path", help="Request path, e.g. /api/auth/callback")
    p_classify.add_argument(
        "--waitlist-path",
        default=None,
        help="Override the waitlist path (default: WAITLIST_PATH or /waitlist).",
    )

    p_serve = sub.add_parser("serve", help="Run the app with uvicorn.")
    p_serve.add_argument("--host", default="127.0.0.1")
    p_serve.add_argument("--port", type=int, default=3000)
    p_serve.add_argument("--reload", action="store_true", help="Auto-reload on code changes (dev only).")

    args = parser.parse_args()
    if args.cmd == "policies":
        cmd_policies()
    elif args.cmd == "classify":
        cmd_classify(args.path, waitlist_path=args.waitlist_path)
    elif args.cmd == "serve":
        cmd_serve(host=args.host, port=int(args.port), reload=bool(args.reload))


if __name__ == "__main__":
    main()
