from __future__ import annotations

import pytest

from edgegate.routing import (
    DEFAULT_RATE_LIMIT_POLICY,
    classify,
    is_cacheable_asset,
    is_gate_exempt,
    legacy_redirect_for,
    path_group,
    prelaunch_allows,
    select_policy,
)


@pytest.mark.parametrize(
    "path",
    [
        "/waitlist",
        "/waitlist/thanks",
        "/api",
        "/api/jobs",
        "/api/payments/webhook",
        "/_next/data/build/index.json",
        "/favicon.ico",
        "/images/hero.png",
        "/logo.svg",
        "/photos/team.jpeg",
        "/banner.webp",
        "/anim.gif",
        "/health",
        "/ready",
    ],
)
def test_prelaunch_allow_list(path):
    assert prelaunch_allows(path) is True


@pytest.mark.parametrize(
    "path",
    ["/", "/jobs", "/jobs/123", "/pricing", "/company/dashboard", "/signin", "/styles.css"],
)
def test_prelaunch_blocks_everything_else(path):
    assert prelaunch_allows(path) is False


def test_prelaunch_allow_list_is_a_plain_prefix_match():
    assert prelaunch_allows("/apiary") is True
    assert prelaunch_allows("/waitlisted") is True


def test_prelaunch_honours_custom_waitlist_path():
    assert prelaunch_allows("/coming-soon", waitlist_path="/coming-soon") is True
    assert prelaunch_allows("/jobs", waitlist_path="/coming-soon") is False


@pytest.mark.parametrize(
    ("path", "prefix", "requests"),
    [
        ("/api/auth/create-profile", "/api/auth", 5),
        ("/api/payments/create-checkout", "/api/payments", 10),
        ("/api/ai/match-job", "/api/ai", 20),
        ("/api/waitlist", "/api", 100),
        ("/jobs/42", "*", 200),
        ("/", "*", 200),
    ],
)
def test_select_policy_first_prefix_wins(path, prefix, requests):
    policy = select_policy(path)
    assert policy is not None
    assert policy.prefix == prefix
    assert policy.requests == requests
    assert policy.window_ms == 60_000


@pytest.mark.parametrize("path", ["/_next/static/chunk.js", "/static/app.css", "/main.js", "/favicon.ico", "/a.png"])
def test_static_paths_are_not_rate_limited(path):
    assert select_policy(path) is None


def test_default_policy_is_generous():
    assert DEFAULT_RATE_LIMIT_POLICY.requests == 200
    assert DEFAULT_RATE_LIMIT_POLICY.window_s == 60


@pytest.mark.parametrize(
    ("path", "group"),
    [
        ("/api/auth/create-profile", "/api/auth"),
        ("/api/auth", "/api/auth"),
        ("/api", "/api"),
        ("/jobs", "/jobs"),
        ("/", "/"),
        ("/company/dashboard/jobs/7", "/company/dashboard"),
    ],
)
def test_path_group_keeps_first_two_segments(path, group):
    assert path_group(path) == group


def test_gate_exemption_matches_framework_assets_only():
    assert is_gate_exempt("/_next/static/css/app.css")
    assert is_gate_exempt("/_next/image")
    assert is_gate_exempt("/favicon.ico")
    assert is_gate_exempt("/uploads/avatar.webp")
    assert not is_gate_exempt("/_next/data/x.json")
    assert not is_gate_exempt("/api/jobs")
    assert not is_gate_exempt("/jobs")


def test_extension_matching_is_case_sensitive():
    assert not is_gate_exempt("/Jobs.PNG")
    assert prelaunch_allows("/Jobs.PNG") is False
    assert select_policy("/Jobs.PNG") is DEFAULT_RATE_LIMIT_POLICY
    assert not is_cacheable_asset("/hero.AVIF")


def test_cacheable_assets():
    assert is_cacheable_asset("/_next/static/chunks/main.js")
    assert is_cacheable_asset("/hero.avif")
    assert not is_cacheable_asset("/favicon.ico")
    assert not is_cacheable_asset("/api/jobs")


def test_legacy_redirects():
    assert legacy_redirect_for("/sign-up") == "/signup"
    assert legacy_redirect_for("/sign-in") == "/signin"
    assert legacy_redirect_for("/signin") is None


def test_classify_bundles_every_decision():
    d = classify("/api/auth/callback")
    assert d.exempt is False
    assert d.legacy_redirect is None
    assert d.prelaunch_allowed is True
    assert d.policy is not None and d.policy.prefix == "/api/auth"
    assert d.path_group == "/api/auth"

    payload = classify("/jobs").to_dict()
    assert payload["prelaunch_allowed"] is False
    assert payload["policy"]["requests"] == 200
