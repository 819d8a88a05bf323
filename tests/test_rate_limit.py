"""
tests/test_rate_limit.py -- Integration tests for the per-address limits on
POST /login and POST /signup.

Coverage:
  - Requests inside the limit are served normally
  - The first request over the limit gets an HTML 429 with Retry-After
  - Over-limit login attempts are refused before they reach the audit trail
"""

from __future__ import annotations

from auth.audit import MemoryAuditSink


def test_login_limit(web_client, rate_limiting, audit_sink: MemoryAuditSink) -> None:
    statuses = [
        web_client.post("/login", data={"username": "alice", "password": "nope"}).status_code for _ in range(12)
    ]
    assert statuses == [200] * 10 + [429] * 2
    assert len(audit_sink.lines) == 10


def test_login_429_is_an_html_page(web_client, rate_limiting) -> None:
    for _ in range(10):
        web_client.post("/login", data={"username": "ghost", "password": "x"})
    resp = web_client.post("/login", data={"username": "ghost", "password": "x"})
    assert resp.status_code == 429
    assert resp.headers["content-type"].startswith("text/html")
    assert "Retry-After" in resp.headers
    assert "Too many attempts" in resp.text


def test_signup_limit(web_client, rate_limiting) -> None:
    form = {"username": "", "first_name": "", "last_name": "", "password": "", "verify": "", "email": ""}
    statuses = [web_client.post("/signup", data=form).status_code for _ in range(6)]
    assert statuses == [200] * 5 + [429]


def test_login_page_is_not_limited(web_client, rate_limiting) -> None:
    assert all(web_client.get("/login").status_code == 200 for _ in range(15))
