"""
tests/test_access_guards.py -- Integration tests for the authenticated and
administrator guards on /dashboard and /benefits.

Coverage:
  - Anonymous requests are redirected to /login and get no session
  - Standard users are refused /benefits but keep their session
  - Administrators see the account list
  - Role changes take effect on the next request without logging out
"""

from __future__ import annotations

import asyncio

from auth.models import ROLE_ADMIN, ROLE_USER


def _login(client, username: str, password: str) -> None:
    resp = client.post("/login", data={"username": username, "password": password})
    assert resp.status_code == 302


class TestAnonymous:
    def test_dashboard_redirects_without_session(self, web_client, session_manager) -> None:
        resp = web_client.get("/dashboard")
        assert resp.status_code == 302
        assert resp.headers["location"] == "/login"
        assert "set-cookie" not in resp.headers
        assert len(session_manager.store) == 0

    def test_benefits_redirects_without_session(self, web_client) -> None:
        resp = web_client.get("/benefits")
        assert resp.status_code == 302
        assert resp.headers["location"] == "/login"

    def test_anonymous_session_is_not_enough(self, web_client) -> None:
        web_client.get("/login")
        assert web_client.get("/dashboard").headers["location"] == "/login"

    def test_root_redirects_to_dashboard(self, web_client) -> None:
        resp = web_client.get("/")
        assert resp.status_code == 302
        assert resp.headers["location"] == "/dashboard"


class TestRoles:
    def test_user_refused_benefits(self, web_client) -> None:
        _login(web_client, "alice", "alice-pass")
        resp = web_client.get("/benefits")
        assert resp.status_code == 302
        assert resp.headers["location"] == "/login"
        # The refusal leaves the session intact.
        assert web_client.get("/dashboard").status_code == 200

    def test_admin_sees_account_list(self, web_client) -> None:
        _login(web_client, "root", "root-pass")
        resp = web_client.get("/benefits")
        assert resp.status_code == 200
        assert "alice" in resp.text
        assert "root" in resp.text

    def test_revoked_admin_is_refused_next_request(self, web_client, accounts, seeded_accounts) -> None:
        _login(web_client, "root", "root-pass")
        assert web_client.get("/benefits").status_code == 200

        assert asyncio.run(accounts.update_role(seeded_accounts.admin.id, ROLE_USER))

        assert web_client.get("/benefits").status_code == 302
        assert web_client.get("/dashboard").status_code == 200

    def test_promoted_user_is_admitted_next_request(self, web_client, accounts, seeded_accounts) -> None:
        _login(web_client, "alice", "alice-pass")
        assert web_client.get("/benefits").status_code == 302

        asyncio.run(accounts.update_role(seeded_accounts.user.id, ROLE_ADMIN))

        assert web_client.get("/benefits").status_code == 200
