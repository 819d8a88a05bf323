"""
tests/test_signup_flow.py -- Integration tests for GET/POST /signup.

Coverage:
  - Valid signup creates the account, rotates the session and lands on /dashboard
  - The new account gets an allocation split summing to 100
  - Field errors re-render the form with the rule's message and no account
  - Duplicate usernames are rejected, including when the pre-check misses
  - Allocation failures never block signup
  - SELF_REGISTRATION_ENABLED=false hides both signup routes
"""

from __future__ import annotations

import asyncio

from auth.signup import DUPLICATE_USERNAME_ERROR, EMAIL_ERROR, USERNAME_ERROR, VERIFY_ERROR
from core.config import get_settings

COOKIE = "session_id"

VALID_FORM = {
    "username": "bob",
    "first_name": "Bob",
    "last_name": "Lee",
    "password": "Passw0rd!",
    "verify": "Passw0rd!",
    "email": "",
}


def _signup(client, **overrides):
    return client.post("/signup", data={**VALID_FORM, **overrides})


class TestSignupSuccess:
    def test_creates_account_and_signs_in(self, web_client, accounts) -> None:
        anonymous = web_client.get("/signup").cookies[COOKIE]
        resp = _signup(web_client)

        assert resp.status_code == 302
        assert resp.headers["location"] == "/dashboard"
        assert resp.cookies[COOKIE] != anonymous

        account = asyncio.run(accounts.find_by_username("bob"))
        assert account is not None
        assert account.first_name == "Bob"
        assert not account.is_admin

    def test_dashboard_shows_name_and_allocation(self, web_client, accounts, allocations) -> None:
        _signup(web_client)
        account = asyncio.run(accounts.find_by_username("bob"))
        allocation = asyncio.run(allocations.get(account.id))
        assert allocation is not None
        assert allocation.stocks + allocation.funds + allocation.bonds == 100

        resp = web_client.get("/dashboard")
        assert resp.status_code == 200
        assert "Welcome, Bob Lee" in resp.text
        assert f"{allocation.bonds}%" in resp.text

    def test_new_account_can_log_in(self, web_client) -> None:
        _signup(web_client, username="carol", password="abc", verify="abc")
        web_client.get("/logout")
        resp = web_client.post("/login", data={"username": "carol", "password": "abc"})
        assert resp.headers["location"] == "/dashboard"

    def test_allocation_failure_does_not_block_signup(self, web_client, allocations, monkeypatch) -> None:
        async def _down(account_id, stocks, funds, bonds):
            raise ConnectionError("allocation store unreachable")

        monkeypatch.setattr(allocations, "set_allocations", _down)
        resp = _signup(web_client)
        assert resp.status_code == 302

        page = web_client.get("/dashboard")
        assert page.status_code == 200
        assert "being prepared" in page.text


class TestSignupRejected:
    def test_verify_mismatch(self, web_client, accounts) -> None:
        resp = _signup(web_client, verify="different")
        assert resp.status_code == 200
        assert f'data-field="verify">{VERIFY_ERROR}</p>' in resp.text
        assert COOKIE not in resp.cookies
        assert asyncio.run(accounts.find_by_username("bob")) is None

    def test_invalid_username(self, web_client) -> None:
        resp = _signup(web_client, username="u" * 21)
        assert f'data-field="username">{USERNAME_ERROR}</p>' in resp.text
        assert 'data-field="verify"' not in resp.text

    def test_invalid_email(self, web_client) -> None:
        resp = _signup(web_client, email="not-an-address")
        assert f'data-field="email">{EMAIL_ERROR}</p>' in resp.text

    def test_values_are_kept_passwords_are_not(self, web_client) -> None:
        resp = _signup(web_client, email="bad")
        assert 'value="Bob"' in resp.text
        assert "Passw0rd!" not in resp.text

    def test_duplicate_username(self, web_client) -> None:
        resp = _signup(web_client, username="alice")
        assert resp.status_code == 200
        assert f'data-field="username">{DUPLICATE_USERNAME_ERROR}</p>' in resp.text
        assert COOKIE not in resp.cookies

    def test_duplicate_detected_by_insert(self, web_client, accounts, monkeypatch) -> None:
        """A concurrent signup can win between the pre-check and the insert."""

        async def _missed(username: str):
            return None

        monkeypatch.setattr(accounts, "find_by_username", _missed)
        resp = _signup(web_client, username="alice")
        assert resp.status_code == 200
        assert DUPLICATE_USERNAME_ERROR in resp.text


class TestRegistrationClosed:
    def test_signup_routes_are_404(self, web_client, monkeypatch, clear_settings, accounts) -> None:
        monkeypatch.setenv("SELF_REGISTRATION_ENABLED", "false")
        get_settings.cache_clear()

        page = web_client.get("/signup")
        assert page.status_code == 404
        assert page.headers["content-type"].startswith("text/html")
        assert _signup(web_client).status_code == 404
        assert asyncio.run(accounts.find_by_username("bob")) is None
