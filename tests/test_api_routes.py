"""
tests/test_api_routes.py -- Integration tests for the /api/v1/users routes.

These tests exercise the full stack: FastAPI routing -> auth gate dependency
-> AccountService -> AccountStore/ChallengeStore -> response model
serialization. Unit testing individual route functions would miss
middleware, dependency injection, the error envelope, and response model
validation -- integration tests are the right tool here.

Coverage:
  - Auth failures: 401 + WWW-Authenticate on /users/me without or with a bad token
  - Registration: 201, duplicate phone 409, wrong code 401, never-sent code 400
  - Login: by phone, email, and handle; generic 401 on any miss; no-store headers
  - Code login: 200 for registered phone, 401 for unregistered
  - Profile: GET /me, PATCH fields, PATCH email conflict 409, PATCH id change
  - Password: PUT /me/password then log in with it
  - Phone: PUT /me/phone rebinds with a code for the new number; 409 when taken
  - Validation: malformed phone and out-of-range profile fields return 422

Fixtures used (from conftest.py):
  - api_client: TestClient on isolated stores, verification codes echoed back
  - new_phone: factory of unique valid phone numbers
"""

from __future__ import annotations

import itertools
from collections.abc import Callable

from fastapi.testclient import TestClient

from api.main import app

PASSWORD = "integration-pass-1"

_new_ids = itertools.count(880_000_000_001)


def _send_code(client: TestClient, phone: str) -> str:
    resp = client.post("/api/v1/users/send_code", json={"phone": phone})
    assert resp.status_code == 200, resp.text
    return resp.json()["code"]


def _register(client: TestClient, phone: str, password: str | None = PASSWORD) -> dict:
    body = {"phone": phone, "code": _send_code(client, phone)}
    if password is not None:
        body["password"] = password
    resp = client.post("/api/v1/users/register", json=body)
    assert resp.status_code == 201, resp.text
    return resp.json()


def _login(client: TestClient, login_key: str, password: str = PASSWORD) -> str:
    resp = client.post("/api/v1/users/login", json={"login_key": login_key, "password": password})
    assert resp.status_code == 200, resp.text
    return resp.json()["access_token"]


def _auth(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


class TestApiAuthFailure:
    """Unauthenticated requests to protected routes must return 401 with a Bearer challenge."""

    def test_get_me_without_token(self, api_client: TestClient) -> None:
        resp = api_client.get("/api/v1/users/me")
        assert resp.status_code == 401
        assert resp.headers["www-authenticate"] == "Bearer"
        assert resp.json()["error"] == {"code": "unauthorized", "message": "no credential supplied"}

    def test_get_me_with_garbage_token(self, api_client: TestClient) -> None:
        resp = api_client.get("/api/v1/users/me", headers=_auth("not-a-token"))
        assert resp.status_code == 401
        assert resp.json()["error"]["message"] == "invalid or expired token"

    def test_patch_me_without_token(self, api_client: TestClient) -> None:
        resp = api_client.patch("/api/v1/users/me", json={"bio": "x"})
        assert resp.status_code == 401

    def test_put_password_without_token(self, api_client: TestClient) -> None:
        resp = api_client.put("/api/v1/users/me/password", json={"password": "x"})
        assert resp.status_code == 401

    def test_token_for_deleted_account(self, api_client: TestClient, new_phone: Callable[[], str]) -> None:
        """A still-valid token stops working once its account is gone."""
        phone = new_phone()
        account = _register(api_client, phone)
        token = _login(api_client, phone)
        app.state.account_store.delete(int(account["account_id"]))
        resp = api_client.get("/api/v1/users/me", headers=_auth(token))
        assert resp.status_code == 401
        assert resp.json()["error"]["message"] == "account no longer exists"

    def test_preflight_is_not_challenged(self, api_client: TestClient) -> None:
        resp = api_client.options(
            "/api/v1/users/me",
            headers={"Origin": "http://localhost:3000", "Access-Control-Request-Method": "GET"},
        )
        assert resp.status_code == 200


class TestRegistration:
    def test_send_code_response(self, api_client: TestClient, new_phone: Callable[[], str]) -> None:
        resp = api_client.post("/api/v1/users/send_code", json={"phone": new_phone()})
        assert resp.status_code == 200
        data = resp.json()
        assert data["expires_in"] == 300
        assert len(data["code"]) == 6

    def test_register_returns_account(self, api_client: TestClient, new_phone: Callable[[], str]) -> None:
        phone = new_phone()
        data = _register(api_client, phone)
        assert data["phone"] == phone
        assert data["handle"] == f"user{phone[-4:]}"
        assert data["has_password"] is True
        assert isinstance(data["account_id"], str)
        assert int(data["account_id"]) > 0
        assert "credential_hash" not in data

    def test_register_duplicate_phone(self, api_client: TestClient, new_phone: Callable[[], str]) -> None:
        phone = new_phone()
        _register(api_client, phone)
        resp = api_client.post(
            "/api/v1/users/register",
            json={"phone": phone, "code": _send_code(api_client, phone)},
        )
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "phone_taken"

    def test_register_wrong_code(self, api_client: TestClient, new_phone: Callable[[], str]) -> None:
        phone = new_phone()
        code = _send_code(api_client, phone)
        wrong = "000000" if code != "000000" else "111111"
        resp = api_client.post("/api/v1/users/register", json={"phone": phone, "code": wrong})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "code_invalid"

    def test_register_without_code_sent(self, api_client: TestClient, new_phone: Callable[[], str]) -> None:
        resp = api_client.post("/api/v1/users/register", json={"phone": new_phone(), "code": "123456"})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "code_expired"

    def test_register_invalid_phone_is_422(self, api_client: TestClient) -> None:
        resp = api_client.post("/api/v1/users/register", json={"phone": "12345", "code": "123456"})
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"


class TestLogin:
    def test_login_by_phone(self, api_client: TestClient, new_phone: Callable[[], str]) -> None:
        phone = new_phone()
        account = _register(api_client, phone)
        resp = api_client.post("/api/v1/users/login", json={"login_key": phone, "password": PASSWORD})
        assert resp.status_code == 200
        data = resp.json()
        assert data["token_type"] == "bearer"
        assert data["expires_in"] == 86400
        assert data["account"]["account_id"] == account["account_id"]
        assert resp.headers["cache-control"] == "no-store"

    def test_login_by_handle(self, api_client: TestClient, new_phone: Callable[[], str]) -> None:
        phone = new_phone()
        account = _register(api_client, phone)
        token = _login(api_client, phone)
        handle = f"h{account['account_id'][-8:]}"
        api_client.patch("/api/v1/users/me", json={"handle": handle}, headers=_auth(token))
        assert _login(api_client, handle)

    def test_login_by_email(self, api_client: TestClient, new_phone: Callable[[], str]) -> None:
        phone = new_phone()
        _register(api_client, phone)
        token = _login(api_client, phone)
        email = f"{phone}@example.com"
        api_client.patch("/api/v1/users/me", json={"email": email}, headers=_auth(token))
        assert _login(api_client, email)

    def test_failures_are_generic(self, api_client: TestClient, new_phone: Callable[[], str]) -> None:
        phone = new_phone()
        _register(api_client, phone)
        bodies = [
            {"login_key": phone, "password": "wrong-password"},
            {"login_key": new_phone(), "password": PASSWORD},
            {"login_key": "nobody@example.com", "password": PASSWORD},
            {"login_key": "no-such-handle", "password": PASSWORD},
        ]
        errors = []
        for body in bodies:
            resp = api_client.post("/api/v1/users/login", json=body)
            assert resp.status_code == 401
            assert resp.headers["cache-control"] == "no-store"
            errors.append(resp.json()["error"])
        assert all(e == errors[0] for e in errors)
        assert errors[0]["code"] == "bad_credentials"

    def test_login_by_code(self, api_client: TestClient, new_phone: Callable[[], str]) -> None:
        phone = new_phone()
        account = _register(api_client, phone, password=None)
        code = _send_code(api_client, phone)
        resp = api_client.post("/api/v1/users/login_by_code", json={"phone": phone, "code": code})
        assert resp.status_code == 200
        assert resp.json()["account"]["account_id"] == account["account_id"]
        assert resp.json()["account"]["has_password"] is False

    def test_login_by_code_unregistered(self, api_client: TestClient, new_phone: Callable[[], str]) -> None:
        phone = new_phone()
        code = _send_code(api_client, phone)
        resp = api_client.post("/api/v1/users/login_by_code", json={"phone": phone, "code": code})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "bad_credentials"


class TestProfile:
    def test_get_me(self, api_client: TestClient, new_phone: Callable[[], str]) -> None:
        phone = new_phone()
        account = _register(api_client, phone)
        resp = api_client.get("/api/v1/users/me", headers=_auth(_login(api_client, phone)))
        assert resp.status_code == 200
        assert resp.json()["account_id"] == account["account_id"]
        assert resp.json()["phone"] == phone

    def test_patch_fields(self, api_client: TestClient, new_phone: Callable[[], str]) -> None:
        phone = new_phone()
        _register(api_client, phone)
        token = _login(api_client, phone)
        resp = api_client.patch(
            "/api/v1/users/me",
            json={"age": 28, "gender": 2, "bio": "hello", "avatar_url": "https://cdn.example.com/me.png"},
            headers=_auth(token),
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["account_id_changed"] is False
        assert data["access_token"] is None
        assert data["account"]["age"] == 28
        assert data["account"]["bio"] == "hello"

    def test_patch_email_conflict(self, api_client: TestClient, new_phone: Callable[[], str]) -> None:
        first, second = new_phone(), new_phone()
        _register(api_client, first)
        _register(api_client, second)
        email = f"shared-{first}@example.com"
        api_client.patch("/api/v1/users/me", json={"email": email}, headers=_auth(_login(api_client, first)))
        resp = api_client.patch("/api/v1/users/me", json={"email": email}, headers=_auth(_login(api_client, second)))
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "email_taken"

    def test_patch_account_id(self, api_client: TestClient, new_phone: Callable[[], str]) -> None:
        phone = new_phone()
        _register(api_client, phone)
        old_token = _login(api_client, phone)
        new_id = next(_new_ids)

        resp = api_client.patch("/api/v1/users/me", json={"account_id": new_id}, headers=_auth(old_token))
        assert resp.status_code == 200
        data = resp.json()
        assert data["account_id_changed"] is True
        assert data["account"]["account_id"] == str(new_id)

        assert api_client.get("/api/v1/users/me", headers=_auth(old_token)).status_code == 401
        me = api_client.get("/api/v1/users/me", headers=_auth(data["access_token"]))
        assert me.json()["account_id"] == str(new_id)

    def test_patch_account_id_taken(self, api_client: TestClient, new_phone: Callable[[], str]) -> None:
        first, second = new_phone(), new_phone()
        taken = _register(api_client, first)["account_id"]
        _register(api_client, second)
        resp = api_client.patch(
            "/api/v1/users/me",
            json={"account_id": int(taken)},
            headers=_auth(_login(api_client, second)),
        )
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "account_id_taken"

    def test_patch_validation(self, api_client: TestClient, new_phone: Callable[[], str]) -> None:
        phone = new_phone()
        _register(api_client, phone)
        token = _login(api_client, phone)
        for body in ({"age": 0}, {"gender": 5}, {"handle": "x"}, {"email": "not-an-email"}, {"bio": "b" * 201}):
            resp = api_client.patch("/api/v1/users/me", json=body, headers=_auth(token))
            assert resp.status_code == 422, body


class TestPassword:
    def test_set_password_then_login(self, api_client: TestClient, new_phone: Callable[[], str]) -> None:
        phone = new_phone()
        _register(api_client, phone, password=None)
        code = _send_code(api_client, phone)
        token = api_client.post("/api/v1/users/login_by_code", json={"phone": phone, "code": code}).json()[
            "access_token"
        ]

        resp = api_client.put("/api/v1/users/me/password", json={"password": "brand-new"}, headers=_auth(token))
        assert resp.status_code == 200
        assert resp.json()["has_password"] is True
        assert _login(api_client, phone, "brand-new")


class TestPhone:
    def test_bind_new_phone_then_login_with_it(self, api_client: TestClient, new_phone: Callable[[], str]) -> None:
        old, new = new_phone(), new_phone()
        _register(api_client, old)
        token = _login(api_client, old)

        resp = api_client.put(
            "/api/v1/users/me/phone",
            json={"phone": new, "code": _send_code(api_client, new)},
            headers=_auth(token),
        )
        assert resp.status_code == 200, resp.text
        assert resp.json()["phone"] == new
        assert _login(api_client, new)
        miss = api_client.post("/api/v1/users/login", json={"login_key": old, "password": PASSWORD})
        assert miss.status_code == 401

    def test_phone_taken(self, api_client: TestClient, new_phone: Callable[[], str]) -> None:
        first, second = new_phone(), new_phone()
        _register(api_client, first)
        _register(api_client, second)
        resp = api_client.put(
            "/api/v1/users/me/phone",
            json={"phone": first, "code": _send_code(api_client, first)},
            headers=_auth(_login(api_client, second)),
        )
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "phone_taken"

    def test_wrong_code(self, api_client: TestClient, new_phone: Callable[[], str]) -> None:
        old, new = new_phone(), new_phone()
        _register(api_client, old)
        code = _send_code(api_client, new)
        wrong = "000000" if code != "000000" else "111111"
        resp = api_client.put(
            "/api/v1/users/me/phone",
            json={"phone": new, "code": wrong},
            headers=_auth(_login(api_client, old)),
        )
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "code_invalid"

    def test_requires_token(self, api_client: TestClient, new_phone: Callable[[], str]) -> None:
        resp = api_client.put("/api/v1/users/me/phone", json={"phone": new_phone(), "code": "123456"})
        assert resp.status_code == 401
        assert resp.headers["www-authenticate"] == "Bearer"

    def test_malformed_phone_is_422(self, api_client: TestClient, new_phone: Callable[[], str]) -> None:
        phone = new_phone()
        _register(api_client, phone)
        resp = api_client.put(
            "/api/v1/users/me/phone",
            json={"phone": "12345", "code": "123456"},
            headers=_auth(_login(api_client, phone)),
        )
        assert resp.status_code == 422
