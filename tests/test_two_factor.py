"""Tests for two-factor enrollment, login and removal."""

from datetime import timedelta, timezone

import pyotp
import pytest
from fastapi.testclient import TestClient

from app.errors import InvalidTwoFactorCode, NoPendingSetup, ValidationError
from app.services.credential_store import CredentialStore
from app.services.password import hash_password
from app.services.two_factor import PendingSecretStore, TwoFactorService, verify_totp


def code_for(secret: str, clock) -> str:
    return pyotp.TOTP(secret).at(clock.now.replace(tzinfo=timezone.utc))


def auth_header(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture(name="user")
def user_fixture(store: CredentialStore):
    return store.create("alice", "alice@x.com", hash_password("Str0ng!Pass"))


class TestVerifyTotp:
    """Tests for the code check and its tolerance window."""

    def test_current_code(self, clock):
        secret = pyotp.random_base32()
        assert verify_totp(secret, code_for(secret, clock), clock.now, valid_window=2)

    def test_two_steps_either_side_accepted(self, clock):
        secret = pyotp.random_base32()
        totp = pyotp.TOTP(secret)
        at = clock.now.replace(tzinfo=timezone.utc)
        assert verify_totp(secret, totp.at(at, counter_offset=2), clock.now, valid_window=2)
        assert verify_totp(secret, totp.at(at, counter_offset=-2), clock.now, valid_window=2)

    def test_three_steps_rejected(self, clock):
        secret = pyotp.random_base32()
        totp = pyotp.TOTP(secret)
        at = clock.now.replace(tzinfo=timezone.utc)
        code = totp.at(at, counter_offset=3)
        # skip the rare collision with an in-window code
        window = {totp.at(at, counter_offset=i) for i in range(-2, 3)}
        if code not in window:
            assert not verify_totp(secret, code, clock.now, valid_window=2)

    def test_non_numeric_code(self, clock):
        assert not verify_totp(pyotp.random_base32(), "abcdef", clock.now, valid_window=2)


class TestPendingSecretStore:
    """Tests for the session-keyed pending secret map."""

    def test_bound_to_user(self, clock):
        pending = PendingSecretStore(ttl=timedelta(minutes=10))
        pending.put("sid", 1, "SECRET", clock.now)
        assert pending.get("sid", 1, clock.now) == "SECRET"
        assert pending.get("sid", 2, clock.now) is None
        assert pending.get("other", 1, clock.now) is None

    def test_expires(self, clock):
        pending = PendingSecretStore(ttl=timedelta(minutes=10))
        pending.put("sid", 1, "SECRET", clock.now)
        assert pending.get("sid", 1, clock.now + timedelta(minutes=10)) is None
        assert len(pending) == 0


class TestTwoFactorService:
    """Tests for setup confirmation and disabling."""

    def test_begin_setup_does_not_touch_user(self, two_factor_service: TwoFactorService, store, user):
        setup = two_factor_service.begin_setup(user, "sid")
        assert len(setup.secret) == 32
        assert setup.provisioning_uri.startswith("otpauth://totp/")
        assert "issuer=MindMaps" in setup.provisioning_uri
        assert setup.qr_code.startswith("data:image/png;base64,")
        stored = store.get(user.id)
        assert stored.two_factor_enabled is False
        assert stored.two_factor_secret is None

    def test_confirm_without_setup(self, two_factor_service: TwoFactorService, store, user):
        with pytest.raises(NoPendingSetup):
            two_factor_service.confirm_setup(store, user, "sid", "123456")
        with pytest.raises(NoPendingSetup):
            two_factor_service.confirm_setup(store, user, None, "123456")

    def test_confirm_with_code_from_other_secret(self, two_factor_service: TwoFactorService, store, user, clock):
        setup = two_factor_service.begin_setup(user, "sid")
        other = pyotp.random_base32()
        code = code_for(other, clock)
        if code == code_for(setup.secret, clock):
            pytest.skip("codes collided")
        with pytest.raises(InvalidTwoFactorCode, match="Invalid verification code"):
            two_factor_service.confirm_setup(store, user, "sid", code)
        assert store.get(user.id).two_factor_enabled is False

    def test_confirm_commits_secret(self, two_factor_service: TwoFactorService, store, user, clock, pending):
        setup = two_factor_service.begin_setup(user, "sid")
        two_factor_service.confirm_setup(store, user, "sid", code_for(setup.secret, clock))
        stored = store.get(user.id)
        assert stored.two_factor_enabled is True
        assert stored.two_factor_secret == setup.secret
        assert len(pending) == 0

    def test_pending_secret_not_shared_across_sessions(self, two_factor_service, store, user, clock):
        setup = two_factor_service.begin_setup(user, "sid-a")
        with pytest.raises(NoPendingSetup):
            two_factor_service.confirm_setup(store, user, "sid-b", code_for(setup.secret, clock))

    def test_expired_setup(self, two_factor_service: TwoFactorService, store, user, clock):
        setup = two_factor_service.begin_setup(user, "sid")
        clock.advance(minutes=11)
        with pytest.raises(NoPendingSetup):
            two_factor_service.confirm_setup(store, user, "sid", code_for(setup.secret, clock))

    def test_disable_requires_password(self, two_factor_service: TwoFactorService, store, user):
        store.set_two_factor(user.id, pyotp.random_base32(), enabled=True)
        with pytest.raises(ValidationError, match="Invalid password"):
            two_factor_service.disable(store, store.get(user.id), "wrongpass")
        assert store.get(user.id).two_factor_enabled is True

        two_factor_service.disable(store, store.get(user.id), "Str0ng!Pass")
        stored = store.get(user.id)
        assert stored.two_factor_enabled is False
        assert stored.two_factor_secret is None


class TestTwoFactorApi:
    """End-to-end 2FA flow over HTTP."""

    def _enable(self, client: TestClient, token: str, clock) -> str:
        setup = client.post("/api/auth/2fa/setup", headers=auth_header(token))
        assert setup.status_code == 200
        secret = setup.json()["data"]["secret"]
        response = client.post(
            "/api/auth/2fa/verify",
            json={"token": code_for(secret, clock)},
            headers=auth_header(token),
        )
        assert response.status_code == 200
        return secret

    def test_setup_returns_qr(self, client: TestClient, test_user: dict):
        response = client.post("/api/auth/2fa/setup", headers=auth_header(test_user["token"]))
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["qrCode"].startswith("data:image/png;base64,")
        assert data["manualEntryKey"] == data["secret"]
        assert "mm_2fa_session" in response.cookies

    def test_setup_requires_auth(self, client: TestClient):
        assert client.post("/api/auth/2fa/setup").status_code == 401

    def test_verify_without_setup(self, client: TestClient, test_user: dict):
        response = client.post("/api/auth/2fa/verify", json={"code": "123456"}, headers=auth_header(test_user["token"]))
        assert response.status_code == 400
        assert "No setup session" in response.json()["message"]

    def test_verify_missing_code(self, client: TestClient, test_user: dict):
        response = client.post("/api/auth/2fa/verify", json={}, headers=auth_header(test_user["token"]))
        assert response.status_code == 400
        assert response.json()["message"] == "Verification code is required"

    def test_login_requires_code_once_enabled(self, client: TestClient, test_user: dict, clock):
        secret = self._enable(client, test_user["token"], clock)

        response = client.post("/api/auth/login", json={"username": "alice", "password": test_user["password"]})
        assert response.status_code == 200
        body = response.json()
        assert body["requiresTwoFactor"] is True
        assert body["userId"] == test_user["user_id"]
        assert "data" not in body

        response = client.post(
            "/api/auth/login",
            json={"username": "alice", "password": test_user["password"], "twoFactorCode": "000000"},
        )
        if response.status_code == 200:
            pytest.skip("000000 happened to be valid")
        assert response.status_code == 400
        assert response.json()["message"] == "Invalid two-factor authentication code"

        response = client.post(
            "/api/auth/login",
            json={"username": "alice", "password": test_user["password"], "twoFactorCode": code_for(secret, clock)},
        )
        assert response.status_code == 200
        assert "token" in response.json()["data"]

    def test_disable(self, client: TestClient, test_user: dict, clock):
        self._enable(client, test_user["token"], clock)

        response = client.post(
            "/api/auth/2fa/disable", json={"password": "wrongpass"}, headers=auth_header(test_user["token"])
        )
        assert response.status_code == 400
        assert response.json()["message"] == "Invalid password"

        response = client.post("/api/auth/2fa/disable", json={}, headers=auth_header(test_user["token"]))
        assert response.status_code == 400

        response = client.post(
            "/api/auth/2fa/disable", json={"password": test_user["password"]}, headers=auth_header(test_user["token"])
        )
        assert response.status_code == 200

        response = client.post("/api/auth/login", json={"username": "alice", "password": test_user["password"]})
        assert "token" in response.json()["data"]

    def test_logout_drops_pending_setup(self, client: TestClient, test_user: dict, pending):
        client.post("/api/auth/2fa/setup", headers=auth_header(test_user["token"]))
        assert len(pending) == 1
        response = client.post("/api/auth/logout", headers=auth_header(test_user["token"]))
        assert response.status_code == 200
        assert len(pending) == 0
