"""
Tests for registration, login, token refresh and logout
"""

from datetime import timedelta

from conftest import PASSWORD, auth_headers
from tourbook.core import security
from tourbook.core.settings import get_settings

settings = get_settings()


def test_password_policy():
    assert security.validate_password_strength("Password123")["is_valid"]

    result = security.validate_password_strength("password")
    assert not result["is_valid"]
    assert "Password must contain at least one uppercase letter" in result["errors"]
    assert "Password must contain at least one number" in result["errors"]


def test_token_round_trip():
    token = security.create_access_token({"sub": "abc"})
    assert security.decode_token(token, "access") == "abc"
    # An access token is not a refresh token
    assert security.decode_token(token, "refresh") is None


def test_expired_token_is_rejected():
    token = security.create_access_token({"sub": "abc"}, expires_delta=timedelta(seconds=-1))
    assert security.decode_token(token) is None


def test_password_hashing():
    hashed = security.get_password_hash(PASSWORD)
    assert security.verify_password(PASSWORD, hashed)
    assert not security.verify_password("Wrong123", hashed)
    assert not security.verify_password(PASSWORD, "not-a-hash")


async def test_register(client, engine):
    response = await client.post("/api/auth/register", json={
        "email": "New.User@Example.com",
        "password": "Password123",
        "full_name": "New User",
        "country": "Sri Lanka",
    })
    assert response.status_code == 201
    data = response.json()["data"]
    assert data["email"] == "new.user@example.com"
    assert data["user_type"] == "tourist"
    assert "password_hash" not in data


async def test_register_weak_password(client, engine):
    response = await client.post("/api/auth/register", json={
        "email": "weak@example.com",
        "password": "password1",
        "full_name": "Weak Password",
    })
    assert response.status_code == 400
    assert "uppercase" in response.json()["error"]


async def test_register_duplicate_email(client, tourist):
    response = await client.post("/api/auth/register", json={
        "email": tourist.email,
        "password": "Password123",
        "full_name": "Copy Cat",
    })
    assert response.status_code == 409
    assert response.json()["error"] == "Email already registered"


async def test_login_sets_cookie(client, tourist):
    response = await client.post("/api/auth/login", json={"email": tourist.email, "password": PASSWORD})
    assert response.status_code == 200

    data = response.json()["data"]
    assert data["token_type"] == "bearer"
    assert data["refresh_token"]
    assert response.cookies.get(settings.SESSION_COOKIE_NAME) == data["access_token"]

    # The cookie alone is enough to authenticate
    response = await client.get("/api/auth/me")
    assert response.status_code == 200
    assert response.json()["data"]["email"] == tourist.email


async def test_login_wrong_password(client, tourist):
    response = await client.post("/api/auth/login", json={"email": tourist.email, "password": "Wrong123"})
    assert response.status_code == 401
    assert response.json()["error"] == "Invalid email or password"


async def test_me_with_bearer(client, admin):
    response = await client.get("/api/auth/me", headers=auth_headers(admin))
    assert response.json()["data"]["user_type"] == "admin"


async def test_me_with_garbage_token(client, engine):
    response = await client.get("/api/auth/me", headers={"Authorization": "Bearer not.a.token"})
    assert response.status_code == 401


async def test_refresh(client, tourist):
    refresh_token = security.create_refresh_token({"sub": str(tourist.id)})
    response = await client.post("/api/auth/refresh", json={"refresh_token": refresh_token})
    assert response.status_code == 200

    access_token = response.json()["data"]["access_token"]
    assert security.decode_token(access_token) == str(tourist.id)


async def test_refresh_rejects_access_token(client, tourist):
    access_token = security.create_access_token({"sub": str(tourist.id)})
    response = await client.post("/api/auth/refresh", json={"refresh_token": access_token})
    assert response.status_code == 401


async def test_logout_blacklists_token(client, tourist):
    headers = auth_headers(tourist)
    response = await client.post("/api/auth/logout", headers=headers)
    assert response.status_code == 200
    assert response.json()["message"] == "Successfully logged out"

    response = await client.get("/api/auth/me", headers=headers)
    assert response.status_code == 401
