import logging

import httpx
import pytest
from fastapi.testclient import TestClient

from src.api.deps import get_current_user
from src.config import config
from src.config.logger import REQUEST_ID_HEADER
from src.core.dependencies import (
    get_avatar_service,
    get_http_client,
    get_identity_verifier,
    get_redis_client,
)
from src.core.exceptions import IdentityVerificationError
from src.main import app
from src.schemas.user import VerifiedUser

ALICE = VerifiedUser(id="1", username="alice", email="alice@test")


class StubVerifier:
    """Принимает только токен good-token."""

    def __init__(self):
        self.calls = []

    async def verify_token(self, token: str) -> VerifiedUser:
        self.calls.append(token)
        if token != "good-token":
            raise IdentityVerificationError("grpc-status 16: unauthenticated")
        return ALICE

    async def close(self) -> None:
        pass


def remote_handler(request: httpx.Request) -> httpx.Response:
    if request.url.path == "/missing.jpg":
        return httpx.Response(404)
    return httpx.Response(200, content=b"remote-image", headers={"content-type": "image/jpeg"})


@pytest.fixture
def client(avatar_service):
    remote = httpx.AsyncClient(transport=httpx.MockTransport(remote_handler))

    async def override_http_client():
        return remote

    app.dependency_overrides[get_avatar_service] = lambda: avatar_service
    app.dependency_overrides[get_current_user] = lambda: ALICE
    app.dependency_overrides[get_http_client] = override_http_client
    # Без with: lifespan не запускается, внешние подключения не нужны
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth_client(avatar_service, fake_redis):
    verifier = StubVerifier()
    app.dependency_overrides[get_avatar_service] = lambda: avatar_service
    app.dependency_overrides[get_identity_verifier] = lambda: verifier
    app.dependency_overrides[get_redis_client] = lambda: fake_redis
    yield TestClient(app), verifier
    app.dependency_overrides.clear()


def upload(client: TestClient, data: bytes = b"\xff\xd8" * 512, content_type: str = "image/jpeg", **kwargs):
    return client.post("/api/avatar", files={"avatar": ("me.jpg", data, content_type)}, **kwargs)


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.text == "OK"


def test_upload_get_delete_flow(client, storage):
    response = upload(client)
    assert response.status_code == 200
    guid = response.json()["guid"]
    assert storage.objects[guid] == (b"\xff\xd8" * 512, "image/jpeg")

    response = client.get("/api/avatar/me")
    assert response.status_code == 200
    assert guid in response.json()["url"]

    response = client.get("/api/avatar", params={"username": "alice"})
    assert response.status_code == 200

    response = client.get("/api/avatar/me/info")
    assert response.status_code == 200
    assert response.json()["size"] == 1024
    assert response.json()["filename"] == "me.jpg"

    response = client.delete("/api/avatar/me")
    assert response.status_code == 204

    response = client.get("/api/avatar/me")
    assert response.status_code == 404
    assert response.json()["detail"] == "avatar not found for username: alice"

    assert client.delete("/api/avatar/me").status_code == 404


def test_upload_without_file(client):
    response = client.post("/api/avatar")
    assert response.status_code == 400


def test_upload_too_large(client, storage, monkeypatch):
    monkeypatch.setattr(config.app, "max_upload_size", 10)

    response = upload(client, data=b"x" * 11)

    assert response.status_code == 413
    assert storage.calls == []


def test_upload_storage_failure(client, storage):
    storage.fail_on.add("upload")

    response = upload(client)

    assert response.status_code == 500
    assert "failed to upload avatar" in response.json()["detail"]


def test_upload_from_url(client, storage, repository):
    response = client.post("/api/avatar/url", json={"url": "https://cdn.test/photos/face.png"})

    assert response.status_code == 200
    guid = response.json()["guid"]
    assert storage.objects[guid] == (b"remote-image", "image/jpeg")
    assert repository.metadata[guid].filename == "face.png"


def test_upload_from_url_remote_error(client, storage):
    response = client.post("/api/avatar/url", json={"url": "https://cdn.test/missing.jpg"})

    assert response.status_code == 400
    assert storage.calls == []


def test_get_avatar_requires_username(client):
    assert client.get("/api/avatar").status_code == 400


def test_avatars_batch_without_auth(auth_client, storage, repository):
    client, verifier = auth_client
    repository.mappings.update({"a": "g-a", "b": "g-b"})

    response = client.post("/api/avatars", json={"usernames": ["a", "b", "c"]})

    assert response.status_code == 200
    assert set(response.json()) == {"a", "b"}
    assert verifier.calls == []


def test_avatars_batch_empty_list(client):
    assert client.post("/api/avatars", json={"usernames": []}).status_code == 400


@pytest.mark.parametrize("header", ["Bearer good-token", "good-token", '"Bearer good-token"', 'Bearer "good-token"'])
def test_authorization_header_formats(auth_client, header):
    client, verifier = auth_client

    response = upload(client, headers={"Authorization": header})

    assert response.status_code == 200
    assert verifier.calls == ["good-token"]


@pytest.mark.parametrize("headers", [{}, {"Authorization": ""}, {"Authorization": "\"\""}])
def test_missing_token_is_unauthorized(auth_client, storage, headers):
    client, verifier = auth_client

    response = client.get("/api/avatar/me", headers=headers)

    assert response.status_code == 401
    assert verifier.calls == []
    assert storage.calls == []


def test_invalid_token_is_unauthorized(auth_client):
    client, _ = auth_client

    response = client.get("/api/avatar/me", headers={"Authorization": "Bearer bad"})

    assert response.status_code == 401
    assert response.json()["detail"].startswith("Token validation failed")


def test_verified_token_is_cached(auth_client, fake_redis):
    client, verifier = auth_client
    headers = {"Authorization": "Bearer good-token"}

    assert upload(client, headers=headers).status_code == 200
    assert client.get("/api/avatar/me", headers=headers).status_code == 200

    assert verifier.calls == ["good-token"]
    cached = [key for key in fake_redis.data if key.startswith("token:")]
    assert len(cached) == 1
    assert "good-token" not in cached[0]
    assert fake_redis.expires[cached[0]] == config.identity.token_cache_ttl


def test_request_log_carries_request_id_and_user(auth_client, caplog):
    client, _ = auth_client
    caplog.set_level(logging.INFO, logger=config.app.service_name)

    response = client.get(
        "/api/avatar/me",
        headers={"Authorization": "Bearer good-token", REQUEST_ID_HEADER: "req-42"},
    )

    assert response.status_code == 404
    assert response.headers[REQUEST_ID_HEADER] == "req-42"
    completed = [r.getMessage() for r in caplog.records if r.getMessage().startswith("Request completed")]
    assert any("ID: req-42" in message and "User: alice" in message for message in completed)
