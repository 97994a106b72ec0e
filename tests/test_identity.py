import base64

import httpx
import pytest
import pytest_asyncio
import respx

from src.auth.providers.grpc_web import (
    GrpcWebIdentityVerifier,
    encode_frame,
    iter_frames,
    TRAILER_FLAG,
)
from src.auth.proto import TokenRequest, UserResponse
from src.core.exceptions import IdentityVerificationError

BASE_URL = "https://users.test"
VALIDATE_URL = f"{BASE_URL}/user.UserService/ValidateToken"


def user_frame(username: str = "alice", user_id: str = "42", email: str = "a@test") -> bytes:
    return encode_frame(UserResponse(id=user_id, username=username, email=email).SerializeToString())


def trailer_frame(status: int, message: str = "") -> bytes:
    trailers = f"grpc-status:{status}\r\n"
    if message:
        trailers += f"grpc-message:{message}\r\n"
    return encode_frame(trailers.encode(), flags=TRAILER_FLAG)


@pytest_asyncio.fixture
async def verifier():
    client = httpx.AsyncClient()
    yield GrpcWebIdentityVerifier(BASE_URL, client=client)
    await client.aclose()


@pytest.mark.asyncio
@respx.mock
async def test_valid_token_returns_user(verifier):
    route = respx.post(VALIDATE_URL).mock(return_value=httpx.Response(
        200,
        content=user_frame() + trailer_frame(0),
        headers={"content-type": "application/grpc-web+proto"},
    ))

    user = await verifier.verify_token("secret-token")

    assert (user.id, user.username, user.email) == ("42", "alice", "a@test")

    request = route.calls.last.request
    assert request.headers["content-type"] == "application/grpc-web+proto"
    assert request.headers["x-grpc-web"] == "1"
    frames = list(iter_frames(request.content))
    assert len(frames) == 1
    sent = TokenRequest()
    sent.ParseFromString(frames[0][1])
    assert sent.access_token == "secret-token"


@pytest.mark.asyncio
@respx.mock
async def test_text_encoded_response(verifier):
    respx.post(VALIDATE_URL).mock(return_value=httpx.Response(
        200,
        content=base64.b64encode(user_frame(username="bob")),
        headers={"content-type": "application/grpc-web-text+proto"},
    ))

    user = await verifier.verify_token("t")

    assert user.username == "bob"


@pytest.mark.asyncio
@respx.mock
async def test_non_200_rejected(verifier):
    respx.post(VALIDATE_URL).mock(return_value=httpx.Response(503, text="unavailable"))

    with pytest.raises(IdentityVerificationError, match="status 503"):
        await verifier.verify_token("t")


@pytest.mark.asyncio
@respx.mock
async def test_error_status_in_trailer(verifier):
    respx.post(VALIDATE_URL).mock(return_value=httpx.Response(
        200, content=trailer_frame(16, "token%20expired"),
    ))

    with pytest.raises(IdentityVerificationError, match="grpc-status 16: token expired"):
        await verifier.verify_token("t")


@pytest.mark.asyncio
@respx.mock
async def test_trailers_only_response(verifier):
    respx.post(VALIDATE_URL).mock(return_value=httpx.Response(
        200, content=b"", headers={"grpc-status": "7", "grpc-message": "denied"},
    ))

    with pytest.raises(IdentityVerificationError, match="grpc-status 7: denied"):
        await verifier.verify_token("t")


@pytest.mark.asyncio
@respx.mock
async def test_empty_username_rejected(verifier):
    respx.post(VALIDATE_URL).mock(return_value=httpx.Response(200, content=user_frame(username="")))

    with pytest.raises(IdentityVerificationError, match="empty username"):
        await verifier.verify_token("t")


@pytest.mark.asyncio
@respx.mock
async def test_truncated_frame_rejected(verifier):
    respx.post(VALIDATE_URL).mock(return_value=httpx.Response(200, content=user_frame()[:-2]))

    with pytest.raises(IdentityVerificationError, match="incomplete"):
        await verifier.verify_token("t")


@pytest.mark.asyncio
@respx.mock
async def test_transport_error(verifier):
    respx.post(VALIDATE_URL).mock(side_effect=httpx.ConnectError("refused"))

    with pytest.raises(IdentityVerificationError, match="HTTP request failed"):
        await verifier.verify_token("t")
