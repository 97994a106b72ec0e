import base64
import logging
import struct
from typing import Dict, Iterator, Optional, Tuple
from urllib.parse import unquote

import httpx
from google.protobuf.message import DecodeError

from src.auth.base import IdentityVerifier
from src.auth.proto import SERVICE, TokenRequest, UserResponse
from src.core.exceptions import IdentityVerificationError
from src.schemas.user import VerifiedUser

logger = logging.getLogger(__name__)

# Формат кадра gRPC-Web: [flags:1 byte][length:4 bytes BE][message]
FRAME_HEADER = struct.Struct(">BI")
TRAILER_FLAG = 0x80

GRPC_WEB_HEADERS = {
    "Content-Type": "application/grpc-web+proto",
    "Accept": "application/grpc-web+proto",
    "X-Grpc-Web": "1",
    "X-User-Agent": "grpc-web-python/1.0",
}


def encode_frame(message: bytes, flags: int = 0) -> bytes:
    return FRAME_HEADER.pack(flags, len(message)) + message


def iter_frames(data: bytes) -> Iterator[Tuple[int, bytes]]:
    """Разбирает тело ответа на кадры (flags, payload)."""
    offset = 0
    while offset < len(data):
        if len(data) - offset < FRAME_HEADER.size:
            raise IdentityVerificationError(f"response too short: {len(data) - offset} bytes")
        flags, length = FRAME_HEADER.unpack_from(data, offset)
        offset += FRAME_HEADER.size
        if len(data) - offset < length:
            raise IdentityVerificationError(
                f"response incomplete: expected {length} bytes, got {len(data) - offset}"
            )
        yield flags, data[offset:offset + length]
        offset += length


def parse_trailers(payload: bytes) -> Dict[str, str]:
    trailers = {}
    for line in payload.decode("utf-8", errors="replace").split("\r\n"):
        if ":" not in line:
            continue
        key, value = line.split(":", 1)
        trailers[key.strip().lower()] = value.strip()
    return trailers


def check_grpc_status(values) -> None:
    status = values.get("grpc-status")
    if status is not None and status != "0":
        message = unquote(values.get("grpc-message", ""))
        raise IdentityVerificationError(f"grpc-status {status}" + (f": {message}" if message else ""))


def _mask(token: str) -> str:
    return f"{token[:min(8, len(token))]}... (length: {len(token)})"


class GrpcWebIdentityVerifier(IdentityVerifier):
    """Проверка токенов через user.UserService/ValidateToken по gRPC-Web."""

    def __init__(self, base_url: str, timeout: float = 10.0, client: Optional[httpx.AsyncClient] = None):
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout)
        logger.info(f"gRPC-Web identity client created for {self.base_url}")

    async def close(self) -> None:
        await self._client.aclose()

    async def verify_token(self, token: str) -> VerifiedUser:
        logger.debug(f"Validating token {_mask(token)}")
        request = TokenRequest(access_token=token)
        url = f"{self.base_url}/{SERVICE}/ValidateToken"

        try:
            response = await self._client.post(
                url,
                content=encode_frame(request.SerializeToString()),
                headers=GRPC_WEB_HEADERS,
            )
        except httpx.HTTPError as e:
            logger.error(f"gRPC-Web request to {url} failed: {e}")
            raise IdentityVerificationError(f"HTTP request failed: {e}") from e

        if response.status_code != 200:
            logger.warning(f"gRPC-Web non-200 status {response.status_code}: {response.text[:200]}")
            raise IdentityVerificationError(
                f"gRPC-Web request failed with status {response.status_code}: {response.text[:200]}"
            )

        # Trailers-only ответ: статус приходит в заголовках
        check_grpc_status({k.lower(): v for k, v in response.headers.items()})

        body = response.content
        if "application/grpc-web-text" in response.headers.get("content-type", ""):
            try:
                body = base64.b64decode(body, validate=False)
            except ValueError as e:
                raise IdentityVerificationError(f"failed to decode base64 response: {e}") from e

        message: Optional[bytes] = None
        for flags, payload in iter_frames(body):
            if flags & TRAILER_FLAG:
                check_grpc_status(parse_trailers(payload))
            elif message is None:
                message = payload

        if message is None:
            raise IdentityVerificationError("response contains no message")

        user_response = UserResponse()
        try:
            user_response.ParseFromString(message)
        except DecodeError as e:
            raise IdentityVerificationError(f"failed to unmarshal response: {e}") from e

        if not user_response.username:
            raise IdentityVerificationError("user service returned empty username")

        logger.debug(f"Token validated for user {user_response.username} (id={user_response.id})")
        return VerifiedUser(id=user_response.id, username=user_response.username, email=user_response.email)
