import asyncio

import httpx
import jwt
import pytest

from vimo_sockets.auth import (
    authenticate, extract_token, JwtIdentityVerifier, UserServiceIdentityVerifier,
)
from vimo_sockets.exceptions import AuthError, ConnectionTimeout, ServerConnectionError
from vimo_sockets.models.base import UserSioSession
from vimo_sockets.settings import JWT_SECRET
from tests.test_helper import TestHelper


class SlowVerifier:
    async def verify(self, token: str) -> UserSioSession:
        await asyncio.sleep(1)
        return TestHelper.make_identity("late")


def test_jwt_token_resolves_identity():
    token = TestHelper.make_token("user-1", "alice", profilePicture="https://img/alice.png")

    identity = asyncio.run(authenticate(token, JwtIdentityVerifier()))

    assert identity.user_id == "user-1"
    assert identity.username == "alice"
    assert identity.profile_picture == "https://img/alice.png"
    assert identity.room_code is None


def test_sub_claim_is_accepted():
    token = jwt.encode({"sub": "user-7", "username": "dave"}, JWT_SECRET, algorithm="HS256")

    identity = asyncio.run(authenticate(token, JwtIdentityVerifier()))

    assert identity.user_id == "user-7"


@pytest.mark.parametrize("token", [
    None,
    "",
    "not-a-jwt",
    TestHelper.make_token("user-1", secret="another-secret"),
    TestHelper.make_token("user-1", expires_in=-60),
])
def test_bad_tokens_are_refused(token):
    with pytest.raises(AuthError):
        asyncio.run(authenticate(token, JwtIdentityVerifier()))


def test_authentication_is_bounded_by_timeout():
    with pytest.raises(ConnectionTimeout):
        asyncio.run(authenticate("token", SlowVerifier(), timeout=0.05))


def test_extract_token_prefers_auth_payload():
    environ = {"QUERY_STRING": "EIO=4&transport=websocket&token=from-query"}

    assert extract_token(environ, {"token": "from-auth"}) == "from-auth"
    assert extract_token(environ, None) == "from-query"
    assert extract_token({"QUERY_STRING": ""}, {}) is None


def _user_service(handler) -> UserServiceIdentityVerifier:
    return UserServiceIdentityVerifier("http://users.test", transport=httpx.MockTransport(handler))


def test_user_service_verifier():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/auth/me"
        assert request.headers["Authorization"] == "Bearer good-token"
        return httpx.Response(200, json={"user": {"id": "user-3", "username": "carol"}})

    identity = asyncio.run(authenticate("good-token", _user_service(handler)))

    assert identity.user_id == "user-3"
    assert identity.username == "carol"


def test_user_service_rejection_is_auth_error():
    verifier = _user_service(lambda request: httpx.Response(401, json={"detail": "nope"}))

    with pytest.raises(AuthError):
        asyncio.run(authenticate("bad-token", verifier))


def test_user_service_timeout():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("too slow", request=request)

    with pytest.raises(ConnectionTimeout):
        asyncio.run(authenticate("token", _user_service(handler)))


def test_user_service_failure_is_retryable():
    verifier = _user_service(lambda request: httpx.Response(502, text="bad gateway"))

    with pytest.raises(ServerConnectionError) as e:
        asyncio.run(authenticate("token", verifier))

    assert not isinstance(e.value, AuthError)
