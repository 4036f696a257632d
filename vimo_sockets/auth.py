import asyncio
import logging
from typing import Protocol

import httpx
import jwt
from pydantic import ValidationError

from vimo_sockets.exceptions import AuthError, ConnectionTimeout, ServerConnectionError
from vimo_sockets.helpers import parse_query_string
from vimo_sockets.models.base import UserSioSession
from vimo_sockets.settings import (
    AUTH_BACKEND,
    AUTH_TIMEOUT_SECONDS,
    JWT_ALGORITHM,
    JWT_SECRET,
    USER_SERVICE_URL,
)


class IdentityVerifier(Protocol):
    async def verify(self, token: str) -> UserSioSession:
        ...


def _identity_from_claims(claims: dict) -> UserSioSession:
    user_id = claims.get("user_id") or claims.get("id") or claims.get("sub")
    if not user_id:
        raise AuthError("Token carries no user id.")

    try:
        return UserSioSession(
            user_id=str(user_id),
            username=claims.get("username") or str(user_id),
            profile_picture=claims.get("profile_picture") or claims.get("profilePicture"),
        )
    except ValidationError as e:
        logging.error(f"Error validating identity claims: {e}")
        raise AuthError("Token claims are malformed.")


class JwtIdentityVerifier:
    """Verifies HS256 tokens signed with the shared secret."""

    def __init__(self, secret: str = JWT_SECRET, algorithm: str = JWT_ALGORITHM):
        self.secret = secret
        self.algorithm = algorithm

    async def verify(self, token: str) -> UserSioSession:
        try:
            claims = jwt.decode(token, self.secret, algorithms=[self.algorithm])
        except jwt.exceptions.ExpiredSignatureError:
            raise AuthError("Token has expired.")
        except jwt.exceptions.InvalidTokenError as e:
            logging.info(f"Could not decode token {token[:10]}... Error: {e}")
            raise AuthError("Token is invalid.")

        return _identity_from_claims(claims)


class UserServiceIdentityVerifier:
    """
    Asks the user service who owns the token: ``GET /api/auth/me``.

    A rejected token is an ``AuthError``, an unreachable or failing service is a
    ``ServerConnectionError`` so the caller may retry later.
    """

    def __init__(self, base_url: str = USER_SERVICE_URL,
                 transport: httpx.AsyncBaseTransport | None = None):
        self.base_url = base_url
        self.transport = transport

    async def verify(self, token: str) -> UserSioSession:
        headers = {"Authorization": f"Bearer {token}"}
        try:
            async with httpx.AsyncClient(base_url=self.base_url, transport=self.transport,
                                         timeout=AUTH_TIMEOUT_SECONDS) as client:
                response = await client.get("/api/auth/me", headers=headers)
        except httpx.TimeoutException:
            raise ConnectionTimeout("User service did not answer in time.")
        except httpx.HTTPError as e:
            logging.error(f"User service request failed: {e}")
            raise ServerConnectionError("User service is unreachable.")

        if response.status_code in (401, 403):
            raise AuthError("Token was rejected.")
        if response.status_code != 200:
            logging.error(f"User service answered {response.status_code}: {response.text}")
            raise ServerConnectionError("User service failed to verify the token.")

        body = response.json()
        # the identity may come wrapped in {"user": {...}}
        return _identity_from_claims(body.get("user", body))


def get_identity_verifier() -> IdentityVerifier:
    if AUTH_BACKEND == "user_service":
        return UserServiceIdentityVerifier()
    return JwtIdentityVerifier()


async def authenticate(token: str | None, verifier: IdentityVerifier | None = None,
                       timeout: float = AUTH_TIMEOUT_SECONDS) -> UserSioSession:
    """
    Resolves a token into the identity bound to the connection. Runs once per
    connection, every later room operation trusts only this identity.
    """
    if not token:
        raise AuthError("Token is missing.")

    verifier = verifier or get_identity_verifier()
    try:
        return await asyncio.wait_for(verifier.verify(token), timeout=timeout)
    except asyncio.TimeoutError:
        raise ConnectionTimeout("Authentication timed out.")


def extract_token(environ: dict | None, auth: dict | None) -> str | None:
    """The token comes in the socket.io auth payload, the query string is a fallback."""
    if isinstance(auth, dict) and auth.get("token"):
        return auth["token"]

    if isinstance(environ, dict):
        params = parse_query_string(environ.get("QUERY_STRING", ""))
        return params.get("token")

    return None
