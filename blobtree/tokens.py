"""
Short-lived download tokens

A token binds a single object key to an expiry time. The payload "path|expires_at" is signed with
HMAC-SHA256 using the server secret and serialized as a compact JWS. Whoever holds the token can
download that one object until it expires; tokens cannot be revoked before that.
"""

import hmac
import time
from typing import Callable

from authlib.common.errors import AuthlibBaseError
from authlib.jose import JsonWebSignature
from typing_extensions import TypedDict

from blobtree.errors import ValidationError
from blobtree.paths import normalize

HEADER = {"alg": "HS256"}


class IssuedToken(TypedDict):
    token: str
    path: str
    expires_at: int


class CapabilityTokens:
    def __init__(self, secret: str, ttl: int = 300, clock: Callable[[], float] = time.time):
        if not secret:
            raise ValueError("A signing secret is required for download tokens")
        if ttl <= 0:
            raise ValueError(f"Token ttl should be positive, got {ttl}")
        self._key = secret.encode("utf-8")
        self._clock = clock
        self._jws = JsonWebSignature(algorithms=["HS256"])
        self.ttl = ttl

    def now(self) -> int:
        """Current time in seconds since epoch"""
        return int(self._clock())

    def _serialize(self, payload: bytes) -> str:
        return self._jws.serialize_compact(HEADER, payload, self._key).decode("ascii")

    def issue(self, path: str) -> IssuedToken:
        """
        Create a token for downloading the object at path
        :param path: the object key the token is bound to
        """
        path = normalize(path)
        if not path:
            raise ValidationError("A path is required to create a download token")
        expires_at = self.now() + self.ttl
        payload = f"{path}|{expires_at}".encode("utf-8")
        return IssuedToken(token=self._serialize(payload), path=path, expires_at=expires_at)

    def verify(self, token: str | None) -> str | None:
        """
        Check the token and return the object key it is bound to
        :return: the path, or None if the token is malformed, tampered with or expired.
                 The reason is deliberately not reported.
        """
        if not token:
            return None
        try:
            payload = self._jws.deserialize_compact(token, self._key)["payload"]
            path, expires_at = payload.decode("utf-8").rsplit("|", 1)
            expiry = int(expires_at)
            # base64 decoding is lenient, so also require the exact encoding that was issued
            canonical = self._serialize(payload).encode("ascii")
            presented = token.encode("utf-8")
        except (AuthlibBaseError, ValueError, TypeError, KeyError):
            return None
        if not hmac.compare_digest(canonical, presented):
            return None
        if expiry < self.now():
            return None
        return path
