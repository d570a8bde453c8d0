import binascii
import json
import logging
import math
from datetime import datetime, timedelta, timezone
from typing import Callable

import jwt
from jwt.utils import base64url_decode

from tasktracker.errors import ExpiredCredential, InvalidSignature, MalformedCredential
from tasktracker.models import get_utc_now

logger = logging.getLogger(__name__)

REQUIRED_CLAIMS = ["sub", "iat", "exp"]


def _signed_part_is_readable(token: str) -> bool:
    """True when header and payload decode to JSON objects, so only the signature is bad."""
    segments = token.split(".")
    if len(segments) != 3:
        return False
    try:
        parts = [json.loads(base64url_decode(s)) for s in segments[:2]]
    except (ValueError, TypeError, binascii.Error):
        return False
    return all(isinstance(part, dict) for part in parts)


class CredentialCodec:
    """
    Issues and verifies signed, time-bounded bearer tokens (compact JWS).

    Token layout: header.payload.signature, base64url, HMAC signed with a
    key fixed at construction. Payload claims: sub (principal name),
    iat and exp (seconds since epoch).

    Expiry is checked against the injected clock rather than the library's
    own, so verification is a pure function of (token, now).
    """

    def __init__(
        self,
        secret: str,
        algorithm: str = "HS256",
        clock: Callable[[], datetime] = get_utc_now,
    ):
        if not secret:
            raise ValueError("signing key must not be empty")
        self._key = secret.encode("utf-8")
        self._algorithm = algorithm
        self._clock = clock

    def issue(self, subject: str, ttl: timedelta) -> str:
        issued_at = self._clock()
        claims = {
            "sub": subject,
            "iat": int(issued_at.timestamp()),
            # rounded up so a token never dies before its full ttl
            "exp": math.ceil((issued_at + ttl).timestamp()),
        }
        return jwt.encode(claims, self._key, algorithm=self._algorithm)

    def verify(self, token: str) -> str:
        """
        Return the token's subject.

        Raises MalformedCredential, InvalidSignature or ExpiredCredential.
        The signature is checked first; a correctly signed token past its
        exp still fails.
        """
        try:
            claims = jwt.decode(
                token,
                self._key,
                algorithms=[self._algorithm],
                options={"verify_exp": False, "verify_iat": False, "require": REQUIRED_CLAIMS},
            )
        except jwt.InvalidSignatureError as e:
            raise InvalidSignature("token signature mismatch") from e
        except jwt.DecodeError as e:
            if _signed_part_is_readable(token):
                raise InvalidSignature(f"token signature unreadable: {e}") from e
            raise MalformedCredential(f"undecodable token: {e}") from e
        except jwt.InvalidTokenError as e:
            raise MalformedCredential(f"undecodable token: {e}") from e

        subject = claims["sub"]
        expires_at = claims["exp"]
        if not isinstance(subject, str) or not subject or not isinstance(expires_at, int):
            raise MalformedCredential("token claims have the wrong shape")

        now = self._clock()
        if now > datetime.fromtimestamp(expires_at, tz=timezone.utc):
            raise ExpiredCredential(f"token expired at {expires_at}")
        return subject
