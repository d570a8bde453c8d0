import logging

from tasktracker.auth.codec import CredentialCodec
from tasktracker.errors import CredentialError, Unauthorized
from tasktracker.models import Principal
from tasktracker.repositories.identity_store import IdentityStore

logger = logging.getLogger(__name__)

BEARER_PREFIX = "Bearer "


def extract_bearer(authorization: str | None) -> str | None:
    """Token from an `Authorization: Bearer <token>` header value, else None."""
    if not authorization or not authorization.startswith(BEARER_PREFIX):
        return None
    token = authorization[len(BEARER_PREFIX):].strip()
    return token or None


class AuthenticationGate:
    """
    Per-request credential check: Unauthenticated -> Authenticated, once.

    `authenticate` never raises for a bad or missing credential; it resolves
    to no identity and leaves the decision to `require`, which protected
    endpoints call before any business logic runs.
    """

    def __init__(self, codec: CredentialCodec, identities: IdentityStore):
        self.codec = codec
        self.identities = identities

    async def authenticate(self, authorization: str | None) -> Principal | None:
        token = extract_bearer(authorization)
        if token is None:
            return None

        try:
            subject = self.codec.verify(token)
        except CredentialError as e:
            logger.debug(f"Rejected bearer token: {type(e).__name__}")
            return None

        principal = await self.identities.find_by_name(subject)
        if principal is None:
            logger.debug("Bearer token subject no longer exists")
            return None
        return principal

    @staticmethod
    def require(principal: Principal | None) -> Principal:
        if principal is None:
            raise Unauthorized("Authentication required")
        return principal
