import logging
from datetime import timedelta

from tasktracker.auth import passwords
from tasktracker.auth.codec import CredentialCodec
from tasktracker.errors import InvalidCredentials
from tasktracker.models import LoginResponse
from tasktracker.repositories.identity_store import IdentityStore

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_TTL = timedelta(hours=24)


class AuthService:
    def __init__(
        self,
        identities: IdentityStore,
        codec: CredentialCodec,
        token_ttl: timedelta = DEFAULT_TOKEN_TTL,
    ):
        self.identities = identities
        self.codec = codec
        self.token_ttl = token_ttl

    async def login(self, username: str, password: str) -> LoginResponse:
        """
        Exchange a name/secret pair for a bearer token.

        Unknown user and wrong secret raise the same InvalidCredentials; an
        unknown user still pays for one hash check against a dummy hash.
        """
        principal = await self.identities.find_by_name(username)
        hashed = principal.secret_hash if principal else passwords.dummy_hash()
        matched = await self.identities.verify_secret(password, hashed)

        if principal is None or not matched:
            logger.info("Login rejected")
            raise InvalidCredentials()

        token = self.codec.issue(principal.name, self.token_ttl)
        logger.info(f"Issued token for principal {principal.id}")
        return LoginResponse(token=token, username=principal.name, email=principal.email)
