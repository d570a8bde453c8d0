"""FastAPI wiring: one store/service set per request, process-wide codec and cache."""

from datetime import timedelta
from functools import lru_cache

from fastapi import Depends, Header
from sqlmodel.ext.asyncio.session import AsyncSession
from typing_extensions import Annotated

from tasktracker.auth.codec import CredentialCodec
from tasktracker.auth.gate import AuthenticationGate
from tasktracker.auth.service import AuthService
from tasktracker.cache.layer import ResponseCache, response_cache
from tasktracker.core.config import get_settings
from tasktracker.database import get_db
from tasktracker.models import Principal
from tasktracker.repositories.identity_store import IdentityStore, SqlIdentityStore
from tasktracker.repositories.task_store import SqlTaskStore, TaskStore
from tasktracker.services.advisory import AdvisoryService
from tasktracker.services.task_service import TaskService


@lru_cache
def get_codec() -> CredentialCodec:
    settings = get_settings()
    return CredentialCodec(settings.jwt_secret, settings.jwt_algorithm)


def get_cache() -> ResponseCache:
    return response_cache


@lru_cache
def get_advisory() -> AdvisoryService:
    return AdvisoryService.from_settings(get_settings())


def get_identity_store(db: AsyncSession = Depends(get_db)) -> IdentityStore:
    return SqlIdentityStore(db)


def get_task_store(db: AsyncSession = Depends(get_db)) -> TaskStore:
    return SqlTaskStore(db)


def get_gate(
    codec: CredentialCodec = Depends(get_codec),
    identities: IdentityStore = Depends(get_identity_store),
) -> AuthenticationGate:
    return AuthenticationGate(codec, identities)


async def get_current_principal(
    authorization: str | None = Header(default=None),
    gate: AuthenticationGate = Depends(get_gate),
) -> Principal | None:
    """Resolved once per request; FastAPI caches the result for the request's lifetime."""
    return await gate.authenticate(authorization)


def require_principal(
    principal: Principal | None = Depends(get_current_principal),
) -> Principal:
    return AuthenticationGate.require(principal)


def get_auth_service(
    identities: IdentityStore = Depends(get_identity_store),
    codec: CredentialCodec = Depends(get_codec),
) -> AuthService:
    ttl = timedelta(seconds=get_settings().jwt_ttl_seconds)
    return AuthService(identities, codec, token_ttl=ttl)


def get_task_service(
    store: TaskStore = Depends(get_task_store),
    cache: ResponseCache = Depends(get_cache),
) -> TaskService:
    return TaskService(store, cache)


CurrentPrincipal = Annotated[Principal, Depends(require_principal)]
TaskServiceDep = Annotated[TaskService, Depends(get_task_service)]
AdvisoryDep = Annotated[AdvisoryService, Depends(get_advisory)]
