import asyncio
import logging
from typing import Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from tasktracker.auth import passwords
from tasktracker.errors import StorageFailure
from tasktracker.models import Principal, User

logger = logging.getLogger(__name__)


class IdentityStore(Protocol):
    async def find_by_name(self, name: str) -> Principal | None: ...

    async def verify_secret(self, plain: str, hashed: str) -> bool: ...


class SqlIdentityStore:
    """IdentityStore over the `users` table. bcrypt work runs off the event loop."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_by_name(self, name: str) -> Principal | None:
        try:
            result = await self.db.exec(select(User).where(User.username == name))
            user = result.first()
        except SQLAlchemyError as e:
            logger.error(f"User lookup failed: {e}")
            raise StorageFailure("user lookup failed") from e
        return Principal.from_user(user) if user else None

    async def verify_secret(self, plain: str, hashed: str) -> bool:
        return await asyncio.to_thread(passwords.verify_secret, plain, hashed)

    async def create_user(
        self, username: str, password: str, email: str, role: str = "USER"
    ) -> Principal:
        hashed = await asyncio.to_thread(passwords.hash_secret, password)
        user = User(username=username, password_hash=hashed, email=email, role=role)
        try:
            self.db.add(user)
            await self.db.commit()
            await self.db.refresh(user)
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"User create failed: {e}")
            raise StorageFailure("user create failed") from e
        return Principal.from_user(user)
