"""Storage contracts consumed by the reconciler, orchestrator and scheduler.

``StepStorage.transaction(user_id)`` is the commit boundary for one user:
while it is open, no other transaction for the same user can run, and
everything written through the yielded storage commits or rolls back
together.  Transactions for different users never wait on each other.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from datetime import date
from uuid import UUID

from steptrack.steps.base import DailyStepRecord, User


class UserDirectory(ABC):
    """Users, their credentials and their running step totals."""

    @abstractmethod
    async def find_one(self, user_id: UUID) -> User:
        """Return the user.

        Raises:
            NotFound: If no such user exists.
        """

    @abstractmethod
    async def find_by_email(self, email: str) -> User | None: ...

    @abstractmethod
    async def find_by_external_id(self, external_id: str) -> User | None: ...

    @abstractmethod
    async def find_users_with_refresh_credential(self) -> list[User]:
        """Users holding a non-empty refresh token, i.e. eligible for sync."""

    @abstractmethod
    async def save(self, user: User) -> User:
        """Insert or update a user's profile and credentials.

        ``total_steps`` of an existing user is never written here; only
        ``add_to_total`` and ``recompute_total`` change it.

        Raises:
            ValueError: If the email or external id belongs to another user.
        """

    @abstractmethod
    async def add_to_total(self, user_id: UUID, delta: int) -> User:
        """Add ``delta`` (possibly negative) to the running total.

        Raises:
            NotFound: If no such user exists.
        """

    @abstractmethod
    async def recompute_total(self, user_id: UUID) -> User:
        """Repair: set the total to the sum of the user's daily records.

        Raises:
            NotFound: If no such user exists.
        """

    @abstractmethod
    async def leaderboard(self, limit: int = 100) -> list[User]:
        """Users ordered by total steps, highest first."""


class StepRecordStore(ABC):
    """Per-user, per-day step records."""

    @abstractmethod
    async def find_by_user_and_date(
        self, user_id: UUID, day: date
    ) -> DailyStepRecord | None: ...

    @abstractmethod
    async def save(self, record: DailyStepRecord) -> DailyStepRecord:
        """Insert or update the record for ``(record.user_id, record.day)``."""

    @abstractmethod
    async def find_all_by_user(self, user_id: UUID) -> list[DailyStepRecord]:
        """All of a user's records, newest day first."""


class StepStorage(ABC):
    """A user directory and a record store sharing one transaction model."""

    users: UserDirectory
    records: StepRecordStore

    @abstractmethod
    def transaction(self, user_id: UUID) -> AbstractAsyncContextManager[StepStorage]:
        """Serialize and atomically commit writes for one user.

        Usage::

            async with storage.transaction(user_id) as tx:
                existing = await tx.records.find_by_user_and_date(user_id, day)
                ...
                await tx.users.add_to_total(user_id, delta)
        """
