"""Step storage backends.

Modules:
    base     — UserDirectory / StepRecordStore / StepStorage contracts
    memory   — In-process backend (tests, local development)
    postgres — asyncpg backend with row-level locking
"""

from steptrack.steps.storage.base import StepRecordStore, StepStorage, UserDirectory
from steptrack.steps.storage.memory import MemoryStepStorage
from steptrack.steps.storage.postgres import PostgresStepStorage

__all__ = [
    "StepStorage",
    "UserDirectory",
    "StepRecordStore",
    "MemoryStepStorage",
    "PostgresStepStorage",
]
