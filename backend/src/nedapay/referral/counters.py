"""Per-shard counter stores backing referral code generation."""

import threading
from typing import Iterable, Protocol

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError

from nedapay.exceptions import StorageUnavailable
from nedapay.logging_config import get_logger
from nedapay.referral.models import Counter
from nedapay.storage.db import Database

logger = get_logger(__name__)


class CounterStore(Protocol):
    """Anything that can atomically increment a named counter."""

    def increment(self, shard: str) -> int:
        """Increment the counter for ``shard`` and return the new value.

        Raises:
            StorageUnavailable: If the increment could not be applied
        """
        ...


class InMemoryCounterStore:
    """Thread-safe counter store for tests and single-process tools."""

    def __init__(self, initial: dict[str, int] | None = None):
        self._values: dict[str, int] = dict(initial or {})
        self._lock = threading.Lock()

    def increment(self, shard: str) -> int:
        with self._lock:
            value = self._values.get(shard, 0) + 1
            self._values[shard] = value
            return value

    def peek(self, shard: str) -> int:
        with self._lock:
            return self._values.get(shard, 0)


class SqlCounterStore:
    """Counter store on the ``counters`` table.

    The increment is a single ``UPDATE ... SET next_val = next_val + 1``
    read back inside the same transaction, so the row lock serializes
    concurrent callers across processes.
    """

    def __init__(self, database: Database):
        self.database = database

    def increment(self, shard: str) -> int:
        try:
            with self.database.session() as session:
                result = session.execute(
                    update(Counter)
                    .where(Counter.shard == shard)
                    .values(next_val=Counter.next_val + 1)
                )
                if result.rowcount != 1:
                    raise StorageUnavailable(shard, "counter row missing")

                value = session.execute(
                    select(Counter.next_val).where(Counter.shard == shard)
                ).scalar_one()
        except SQLAlchemyError as e:
            logger.error("counter_increment_failed", shard=shard, error=str(e))
            raise StorageUnavailable(shard, str(e)) from e

        return value


def seed_counters(database: Database, shards: Iterable[str] | None = None) -> int:
    """Create missing counter rows, one per shard.

    Existing rows are left untouched so re-running never resets a counter.

    Returns:
        Number of rows created
    """
    if shards is None:
        from nedapay.referral.codes import ALPHABET
        shards = ALPHABET

    wanted = list(dict.fromkeys(shards))

    with database.session() as session:
        existing = set(session.execute(select(Counter.shard)).scalars())
        created = 0
        for shard in wanted:
            if shard not in existing:
                session.add(Counter(shard=shard, next_val=0))
                created += 1

    logger.info("counters_seeded", created=created, total=len(wanted))
    return created
