"""SQLite database shared by the durable project store and credit ledger.

Every ``kroma`` command is its own process, so durable state lives in one
database file whose transactions serialize writers across processes.
"""

import contextlib
import logging
import sqlite3
from pathlib import Path
from typing import Iterator, Union

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS projects (
    id TEXT PRIMARY KEY,
    data TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS credits (
    user_id TEXT PRIMARY KEY,
    balance INTEGER NOT NULL CHECK (balance >= 0)
);
"""

# Seconds a writer waits for another process to release the database
BUSY_TIMEOUT = 30.0


class StudioDB:
    """Connections and write transactions on the studio database file."""

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.connect() as conn:
            conn.executescript(SCHEMA)
        logger.debug(f"Opened studio database {self.path}")

    @contextlib.contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        # Autocommit; write transactions are opened explicitly by transaction()
        conn = sqlite3.connect(str(self.path), timeout=BUSY_TIMEOUT, isolation_level=None)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    @contextlib.contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Hold the database write lock for the duration of the block.

        Reads inside the block see the current committed state and no other
        process can write until it exits. Commits on success, rolls back if
        the block raises.
        """
        with self.connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
