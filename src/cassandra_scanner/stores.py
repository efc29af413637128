"""
Checkpoint storage backends.

A CheckpointStore is a plain key/value store with prefix lookup. Values are
opaque bytes; an empty value stands for "no checkpoint".
"""

import logging
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional

import lmdb

logger = logging.getLogger(__name__)


class CheckpointStore(ABC):
    """Abstract interface for checkpoint storage."""

    @abstractmethod
    def load(self, key: str) -> Optional[bytes]:
        """Return the value stored under ``key``, or None"""
        pass

    @abstractmethod
    def load_prefix(self, prefix: str) -> Dict[str, bytes]:
        """Return every key/value pair whose key starts with ``prefix``"""
        pass

    @abstractmethod
    def store(self, key: str, value: bytes) -> None:
        """Store ``value`` under ``key``, replacing any previous value"""
        pass


class MemoryStore(CheckpointStore):
    """Process local store, mostly useful for tests and short lived scans."""

    def __init__(self):
        self._lock = threading.Lock()
        self._data: Dict[str, bytes] = {}

    def load(self, key: str) -> Optional[bytes]:
        with self._lock:
            return self._data.get(key)

    def load_prefix(self, prefix: str) -> Dict[str, bytes]:
        with self._lock:
            return {k: v for k, v in self._data.items() if k.startswith(prefix)}

    def store(self, key: str, value: bytes) -> None:
        with self._lock:
            self._data[key] = value


class LMDBStore(CheckpointStore):
    """
    Embedded file store backed by LMDB.

    Keys are UTF-8 encoded scan ids. LMDB keeps keys sorted, so a prefix
    lookup is a cursor seek followed by a forward walk.
    """

    env: lmdb.Environment

    def __init__(
        self,
        path: str = '.cassandra_scan_state',
        map_size: int = 64 * 1024 * 1024,
        sync: bool = True,
    ):
        """
        Open (or create) the store.

        Args:
            path: Directory holding the LMDB files
            map_size: Maximum database size in bytes (default: 64MB)
            sync: Whether to sync writes to disk (True for durability, False for speed)
        """
        self.path = Path(path)
        self.path.mkdir(parents=True, exist_ok=True)
        self.env = lmdb.open(str(self.path), map_size=map_size, sync=sync)
        logger.info(f'Opened LMDB checkpoint store at {self.path}')

    def load(self, key: str) -> Optional[bytes]:
        with self.env.begin() as txn:
            return txn.get(key.encode('utf-8'))

    def load_prefix(self, prefix: str) -> Dict[str, bytes]:
        encoded_prefix = prefix.encode('utf-8')
        result = {}

        with self.env.begin() as txn:
            cursor = txn.cursor()
            if not cursor.set_range(encoded_prefix):
                return result

            for key, value in cursor:
                if not key.startswith(encoded_prefix):
                    break
                result[key.decode('utf-8')] = value

        return result

    def store(self, key: str, value: bytes) -> None:
        with self.env.begin(write=True) as txn:
            txn.put(key.encode('utf-8'), value)

    def close(self) -> None:
        self.env.close()


class SQLStore(CheckpointStore):
    """
    Store checkpoints in a SQL table through a DB-API 2.0 connection.

    The table has two columns::

        CREATE TABLE scan_state (
            id VARCHAR(255) PRIMARY KEY,
            state BLOB
        )

    Call ``ensure_table()`` to create it, or create it beforehand (for
    PostgreSQL use BYTEA for the state column).
    """

    PLACEHOLDERS = {'qmark': '?', 'format': '%s', 'pyformat': '%s'}

    def __init__(self, connection, table: str = 'scan_state', paramstyle: str = 'qmark'):
        """
        Initialize the SQL store.

        Args:
            connection: DB-API connection object with cursor() and commit()
            table: Name of the checkpoint table
            paramstyle: Placeholder style of the driver ('qmark', 'format' or 'pyformat')
        """
        if paramstyle not in self.PLACEHOLDERS:
            raise ValueError(
                f"Unsupported paramstyle '{paramstyle}'. "
                f"Valid styles: {', '.join(sorted(self.PLACEHOLDERS))}"
            )
        self.conn = connection
        self.table = table
        self._ph = self.PLACEHOLDERS[paramstyle]

    def ensure_table(self, state_type: str = 'BLOB') -> None:
        cursor = self.conn.cursor()
        cursor.execute(
            f'CREATE TABLE IF NOT EXISTS {self.table} (id VARCHAR(255) PRIMARY KEY, state {state_type})'
        )
        self.conn.commit()
        logger.debug(f'Ensured checkpoint table {self.table} exists')

    def load(self, key: str) -> Optional[bytes]:
        cursor = self.conn.cursor()
        cursor.execute(f'SELECT state FROM {self.table} WHERE id = {self._ph}', (key,))
        row = cursor.fetchone()
        if row is None or row[0] is None:
            return None
        return bytes(row[0])

    def load_prefix(self, prefix: str) -> Dict[str, bytes]:
        cursor = self.conn.cursor()
        cursor.execute(f'SELECT id, state FROM {self.table} WHERE id LIKE {self._ph}', (prefix + '%',))
        # LIKE treats '_' and '%' in the prefix as wildcards
        return {
            key: bytes(state) if state is not None else b''
            for key, state in cursor.fetchall()
            if key.startswith(prefix)
        }

    def store(self, key: str, value: bytes) -> None:
        cursor = self.conn.cursor()
        try:
            cursor.execute(f'UPDATE {self.table} SET state = {self._ph} WHERE id = {self._ph}', (value, key))
            if cursor.rowcount == 0:
                cursor.execute(f'INSERT INTO {self.table} (id, state) VALUES ({self._ph}, {self._ph})', (key, value))
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise
