"""
Resumable, checkpointed table scans.

A Scanner turns a SELECT statement into one ScanIterator (whole ring) or an
IteratorGroup (ring split into contiguous ranges). Every iterator records the
token of the last row it returned, so a scan restarted with the same scan id
continues after the last saved position instead of starting over.

Resuming is at-least-once: rows consumed after the last save are delivered
again, and on tables with clustering columns the partition holding the saved
token is read again in full.
"""

import logging
import math
from collections import namedtuple
from dataclasses import dataclass
from functools import lru_cache
from typing import Dict, List, Optional, Tuple

from cassandra import DriverException, RequestExecutionException
from cassandra.cluster import NoHostAvailable
from cassandra.metadata import protect_name
from cassandra.query import SimpleStatement

from .config import ScannerConfig
from .errors import RowFetchError, TableMetadataError
from .partitioning import MAX_TOKEN, TokenRange, split_token_ring
from .state import ScanState, ScanStateRepository
from .statement import parse_select, token_expression

logger = logging.getLogger(__name__)

# Errors raised by the driver while paging through a result set
FETCH_ERRORS = (DriverException, RequestExecutionException, NoHostAvailable)


@dataclass(frozen=True)
class Query:
    """A scan request: statement, bind values and the token range to cover."""

    statement: str
    values: Tuple = ()
    token_range: TokenRange = TokenRange()


def _unquote(name):
    """Return the metadata name of a CQL identifier as written in a statement."""
    if name.startswith('"'):
        return name[1:-1].replace('""', '"')
    return name.lower()


def get_key_columns(session, keyspace, table) -> Tuple[List[str], List[str]]:
    """
    Return the partition key and clustering column names of a table.

    Raises:
        TableMetadataError: If the keyspace or table is unknown
    """
    keyspace_meta = session.cluster.metadata.keyspaces.get(_unquote(keyspace))
    if keyspace_meta is None:
        raise TableMetadataError(f"Could not find metadata for keyspace: {keyspace}")

    table_meta = keyspace_meta.tables.get(_unquote(table))
    if table_meta is None:
        raise TableMetadataError(f"Could not find metadata for table: {keyspace}.{table}")

    pk_columns = [col.name for col in table_meta.partition_key]
    if not pk_columns:
        raise TableMetadataError(f"Table {keyspace}.{table} has no partition key columns")
    ck_columns = [col.name for col in table_meta.clustering_key]
    return pk_columns, ck_columns


@lru_cache(maxsize=None)
def _row_type(fields):
    """Named tuple type for a driver row without its token column."""
    return namedtuple("Row", fields, rename=True)


def _split_token(row):
    """Separate the trailing token column from a result row."""
    if isinstance(row, dict):
        values = dict(row)
        token = values.pop(list(values)[-1])
        return values, token
    fields = getattr(row, "_fields", None)
    if fields:
        return _row_type(fields[:-1])._make(row[:-1]), row[-1]
    return tuple(row[:-1]), row[-1]


class Scanner:
    """
    Builds checkpointed iterators over Cassandra tables.

    The scanner only references the driver session and the checkpoint store;
    their lifetime is managed by the caller.
    """

    def __init__(self, store, session, config: Optional[ScannerConfig] = None):
        """
        Args:
            store: CheckpointStore used to persist iterator state
            session: cassandra-driver Session
            config: Optional ScannerConfig (auto-save, page size)
        """
        self.repository = ScanStateRepository(store)
        self.session = session
        self.config = config or ScannerConfig()

    def iterator(self, scan_id, statement, *values, timeout=None) -> 'ScanIterator':
        """Create an iterator reading the whole token ring."""
        return self.build_iterator(scan_id, Query(statement, tuple(values)), timeout=timeout)

    def split_iterator(self, scan_id, splits, statement, *values, timeout=None) -> 'IteratorGroup':
        """
        Create ``splits`` iterators, each reading one contiguous part of the ring.

        Sub-iterators are checkpointed under ``<scan_id>_<index>`` and can be
        driven concurrently from separate threads.
        """
        iterators = []
        for i, token_range in enumerate(split_token_ring(splits)):
            query = Query(statement, tuple(values), token_range)
            iterators.append(self.build_iterator(f"{scan_id}_{i}", query, timeout=timeout))

        logger.info(f"Created split scan {scan_id} with {splits} ranges")
        return IteratorGroup(iterators)

    def build_iterator(self, scan_id, query: Query, timeout=None) -> 'ScanIterator':
        """
        Build an iterator for ``query``, resuming from the checkpoint stored
        under ``scan_id`` if there is one.

        Raises:
            CQLSyntaxError: If the statement cannot be parsed
            TableMetadataError: If the table key columns cannot be resolved
            CheckpointDecodeError: If the stored checkpoint is corrupt
        """
        state = self.repository.load(scan_id)
        cql = self.build_statement(query, state)

        rows = None
        if state is not None and state.finished:
            logger.info(f"Scan {scan_id} already finished ({state.rows_read} rows read)")
        else:
            if state is not None and state.last_token is not None:
                logger.info(f"Resuming scan {scan_id} after token {state.last_token} "
                            f"({state.rows_read} rows read)")
            else:
                logger.info(f"Starting scan {scan_id} over {query.token_range!r}")
            rows = iter(self._execute(cql, query.values, timeout))

        return ScanIterator(self, scan_id, query, rows, state or ScanState(), timeout)

    def build_statement(self, query: Query, state: Optional[ScanState] = None) -> str:
        """
        Rewrite the query statement for its token range and resume position.

        Predicates are prepended newest first, so the final WHERE clause reads
        ``<resume> AND <upper bound> AND <lower bound> AND <caller predicates>``.
        The projection gets a trailing ``token(<pk>)`` column.
        """
        parsed = parse_select(query.statement)
        pk_columns, ck_columns = get_key_columns(self.session, parsed.keyspace, parsed.table)
        token = token_expression([protect_name(col) for col in pk_columns])

        token_range = query.token_range
        if token_range.start is not None:
            parsed.add_where(f"{token} >= {token_range.start}")
        if token_range.end is not None:
            # The last split ends at the ring maximum, which must be included
            operator = "<=" if token_range.end == MAX_TOKEN else "<"
            parsed.add_where(f"{token} {operator} {token_range.end}")

        if state is not None and state.last_token is not None:
            if ck_columns:
                # The previous scan may have stopped mid-partition
                parsed.add_where(f"{token} >= {state.last_token}")
            else:
                parsed.add_where(f"{token} > {state.last_token}")

        parsed.add_column(token)
        return str(parsed)

    def checkpoints(self, scan_id) -> Dict[str, ScanState]:
        """Return the saved state of every scan whose id starts with ``scan_id``."""
        return self.repository.load_prefix(scan_id)

    def reset(self, scan_id) -> None:
        """Erase the checkpoint stored under ``scan_id``."""
        self.repository.store(scan_id, None)

    def _execute(self, cql, values, timeout):
        kwargs = {}
        if self.config.fetch_size is not None:
            kwargs["fetch_size"] = self.config.fetch_size
        statement = SimpleStatement(cql, **kwargs)

        logger.debug(f"Executing scan query: {cql}")
        if timeout is not None:
            return self.session.execute(statement, values or None, timeout=timeout)
        return self.session.execute(statement, values or None)


class ScanIterator:
    """
    Reads one token range and tracks its checkpoint.

    Not safe for concurrent use: calls must be serialized by the caller.
    """

    def __init__(self, scanner, scan_id, query, rows, state, timeout=None):
        self.scanner = scanner
        self.scan_id = scan_id
        self.query = query
        self.state = state
        self.timeout = timeout
        # Driver error that ended the scan, if any
        self.error = None

        self._rows = rows
        self._saved_count = state.rows_read
        self._saved_finished = state.finished

    @property
    def finished(self) -> bool:
        return self.state.finished

    @property
    def read_count(self) -> int:
        return self.state.rows_read

    def scan(self):
        """
        Return the next row, or None once the range is exhausted.

        The hidden token column is stripped from the returned row (a tuple,
        a named tuple when the driver returns named rows, or a dict with
        a dict row factory).
        """
        try:
            return self._next_row()
        finally:
            self._auto_save()

    def __iter__(self):
        while True:
            row = self.scan()
            if row is None:
                return
            yield row

    def _next_row(self):
        # Closed or released by reset
        if self.state.finished or self._rows is None:
            return None

        try:
            row = next(self._rows)
        except StopIteration:
            self._finish()
            return None
        except FETCH_ERRORS as e:
            logger.warning(f"Scan {self.scan_id} stopped on fetch error: {e}")
            self.error = e
            self._finish()
            return None

        row, token = _split_token(row)
        self.state.last_token = token
        self.state.rows_read += 1
        return row

    def _finish(self):
        self._rows = None
        self.state.finished = True
        logger.info(f"Scan {self.scan_id} finished after {self.state.rows_read} rows")

    def progress(self) -> float:
        """Return the fraction of the token range already read, between 0 and 1."""
        if self.state.finished:
            return 1.0
        if self.state.rows_read == 0 or self.state.last_token is None:
            return 0.0

        lower = self.query.token_range.lower
        upper = self.query.token_range.upper
        token = self.state.last_token

        if token < lower:
            return 0.0
        if token >= upper:
            return 1.0
        # Python ints do not overflow, the division rounds once to float
        return (token - lower) / (upper - lower)

    def estimated_count(self) -> float:
        """
        Extrapolate the total number of rows in the range from the progress.

        Returns inf (or nan before any row was read) while progress is 0.
        """
        progress = self.progress()
        if progress == 0:
            return math.inf if self.state.rows_read else math.nan
        return self.state.rows_read / progress

    def save(self) -> None:
        """Persist the current state."""
        self.scanner.repository.store(self.scan_id, self.state)
        self._saved_count = self.state.rows_read
        self._saved_finished = self.state.finished

    def _auto_save(self):
        interval = self.scanner.config.auto_save_interval
        if interval <= 0:
            return

        pending = self.state.rows_read - self._saved_count
        if pending < interval and (self._saved_finished or not self.state.finished):
            return

        try:
            self.save()
        except Exception as e:
            logger.warning(f"Auto-save of scan {self.scan_id} failed: {e}")

    def close(self) -> None:
        """
        Release the result set.

        Raises:
            RowFetchError: If the scan ended because the driver failed to fetch rows
        """
        self._rows = None
        if self.error is not None:
            raise RowFetchError(f"Scan {self.scan_id} ended on fetch error: {self.error}") from self.error

    def reset(self) -> 'ScanIterator':
        """
        Erase the checkpoint and return a fresh iterator over the original range.

        This iterator is released; callers must use the returned one.
        """
        self.scanner.reset(self.scan_id)
        fresh = self.scanner.build_iterator(self.scan_id, self.query, timeout=self.timeout)
        self._rows = None
        logger.info(f"Reset scan {self.scan_id}")
        return fresh

    def __repr__(self):
        return (f"ScanIterator(scan_id={self.scan_id!r}, range={self.query.token_range!r}, "
                f"state={self.state!r})")


class IteratorGroup:
    """
    Iterators of one split scan behind the single-iterator interface.

    ``scan()`` drains members in order: the first member still holding rows
    is always read first. Drive ``members`` from separate threads for
    parallel reads.
    """

    def __init__(self, iterators):
        self.members = list(iterators)

    def __len__(self):
        return len(self.members)

    def __getitem__(self, index):
        return self.members[index]

    def scan(self):
        for it in self.members:
            row = it.scan()
            if row is not None:
                return row
        return None

    def __iter__(self):
        while True:
            row = self.scan()
            if row is None:
                return
            yield row

    def _each(self, action, name):
        # Apply action to every member, raise the last failure afterwards
        last_error = None
        for i, it in enumerate(self.members):
            try:
                action(i, it)
            except Exception as e:
                logger.warning(f"{name} of scan {it.scan_id} failed: {e}")
                last_error = e
        if last_error is not None:
            raise last_error

    def close(self) -> None:
        self._each(lambda i, it: it.close(), "Close")

    def save(self) -> None:
        self._each(lambda i, it: it.save(), "Save")

    def reset(self) -> None:
        """Reset every member; a failing member keeps its current iterator."""
        def reset_member(i, it):
            self.members[i] = it.reset()

        self._each(reset_member, "Reset")

    @property
    def finished(self) -> bool:
        return all(it.finished for it in self.members)

    @property
    def read_count(self) -> int:
        return sum(it.read_count for it in self.members)

    def progress(self) -> float:
        """Unweighted mean of member progress."""
        if not self.members:
            return 1.0
        return sum(it.progress() for it in self.members) / len(self.members)

    def estimated_count(self) -> float:
        return sum(it.estimated_count() for it in self.members)


__all__ = [
    "FETCH_ERRORS",
    "IteratorGroup",
    "Query",
    "ScanIterator",
    "Scanner",
    "get_key_columns",
]
