"""cassandra-scanner - resumable, parallel, checkpointed Cassandra table scans."""

from .config import ScannerConfig
from .errors import (
    CheckpointDecodeError,
    CheckpointEncodeError,
    CQLSyntaxError,
    RowFetchError,
    ScannerError,
    TableMetadataError,
)
from .partitioning import MAX_TOKEN, MIN_TOKEN, TokenRange, split_token_ring
from .scanner import IteratorGroup, Query, ScanIterator, Scanner
from .state import ScanState, ScanStateRepository
from .statement import ParsedQuery, parse_select
from .stores import CheckpointStore, LMDBStore, MemoryStore, SQLStore

__all__ = [
    "CQLSyntaxError",
    "CheckpointDecodeError",
    "CheckpointEncodeError",
    "CheckpointStore",
    "IteratorGroup",
    "LMDBStore",
    "MAX_TOKEN",
    "MIN_TOKEN",
    "MemoryStore",
    "ParsedQuery",
    "Query",
    "RowFetchError",
    "SQLStore",
    "ScanIterator",
    "ScanState",
    "ScanStateRepository",
    "Scanner",
    "ScannerConfig",
    "ScannerError",
    "TableMetadataError",
    "TokenRange",
    "parse_select",
    "split_token_ring",
]
