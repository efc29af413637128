"""Spark reader driving checkpointed token range scans."""

import logging
from dataclasses import replace

from pyspark.sql.datasource import DataSourceReader
from pyspark.sql.types import StringType

from .config import ScannerConfig
from .partitioning import TokenRangePartition, split_token_ring
from .scanner import Query, Scanner
from .schema import derive_schema_from_table
from .stores import LMDBStore

logger = logging.getLogger(__name__)


def _convert_cassandra_value(value):
    """
    Convert Cassandra-specific types to Python native types.

    Args:
        value: Value from a Cassandra row

    Returns:
        Converted value suitable for Spark
    """
    if value is None:
        return None

    # Import here to avoid module-level dependency on executors
    from cassandra.util import Date, Duration, OrderedMap, SortedSet, Time
    import ipaddress
    import uuid

    if isinstance(value, Date):
        return value.date()
    if isinstance(value, Time):
        return value.nanosecond
    if isinstance(value, (uuid.UUID, ipaddress.IPv4Address, ipaddress.IPv6Address, Duration)):
        return str(value)
    if isinstance(value, OrderedMap):
        return {k: _convert_cassandra_value(v) for k, v in value.items()}
    if isinstance(value, (SortedSet, list, set)):
        return [_convert_cassandra_value(v) for v in value]
    if isinstance(value, tuple):
        return tuple(_convert_cassandra_value(v) for v in value)
    if isinstance(value, dict):
        return {k: _convert_cassandra_value(v) for k, v in value.items()}

    return value


class CassandraScanReader:
    """
    Reads a Cassandra table through resumable token range scans.

    Each Spark partition is one split of the token ring with its own
    checkpoint (``<scan_id>_<index>``) in an LMDB store. Running the same
    ``scan_id`` again skips the splits that finished on a previous run and
    resumes the others after their last saved token.
    """

    DEFAULT_SPLITS = 8
    DEFAULT_AUTO_SAVE_INTERVAL = 1000
    DEFAULT_CHECKPOINT_PATH = ".cassandra_scan_state"

    def __init__(self, options, schema):
        """
        Initialize reader and load metadata.

        Args:
            options: Configuration options dict
            schema: Optional user-provided schema
        """
        self.options = options
        self.user_schema = schema

        # Validate required options
        self._validate_options()

        # Connection options
        self.hosts = [h.strip() for h in options["host"].split(",")]
        self.port = int(options.get("port", 9042))
        self.keyspace = options["keyspace"]
        self.table = options["table"]
        self.username = options.get("username")
        self.password = options.get("password")
        self.ssl_enabled = options.get("ssl_enabled", "false").lower() == "true"
        self.ssl_ca_cert = options.get("ssl_ca_cert")

        if self.ssl_ca_cert and not self.ssl_enabled:
            raise ValueError("ssl_ca_cert requires ssl_enabled=true")

        # Scan options
        self.scan_id = options["scan_id"]
        self.splits = int(options.get("splits", self.DEFAULT_SPLITS))
        self.checkpoint_path = options.get("checkpoint_path", self.DEFAULT_CHECKPOINT_PATH)
        self.filter = options.get("filter")
        self.config = ScannerConfig.from_options(
            options, default_auto_save_interval=self.DEFAULT_AUTO_SAVE_INTERVAL
        )

        if self.splits < 1:
            raise ValueError(f"splits must be at least 1, got {self.splits}")

        self._load_metadata()
        self.statement = self._build_statement()

    def _validate_options(self):
        """Validate required options are present."""
        required = ["host", "keyspace", "table", "scan_id"]
        missing = [opt for opt in required if opt not in self.options]

        if missing:
            raise ValueError(f"Missing required options: {', '.join(missing)}")

    def _build_cluster(self):
        """Create a Cluster from the connection options."""
        from cassandra.cluster import Cluster
        from cassandra.auth import PlainTextAuthProvider
        import ssl as ssl_module

        kwargs = {
            "contact_points": self.hosts,
            "port": self.port
        }

        if self.username and self.password:
            kwargs["auth_provider"] = PlainTextAuthProvider(
                username=self.username,
                password=self.password
            )

        if self.ssl_enabled:
            ssl_context = ssl_module.create_default_context()
            if self.ssl_ca_cert:
                ssl_context.load_verify_locations(self.ssl_ca_cert)
            kwargs["ssl_context"] = ssl_context

        return Cluster(**kwargs)

    def _load_metadata(self):
        """Load table metadata and derive the schema."""
        cluster = self._build_cluster()

        try:
            # Connect to populate metadata
            cluster.connect()

            keyspace_meta = cluster.metadata.keyspaces.get(self.keyspace)
            if keyspace_meta is None or self.table not in keyspace_meta.tables:
                raise ValueError(f"Table {self.keyspace}.{self.table} not found")
            table_meta = keyspace_meta.tables[self.table]

            if self.user_schema:
                self._validate_user_schema(table_meta)
                self.schema = self.user_schema
            else:
                columns = self.options.get("columns")
                columns = [c.strip() for c in columns.split(",")] if columns else None
                self.schema = derive_schema_from_table(table_meta, columns)

            self.columns = [field.name for field in self.schema.fields]

        finally:
            cluster.shutdown()

    def _validate_user_schema(self, table_meta):
        """Validate user-provided schema matches table structure."""
        cassandra_columns = set(table_meta.columns.keys())
        schema_columns = set(field.name for field in self.user_schema.fields)

        missing = schema_columns - cassandra_columns
        if missing:
            raise ValueError(
                f"Schema contains columns not in Cassandra table: {', '.join(sorted(missing))}. "
                f"Available columns: {', '.join(sorted(cassandra_columns))}"
            )

    def _build_statement(self):
        statement = f"SELECT {', '.join(self.columns)} FROM {self.keyspace}.{self.table}"
        if self.filter:
            statement = f"{statement} WHERE {self.filter}"
        return statement

    def partitions(self):
        """
        Return one partition per split of the token ring.

        Returns:
            List of TokenRangePartition objects
        """
        return [
            TokenRangePartition(i, f"{self.scan_id}_{i}", token_range)
            for i, token_range in enumerate(split_token_ring(self.splits))
        ]

    def read(self, partition):
        """
        Read the token range of a partition, resuming from its checkpoint.

        Args:
            partition: TokenRangePartition to read

        Yields:
            Tuples matching the schema column order
        """
        string_fields = [isinstance(field.dataType, StringType) for field in self.schema.fields]

        cluster = self._build_cluster()
        store = LMDBStore(self.checkpoint_path)

        try:
            session = cluster.connect()
            scanner = Scanner(store, session, self.config)
            query = Query(self.statement, token_range=partition.token_range)
            it = scanner.build_iterator(partition.scan_id, query)

            try:
                for row in it:
                    values = (_convert_cassandra_value(v) for v in row)
                    yield tuple(
                        str(v) if is_string and v is not None and not isinstance(v, str) else v
                        for v, is_string in zip(values, string_fields)
                    )
            finally:
                if it.error is None:
                    it.save()
                else:
                    # Rows after the last token were never read, keep the split resumable
                    scanner.repository.store(partition.scan_id, replace(it.state, finished=False))
                logger.info(f"Partition {partition.partition_id} read {it.read_count} rows "
                            f"(progress {it.progress():.2%})")
                it.close()

        finally:
            store.close()
            cluster.shutdown()


class CassandraScanBatchReader(CassandraScanReader, DataSourceReader):
    """Batch reader for resumable Cassandra scans."""
    pass
