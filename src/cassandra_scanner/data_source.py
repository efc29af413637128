"""PySpark data source for resumable Cassandra scans."""

from pyspark.sql.datasource import DataSource

from .reader import CassandraScanBatchReader


class CassandraScanDataSource(DataSource):
    """PySpark Data Source reading Cassandra tables through checkpointed scans."""

    @classmethod
    def name(cls):
        """Return the data source format name."""
        return "cassandra_scan"

    def __init__(self, options):
        """Initialize data source with options."""
        self.options = options
        self._reader = None

    def _get_reader(self, schema=None):
        if self._reader is None:
            self._reader = CassandraScanBatchReader(self.options, schema)
        return self._reader

    def schema(self):
        """Derive the schema from the table metadata."""
        return self._get_reader().schema

    def reader(self, schema):
        """Return a batch reader instance."""
        return self._get_reader(schema)
