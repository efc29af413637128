import tempfile
import uuid
from unittest.mock import MagicMock, patch

import pytest
from pyspark.sql.types import StructType, StructField, StringType, IntegerType

from conftest import FakeSession

ROWS = [
    {"id": uuid.UUID(int=i), "name": f"user_{i}", "age": 20 + i, "score": 100 * i}
    for i in range(20)
]


@pytest.fixture
def checkpoint_dir():
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def fake_cluster(mock_table_metadata):
    """Patch Cluster with one exposing test_ks.test_table and a fake session."""
    session = FakeSession()
    session.create_table("test_ks", "test_table", ["id"], columns=["name", "age", "score"], rows=ROWS)

    with patch("cassandra.cluster.Cluster") as mock_cluster:
        mock_cluster_instance = MagicMock()
        mock_cluster_instance.connect.return_value = session
        mock_cluster_instance.metadata.keyspaces = {
            "test_ks": MagicMock(tables={"test_table": mock_table_metadata})
        }
        mock_cluster.return_value = mock_cluster_instance
        yield mock_cluster, session


def test_reader_init_validates_options():
    """Test reader validates required options."""
    from cassandra_scanner.reader import CassandraScanReader

    with pytest.raises(ValueError, match="Missing required options"):
        CassandraScanReader({}, None)


def test_reader_requires_scan_id(basic_options):
    """Test the checkpoint identifier is mandatory."""
    from cassandra_scanner.reader import CassandraScanReader

    del basic_options["scan_id"]

    with pytest.raises(ValueError, match="scan_id"):
        CassandraScanReader(basic_options, None)


def test_reader_init_with_valid_options(fake_cluster, basic_options):
    """Test reader parses connection and scan options."""
    from cassandra_scanner.reader import CassandraScanReader

    basic_options["host"] = "10.0.0.1, 10.0.0.2"
    reader = CassandraScanReader(basic_options, None)

    assert reader.hosts == ["10.0.0.1", "10.0.0.2"]
    assert reader.port == 9042
    assert reader.keyspace == "test_ks"
    assert reader.table == "test_table"
    assert reader.splits == 8
    assert reader.config.auto_save_interval == 1000
    fake_cluster[0].return_value.shutdown.assert_called_once()


def test_reader_rejects_invalid_splits(fake_cluster, basic_options):
    from cassandra_scanner.reader import CassandraScanReader

    basic_options["splits"] = "0"

    with pytest.raises(ValueError, match="splits"):
        CassandraScanReader(basic_options, None)


def test_reader_rejects_ca_cert_without_ssl(fake_cluster, basic_options):
    from cassandra_scanner.reader import CassandraScanReader

    basic_options["ssl_ca_cert"] = "/path/to/cert.pem"

    with pytest.raises(ValueError, match="ssl_enabled"):
        CassandraScanReader(basic_options, None)


def test_reader_unknown_table(fake_cluster, basic_options):
    from cassandra_scanner.reader import CassandraScanReader

    basic_options["table"] = "missing"

    with pytest.raises(ValueError, match="test_ks.missing not found"):
        CassandraScanReader(basic_options, None)


def test_reader_derives_schema_and_statement(fake_cluster, basic_options):
    """Test the schema and statement follow the table columns."""
    from cassandra_scanner.reader import CassandraScanReader

    basic_options["filter"] = "age > 21"
    reader = CassandraScanReader(basic_options, None)

    assert isinstance(reader.schema, StructType)
    assert reader.columns == ["age", "id", "name", "score"]
    assert reader.statement == "SELECT age, id, name, score FROM test_ks.test_table WHERE age > 21"


def test_reader_columns_option(fake_cluster, basic_options):
    from cassandra_scanner.reader import CassandraScanReader

    basic_options["columns"] = "id, name"
    reader = CassandraScanReader(basic_options, None)

    assert reader.columns == ["id", "name"]
    assert reader.statement == "SELECT id, name FROM test_ks.test_table"


def test_reader_uses_provided_schema(fake_cluster, basic_options):
    """Test reader uses user-provided schema."""
    from cassandra_scanner.reader import CassandraScanReader

    user_schema = StructType([
        StructField("id", StringType()),
        StructField("age", IntegerType())
    ])
    reader = CassandraScanReader(basic_options, user_schema)

    assert reader.schema == user_schema
    assert reader.columns == ["id", "age"]


def test_reader_rejects_unknown_schema_columns(fake_cluster, basic_options):
    from cassandra_scanner.reader import CassandraScanReader

    user_schema = StructType([StructField("nope", StringType())])

    with pytest.raises(ValueError, match="not in Cassandra table"):
        CassandraScanReader(basic_options, user_schema)


def test_partitions_follow_token_ring_splits(fake_cluster, basic_options):
    """Test one partition per split with its own checkpoint id."""
    from cassandra_scanner.partitioning import TokenRangePartition, split_token_ring
    from cassandra_scanner.reader import CassandraScanReader

    basic_options["splits"] = "4"
    partitions = CassandraScanReader(basic_options, None).partitions()

    assert len(partitions) == 4
    assert all(isinstance(p, TokenRangePartition) for p in partitions)
    assert [p.scan_id for p in partitions] == ["export_0", "export_1", "export_2", "export_3"]
    assert [p.token_range for p in partitions] == split_token_ring(4)


def test_read_returns_every_row_once(fake_cluster, basic_options, checkpoint_dir):
    """Test reading all partitions returns the table with converted values."""
    from cassandra_scanner.reader import CassandraScanReader

    basic_options.update(splits="3", checkpoint_path=checkpoint_dir)
    reader = CassandraScanReader(basic_options, None)

    rows = [row for partition in reader.partitions() for row in reader.read(partition)]

    expected = [(r["age"], str(r["id"]), r["name"], r["score"]) for r in ROWS]
    assert sorted(rows) == sorted(expected)


def test_read_skips_finished_partitions(fake_cluster, basic_options, checkpoint_dir):
    """Test a second run with the same scan id reads nothing."""
    from cassandra_scanner.reader import CassandraScanReader

    basic_options.update(splits="2", checkpoint_path=checkpoint_dir)
    reader = CassandraScanReader(basic_options, None)
    for partition in reader.partitions():
        list(reader.read(partition))

    _, session = fake_cluster
    executed = len(session.executed)

    assert [row for p in reader.partitions() for row in reader.read(p)] == []
    assert len(session.executed) == executed


def test_read_resumes_interrupted_partition(fake_cluster, basic_options, checkpoint_dir):
    """Test closing the generator early saves progress for the next run."""
    from cassandra_scanner.reader import CassandraScanReader

    basic_options.update(splits="1", checkpoint_path=checkpoint_dir)
    reader = CassandraScanReader(basic_options, None)
    partition = reader.partitions()[0]

    rows = reader.read(partition)
    first = [next(rows) for _ in range(5)]
    rows.close()

    rest = list(reader.read(partition))

    assert len(first) + len(rest) == len(ROWS)
    assert not set(first) & set(rest)


def test_convert_cassandra_values():
    """Test driver specific values become Spark friendly values."""
    import datetime
    from cassandra.util import Date, OrderedMap, SortedSet
    from cassandra_scanner.reader import _convert_cassandra_value

    assert _convert_cassandra_value(None) is None
    assert _convert_cassandra_value(uuid.UUID(int=1)) == "00000000-0000-0000-0000-000000000001"
    assert _convert_cassandra_value(Date(datetime.date(2024, 1, 2))) == datetime.date(2024, 1, 2)
    assert _convert_cassandra_value(SortedSet([2, 1])) == [1, 2]
    assert _convert_cassandra_value(OrderedMap([("a", uuid.UUID(int=2))])) == {
        "a": "00000000-0000-0000-0000-000000000002"
    }
    assert _convert_cassandra_value(42) == 42


def test_data_source_name():
    from cassandra_scanner.data_source import CassandraScanDataSource

    assert CassandraScanDataSource.name() == "cassandra_scan"


def test_data_source_schema_and_reader(fake_cluster, basic_options):
    """Test the data source derives the schema once and reuses its reader."""
    from cassandra_scanner.data_source import CassandraScanDataSource
    from cassandra_scanner.reader import CassandraScanBatchReader

    ds = CassandraScanDataSource(basic_options)
    schema = ds.schema()
    reader = ds.reader(schema)

    assert isinstance(reader, CassandraScanBatchReader)
    assert [f.name for f in schema.fields] == ["age", "id", "name", "score"]
    assert fake_cluster[0].call_count == 1


def test_read_fetch_error_keeps_partition_resumable(fake_cluster, basic_options, checkpoint_dir):
    """Test a driver failure fails the read and the next run resumes after the last row."""
    from cassandra_scanner.errors import RowFetchError
    from cassandra_scanner.reader import CassandraScanReader

    _, session = fake_cluster
    session.fail_after = 5
    basic_options.update(splits="1", checkpoint_path=checkpoint_dir)
    reader = CassandraScanReader(basic_options, None)
    partition = reader.partitions()[0]

    first = []
    with pytest.raises(RowFetchError):
        for row in reader.read(partition):
            first.append(row)

    session.fail_after = None
    rest = list(reader.read(partition))

    assert len(first) == 5
    assert len(first) + len(rest) == len(ROWS)
