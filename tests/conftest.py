import hashlib
import re

import pytest
from unittest.mock import MagicMock


def fake_token(*pk_values):
    """Deterministic signed 64-bit token for a partition key."""
    digest = hashlib.blake2b(repr(pk_values).encode("utf-8"), digest_size=8).digest()
    return int.from_bytes(digest, "big", signed=True)


def _column(name):
    col = MagicMock()
    col.name = name
    return col


_SELECT = re.compile(
    r"^SELECT (?P<cols>.+?), token\((?P<token>[^)]*)\) FROM (?P<ks>\w+)\.(?P<table>\w+)"
    r"(?: WHERE (?P<where>.*))?$"
)
_TOKEN_PREDICATE = re.compile(r"token\([^)]*\) (>=|<=|>|<) (-?\d+)")
_OPERATORS = {
    ">=": lambda a, b: a >= b,
    "<=": lambda a, b: a <= b,
    ">": lambda a, b: a > b,
    "<": lambda a, b: a < b,
}


class FakeSession:
    """
    In-memory stand-in for a cassandra-driver Session.

    Understands the statements the scanner emits: a projection ending with
    ``token(<pk>)`` and ``token(<pk>) <op> <n>`` predicates. Rows are returned
    ordered by token then clustering columns, as Cassandra does.
    """

    def __init__(self):
        self.cluster = MagicMock()
        self.cluster.metadata.keyspaces = {}
        self.executed = []
        self.timeouts = []
        self.fail_after = None
        self._tables = {}

    def create_table(self, keyspace, table, partition_key, clustering_key=(), columns=(), rows=()):
        table_meta = MagicMock()
        table_meta.partition_key = [_column(name) for name in partition_key]
        table_meta.clustering_key = [_column(name) for name in clustering_key]

        keyspace_meta = self.cluster.metadata.keyspaces.setdefault(keyspace, MagicMock(tables={}))
        keyspace_meta.tables[table] = table_meta

        key_columns = list(partition_key) + list(clustering_key)
        self._tables[(keyspace, table)] = {
            "partition_key": list(partition_key),
            "clustering_key": list(clustering_key),
            "columns": key_columns + [c for c in columns if c not in key_columns],
            "rows": [dict(row) for row in rows],
        }

    def insert(self, keyspace, table, row):
        self._tables[(keyspace, table)]["rows"].append(dict(row))

    def execute(self, statement, parameters=None, timeout=None):
        cql = statement.query_string
        self.executed.append(cql)
        self.timeouts.append(timeout)

        match = _SELECT.match(cql)
        assert match, f"unexpected statement: {cql}"
        table = self._tables[(match.group("ks"), match.group("table"))]

        cols = [c.strip() for c in match.group("cols").split(",")]
        if cols == ["*"]:
            cols = table["columns"]

        predicates = _TOKEN_PREDICATE.findall(match.group("where") or "")

        def token_of(row):
            return fake_token(*(row[c] for c in table["partition_key"]))

        def sort_key(row):
            return (token_of(row),) + tuple(row[c] for c in table["clustering_key"])

        result = []
        for row in sorted(table["rows"], key=sort_key):
            token = token_of(row)
            if all(_OPERATORS[op](token, int(value)) for op, value in predicates):
                result.append(tuple(row.get(c) for c in cols) + (token,))

        return self._page(result)

    def _page(self, rows):
        from cassandra import OperationTimedOut

        for i, row in enumerate(rows):
            if self.fail_after is not None and i >= self.fail_after:
                raise OperationTimedOut("fake timeout")
            yield row


@pytest.fixture
def session():
    """Fake session with an empty ``tablescan`` keyspace."""
    return FakeSession()


@pytest.fixture
def kv_rows():
    return [{"id": f"key_{i}", "value": f"value_{i}"} for i in range(100)]


@pytest.fixture
def kv_session(session, kv_rows):
    """Session holding ``tablescan.kv`` (no clustering columns) with 100 rows."""
    session.create_table("tablescan", "kv", ["id"], columns=["value"], rows=kv_rows)
    return session


@pytest.fixture
def clustered_rows():
    return [
        {"pk": f"p{p}", "ck": c, "value": f"v{p}_{c}"}
        for p in range(10)
        for c in range(5)
    ]


@pytest.fixture
def clustered_session(session, clustered_rows):
    """Session holding ``tablescan.clustered`` (pk, ck) with 10 partitions of 5 rows."""
    session.create_table("tablescan", "clustered", ["pk"], ["ck"], columns=["value"], rows=clustered_rows)
    return session


@pytest.fixture
def mock_table_metadata():
    """Mock table metadata for testing."""
    table_meta = MagicMock()
    table_meta.name = "test_table"

    id_col = MagicMock()
    id_col.name = "id"
    id_col.cql_type = "uuid"

    name_col = MagicMock()
    name_col.name = "name"
    name_col.cql_type = "text"

    age_col = MagicMock()
    age_col.name = "age"
    age_col.cql_type = "int"

    score_col = MagicMock()
    score_col.name = "score"
    score_col.cql_type = "bigint"

    table_meta.partition_key = [id_col]
    table_meta.clustering_key = []
    table_meta.columns = {
        "id": id_col,
        "name": name_col,
        "age": age_col,
        "score": score_col
    }

    return table_meta


@pytest.fixture
def basic_options():
    """Basic options of the Spark data source."""
    return {
        "host": "127.0.0.1",
        "port": "9042",
        "keyspace": "test_ks",
        "table": "test_table",
        "scan_id": "export",
    }
