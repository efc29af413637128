"""Minimal CQL SELECT parser used to inject token range predicates."""

import re
from collections import namedtuple

from .errors import CQLSyntaxError

_WHITESPACE = re.compile(r"\s+")
_TOKEN = re.compile(
    r"""
      (?P<ident>[A-Za-z_][A-Za-z0-9_$]*)
    | (?P<quoted>"(?:[^"]|"")*")
    | (?P<number>\d+(?:\.\d+)?)
    | (?P<string>'(?:[^']|'')*')
    | (?P<punct>.)
    """,
    re.VERBOSE | re.DOTALL,
)

IDENT = "ident"
QUOTED = "quoted"

_Token = namedtuple("_Token", ["kind", "text", "start", "end"])


def _tokenize(statement):
    """Yield tokens of ``statement`` with their offsets, skipping whitespace."""
    pos = 0
    while pos < len(statement):
        ws = _WHITESPACE.match(statement, pos)
        if ws:
            pos = ws.end()
            continue
        match = _TOKEN.match(statement, pos)
        yield _Token(match.lastgroup, match.group(), match.start(), match.end())
        pos = match.end()


def _is_keyword(token, keyword):
    return token is not None and token.kind == IDENT and token.text.lower() == keyword


def _is_identifier(token):
    return token is not None and token.kind in (IDENT, QUOTED)


class ParsedQuery:
    """
    A parsed ``SELECT <projection> FROM <keyspace>.<table> [WHERE <remainder>]``.

    ``remainder`` keeps whatever followed the WHERE keyword (or the table name
    when there is no WHERE clause) verbatim, so caller supplied text is never
    reordered or dropped.
    """

    def __init__(self, projection, keyspace, table, has_where=False, remainder=""):
        self.projection = projection
        self.keyspace = keyspace
        self.table = table
        self.has_where = has_where
        self.remainder = remainder

    def add_where(self, clause):
        """Prepend ``clause`` to the WHERE predicates (newest first)."""
        if self.has_where:
            self.remainder = f"{clause} AND {self.remainder}"
        else:
            self.remainder = f"{clause} {self.remainder}" if self.remainder else clause
            self.has_where = True

    def add_column(self, expression):
        """Append a selector to the projection."""
        self.projection = f"{self.projection}, {expression}"

    def __eq__(self, other):
        if not isinstance(other, ParsedQuery):
            return NotImplemented
        return (
            self.projection == other.projection and
            self.keyspace == other.keyspace and
            self.table == other.table and
            self.has_where == other.has_where and
            self.remainder == other.remainder
        )

    def __repr__(self):
        return (f"ParsedQuery(projection={self.projection!r}, keyspace={self.keyspace!r}, "
                f"table={self.table!r}, has_where={self.has_where}, remainder={self.remainder!r})")

    def __str__(self):
        cql = f"SELECT {self.projection} FROM {self.keyspace}.{self.table}"
        if self.has_where:
            return f"{cql} WHERE {self.remainder}"
        if self.remainder:
            return f"{cql} {self.remainder}"
        return cql


def parse_select(statement):
    """
    Parse a SELECT statement.

    Args:
        statement: CQL statement, ``SELECT <cols> FROM <ks>.<table> [WHERE ...]``

    Returns:
        ParsedQuery

    Raises:
        CQLSyntaxError: If the statement does not follow the accepted grammar
    """
    tokens = list(_tokenize(statement))

    if not tokens or not _is_keyword(tokens[0], "select"):
        raise CQLSyntaxError(f"Query should start with SELECT: {statement}")

    from_index = next(
        (i for i, token in enumerate(tokens[1:], start=1) if _is_keyword(token, "from")),
        None,
    )
    if from_index is None:
        raise CQLSyntaxError(f"Invalid statement, should contain FROM: {statement}")

    projection = statement[tokens[0].end:tokens[from_index].start].strip()
    if not projection:
        raise CQLSyntaxError(f"Invalid statement, should select at least one column: {statement}")

    def token_at(index):
        return tokens[index] if index < len(tokens) else None

    keyspace = token_at(from_index + 1)
    if not _is_identifier(keyspace):
        raise CQLSyntaxError(f"Invalid statement, should contain keyspace after FROM: {statement}")

    dot = token_at(from_index + 2)
    if dot is None or dot.text != ".":
        raise CQLSyntaxError(f"Invalid statement, should contain keyspace.table: {statement}")

    table = token_at(from_index + 3)
    if not _is_identifier(table):
        raise CQLSyntaxError(f"Invalid statement, should contain table after keyspace: {statement}")

    query = ParsedQuery(projection, keyspace.text, table.text)

    following = token_at(from_index + 4)
    if following is None:
        return query

    if _is_keyword(following, "where"):
        predicate = token_at(from_index + 5)
        if predicate is None:
            raise CQLSyntaxError(f"Invalid statement, should contain something after WHERE: {statement}")
        query.has_where = True
        query.remainder = statement[predicate.start:].rstrip()
    else:
        query.remainder = statement[following.start:].rstrip()

    return query


def token_expression(pk_columns):
    """Return the ``token(...)`` selector for the given partition key columns."""
    return f"token({', '.join(pk_columns)})"
