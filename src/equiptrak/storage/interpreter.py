"""
SQLStringInterpreter: a closed SQL vocabulary lowered onto the QueryAdapter.

Legacy call sites still think in SQL text. When the active backend has no
SQL endpoint, their statements are parsed here and turned into exactly one
QueryAdapter call. The grammar is intentionally tiny::

    SELECT * | col [, col]... FROM t
        [WHERE col = $n [AND col = $n]...]
        [ORDER BY col [ASC|DESC] [, ...]]
        [LIMIT n|$n] [OFFSET n|$n]
    INSERT INTO t (col, ...) VALUES (v, ...) [RETURNING *]
    UPDATE t SET col = v [, ...] WHERE id = $n [RETURNING *]
    DELETE FROM t WHERE id = $n [RETURNING *]

    v := $n | number | 'string' | NULL | TRUE | FALSE

Keywords are case-insensitive and one trailing ``;`` is allowed. Anything
else (joins, OR, subqueries, comparison operators other than ``=``,
functions, qualified names, ...) raises ``ParseError`` naming the construct
and its character offset. There is no best-effort translation.

Writes return ``[row]`` when the statement says ``RETURNING *`` and ``[]``
otherwise, which is what the relational driver returns for the same text.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Union

from equiptrak.core.enums import SortDirection
from equiptrak.core.errors import ParseError

from .descriptor import QueryDescriptor

if TYPE_CHECKING:
    from .adapter import QueryAdapter


# =============================================================================
# TOKENS
# =============================================================================

_TOKEN_RE = re.compile(
    r"""
    (?P<ws>\s+)
    |(?P<param>\$\d+)
    |(?P<number>-?\d+(?:\.\d+)?)
    |(?P<string>'(?:[^']|'')*')
    |(?P<word>[A-Za-z_][A-Za-z0-9_]*)
    |(?P<quoted>"[^"]*")
    |(?P<op><>|!=|<=|>=|\|\||::|[=<>+\-/%])
    |(?P<punct>[(),;*.])
    """,
    re.VERBOSE,
)

KEYWORDS = frozenset(
    {
        "SELECT", "FROM", "WHERE", "AND", "ORDER", "BY", "ASC", "DESC", "LIMIT",
        "OFFSET", "INSERT", "INTO", "VALUES", "UPDATE", "SET", "DELETE",
        "RETURNING", "NULL", "TRUE", "FALSE",
    }
)

# Keyword -> construct name reported in ParseError.
UNSUPPORTED = {
    "JOIN": "JOIN", "INNER": "JOIN", "LEFT": "JOIN", "RIGHT": "JOIN",
    "FULL": "JOIN", "OUTER": "JOIN", "CROSS": "JOIN", "NATURAL": "JOIN",
    "ON": "JOIN", "USING": "JOIN",
    "OR": "OR",
    "NOT": "NOT",
    "LIKE": "LIKE", "ILIKE": "LIKE",
    "IN": "IN",
    "IS": "IS",
    "BETWEEN": "BETWEEN",
    "GROUP": "GROUP BY",
    "HAVING": "HAVING",
    "UNION": "UNION", "INTERSECT": "INTERSECT", "EXCEPT": "EXCEPT",
    "DISTINCT": "DISTINCT",
    "WITH": "WITH",
    "EXISTS": "subquery",
    "CASE": "CASE",
    "AS": "alias",
}


@dataclass(frozen=True)
class Token:
    kind: str
    value: str
    pos: int

    @property
    def upper(self) -> str:
        return self.value.upper()


def tokenize(sql: str) -> list[Token]:
    tokens = []
    pos = 0
    while pos < len(sql):
        match = _TOKEN_RE.match(sql, pos)
        if match is None:
            raise ParseError(
                f"Unexpected character {sql[pos]!r} at position {pos}",
                construct=sql[pos],
                position=pos,
            )
        kind = match.lastgroup or ""
        if kind != "ws":
            tokens.append(Token(kind, match.group(), pos))
        pos = match.end()
    return tokens


# =============================================================================
# STATEMENTS
# =============================================================================


@dataclass(frozen=True)
class Param:
    """A ``$n`` placeholder (1-based)."""

    index: int
    pos: int = 0


@dataclass(frozen=True)
class Literal:
    value: Any


Value = Union[Param, Literal]


@dataclass(frozen=True)
class SelectStatement:
    table: str
    columns: tuple[str, ...]
    where: tuple[tuple[str, Param], ...] = ()
    order: tuple[tuple[str, SortDirection], ...] = ()
    limit: Value | None = None
    offset: Value | None = None


@dataclass(frozen=True)
class InsertStatement:
    table: str
    columns: tuple[str, ...]
    values: tuple[Value, ...]
    returning: bool = False


@dataclass(frozen=True)
class UpdateStatement:
    table: str
    assignments: tuple[tuple[str, Value], ...]
    key: Param
    returning: bool = False


@dataclass(frozen=True)
class DeleteStatement:
    table: str
    key: Param
    returning: bool = False


Statement = Union[SelectStatement, InsertStatement, UpdateStatement, DeleteStatement]


# =============================================================================
# PARSER
# =============================================================================


class _Parser:
    """Recursive descent over a token list. One instance per statement."""

    def __init__(self, sql: str):
        self.sql = sql
        self.tokens = tokenize(sql)
        self.i = 0

    # -- Cursor -------------------------------------------------------------

    def peek(self, offset: int = 0) -> Token | None:
        j = self.i + offset
        return self.tokens[j] if j < len(self.tokens) else None

    def advance(self) -> Token:
        token = self.peek()
        if token is None:
            raise ParseError("Unexpected end of statement", construct="end of input", position=len(self.sql))
        self.i += 1
        return token

    def at_keyword(self, *words: str) -> bool:
        token = self.peek()
        return token is not None and token.kind == "word" and token.upper in words

    def at_punct(self, value: str) -> bool:
        token = self.peek()
        return token is not None and token.kind == "punct" and token.value == value

    # -- Errors -------------------------------------------------------------

    def unexpected(self, token: Token | None, expected: str) -> ParseError:
        if token is None:
            return ParseError(
                f"Expected {expected}, got end of statement",
                construct="end of input",
                position=len(self.sql),
            )
        if token.kind == "word" and token.upper in UNSUPPORTED:
            construct = UNSUPPORTED[token.upper]
            return ParseError(
                f"Unsupported construct {construct} at position {token.pos}",
                construct=construct,
                position=token.pos,
            )
        if token.kind == "op":
            return ParseError(
                f"Unsupported operator {token.value!r} at position {token.pos}; only '=' is allowed",
                construct=f"operator {token.value}",
                position=token.pos,
            )
        if token.kind == "quoted":
            return ParseError(
                f"Quoted identifiers are not supported (position {token.pos})",
                construct="quoted identifier",
                position=token.pos,
            )
        return ParseError(
            f"Expected {expected}, got {token.value!r} at position {token.pos}",
            construct=token.value,
            position=token.pos,
        )

    # -- Terminals ----------------------------------------------------------

    def expect_keyword(self, word: str) -> Token:
        if not self.at_keyword(word):
            raise self.unexpected(self.peek(), word)
        return self.advance()

    def expect_punct(self, value: str) -> Token:
        if not self.at_punct(value):
            raise self.unexpected(self.peek(), f"'{value}'")
        return self.advance()

    def identifier(self, what: str = "identifier") -> str:
        token = self.peek()
        if token is None or token.kind != "word" or token.upper in KEYWORDS or token.upper in UNSUPPORTED:
            if token is not None and token.kind == "punct" and token.value == "(":
                raise ParseError(
                    f"Subqueries are not supported (position {token.pos})",
                    construct="subquery",
                    position=token.pos,
                )
            raise self.unexpected(token, what)
        self.advance()
        following = self.peek()
        if following is not None and following.kind == "punct" and following.value == ".":
            raise ParseError(
                f"Qualified names are not supported (position {token.pos})",
                construct="qualified name",
                position=token.pos,
            )
        if following is not None and following.kind == "punct" and following.value == "(" and what != "table":
            raise ParseError(
                f"Function calls are not supported: {token.value}() at position {token.pos}",
                construct="function call",
                position=token.pos,
            )
        return token.value.lower()

    def param(self) -> Param:
        token = self.peek()
        if token is not None and token.kind == "param":
            self.advance()
            return Param(int(token.value[1:]), token.pos)
        if token is not None and (token.kind in ("number", "string") or self.at_keyword("NULL", "TRUE", "FALSE")):
            raise ParseError(
                f"Literal values are not allowed in WHERE; bind a $n parameter (position {token.pos})",
                construct="literal in WHERE",
                position=token.pos,
            )
        if token is not None and token.kind == "punct" and token.value == "(":
            raise ParseError(
                f"Subqueries are not supported (position {token.pos})",
                construct="subquery",
                position=token.pos,
            )
        raise self.unexpected(token, "$n parameter")

    def value(self) -> Value:
        token = self.peek()
        if token is None:
            raise self.unexpected(None, "value")
        if token.kind == "param":
            self.advance()
            return Param(int(token.value[1:]), token.pos)
        if token.kind == "number":
            self.advance()
            text = token.value
            return Literal(Decimal(text) if "." in text else int(text))
        if token.kind == "string":
            self.advance()
            return Literal(token.value[1:-1].replace("''", "'"))
        if self.at_keyword("NULL"):
            self.advance()
            return Literal(None)
        if self.at_keyword("TRUE", "FALSE"):
            self.advance()
            return Literal(token.upper == "TRUE")
        if token.kind == "word" and token.upper not in KEYWORDS:
            following = self.peek(1)
            if following is not None and following.kind == "punct" and following.value == "(":
                raise ParseError(
                    f"Function calls are not supported: {token.value}() at position {token.pos}",
                    construct="function call",
                    position=token.pos,
                )
        if token.kind == "punct" and token.value == "(":
            raise ParseError(
                f"Subqueries are not supported (position {token.pos})",
                construct="subquery",
                position=token.pos,
            )
        raise self.unexpected(token, "value")

    def count(self) -> Value:
        token = self.peek()
        if token is not None and token.kind == "number" and "." not in token.value and not token.value.startswith("-"):
            self.advance()
            return Literal(int(token.value))
        if token is not None and token.kind == "param":
            self.advance()
            return Param(int(token.value[1:]), token.pos)
        raise self.unexpected(token, "non-negative integer or $n")

    def equality(self) -> tuple[str, Param]:
        column = self.identifier("column")
        token = self.peek()
        if token is not None and token.kind == "op" and token.value == "=":
            self.advance()
            return column, self.param()
        raise self.unexpected(token, "'='")

    def returning(self) -> bool:
        if not self.at_keyword("RETURNING"):
            return False
        self.advance()
        if not self.at_punct("*"):
            token = self.peek()
            raise ParseError(
                "Only RETURNING * is supported",
                construct="RETURNING columns",
                position=token.pos if token else len(self.sql),
            )
        self.advance()
        return True

    def key_filter(self, verb: str) -> Param:
        if not self.at_keyword("WHERE"):
            token = self.peek()
            raise ParseError(
                f"{verb} requires WHERE id = $n",
                construct=f"{verb} without WHERE",
                position=token.pos if token else len(self.sql),
            )
        self.advance()
        start = self.peek()
        column, key = self.equality()
        if column != "id":
            raise ParseError(
                f"{verb} may only filter on id, not {column}",
                construct=f"WHERE {column}",
                position=start.pos if start else 0,
            )
        if self.at_keyword("AND"):
            raise ParseError(
                f"{verb} accepts a single WHERE id = $n",
                construct="compound WHERE",
                position=self.peek().pos,  # type: ignore[union-attr]
            )
        return key

    # -- Statements ---------------------------------------------------------

    def parse(self) -> Statement:
        first = self.peek()
        if first is None:
            raise ParseError("Empty statement", construct="empty statement", position=0)
        if self.at_keyword("SELECT"):
            statement: Statement = self.select()
        elif self.at_keyword("INSERT"):
            statement = self.insert()
        elif self.at_keyword("UPDATE"):
            statement = self.update()
        elif self.at_keyword("DELETE"):
            statement = self.delete()
        else:
            raise ParseError(
                f"Unsupported statement {first.value!r}",
                construct=first.upper if first.kind == "word" else first.value,
                position=first.pos,
            )

        if self.at_punct(";"):
            self.advance()
            extra = self.peek()
            if extra is not None:
                raise ParseError(
                    "Multiple statements are not supported",
                    construct="multiple statements",
                    position=extra.pos,
                )
        extra = self.peek()
        if extra is not None:
            raise self.unexpected(extra, "end of statement")
        return statement

    def select(self) -> SelectStatement:
        self.expect_keyword("SELECT")
        if self.at_punct("*"):
            self.advance()
            columns: tuple[str, ...] = ("*",)
        else:
            names = [self.identifier("column")]
            while self.at_punct(","):
                self.advance()
                names.append(self.identifier("column"))
            columns = tuple(names)
        self.expect_keyword("FROM")
        table = self.identifier("table")
        if self.at_punct(","):
            raise ParseError(
                "Selecting from several tables is not supported",
                construct="JOIN",
                position=self.peek().pos,  # type: ignore[union-attr]
            )

        where: list[tuple[str, Param]] = []
        if self.at_keyword("WHERE"):
            self.advance()
            where.append(self.equality())
            while self.at_keyword("AND"):
                self.advance()
                where.append(self.equality())

        order: list[tuple[str, SortDirection]] = []
        if self.at_keyword("ORDER"):
            self.advance()
            self.expect_keyword("BY")
            while True:
                column = self.identifier("column")
                direction = SortDirection.ASC
                if self.at_keyword("ASC", "DESC"):
                    direction = SortDirection(self.advance().value.lower())
                order.append((column, direction))
                if not self.at_punct(","):
                    break
                self.advance()

        limit = offset = None
        if self.at_keyword("LIMIT"):
            self.advance()
            limit = self.count()
        if self.at_keyword("OFFSET"):
            self.advance()
            offset = self.count()

        return SelectStatement(table, columns, tuple(where), tuple(order), limit, offset)

    def insert(self) -> InsertStatement:
        self.expect_keyword("INSERT")
        self.expect_keyword("INTO")
        table = self.identifier("table")
        self.expect_punct("(")
        columns = [self.identifier("column")]
        while self.at_punct(","):
            self.advance()
            columns.append(self.identifier("column"))
        self.expect_punct(")")
        if len(set(columns)) != len(columns):
            raise ParseError("Duplicate column in INSERT", construct="duplicate column", position=0)

        values_token = self.expect_keyword("VALUES")
        self.expect_punct("(")
        values = [self.value()]
        while self.at_punct(","):
            self.advance()
            values.append(self.value())
        self.expect_punct(")")
        if self.at_punct(","):
            raise ParseError(
                "Multi-row VALUES is not supported",
                construct="multi-row VALUES",
                position=self.peek().pos,  # type: ignore[union-attr]
            )
        if len(values) != len(columns):
            raise ParseError(
                f"INSERT names {len(columns)} column(s) but supplies {len(values)} value(s)",
                construct="column/value count",
                position=values_token.pos,
            )
        return InsertStatement(table, tuple(columns), tuple(values), self.returning())

    def update(self) -> UpdateStatement:
        self.expect_keyword("UPDATE")
        table = self.identifier("table")
        self.expect_keyword("SET")
        assignments = []
        while True:
            column = self.identifier("column")
            token = self.peek()
            if token is None or token.kind != "op" or token.value != "=":
                raise self.unexpected(token, "'='")
            self.advance()
            assignments.append((column, self.value()))
            if not self.at_punct(","):
                break
            self.advance()
        key = self.key_filter("UPDATE")
        return UpdateStatement(table, tuple(assignments), key, self.returning())

    def delete(self) -> DeleteStatement:
        self.expect_keyword("DELETE")
        self.expect_keyword("FROM")
        table = self.identifier("table")
        key = self.key_filter("DELETE")
        return DeleteStatement(table, key, self.returning())


def parse(sql: str) -> Statement:
    """Parse one statement of the supported grammar."""
    return _Parser(sql).parse()


# =============================================================================
# INTERPRETER
# =============================================================================


def _bind(value: Value, params: Sequence[Any]) -> Any:
    if isinstance(value, Literal):
        return value.value
    if value.index < 1 or value.index > len(params):
        raise ParseError(
            f"Placeholder ${value.index} has no bound parameter ({len(params)} supplied)",
            construct=f"${value.index}",
            position=value.pos,
        )
    return params[value.index - 1]


class SQLStringInterpreter:
    """Lower supported SQL text onto one QueryAdapter call."""

    def __init__(self, adapter: QueryAdapter):
        self._adapter = adapter

    def describe(self, sql: str, params: Sequence[Any] = ()) -> QueryDescriptor:
        """The QueryDescriptor a SELECT lowers to."""
        statement = parse(sql)
        if not isinstance(statement, SelectStatement):
            raise ParseError("describe() only accepts SELECT", construct="non-SELECT statement", position=0)
        return self._descriptor(statement, params)

    def _descriptor(self, statement: SelectStatement, params: Sequence[Any]) -> QueryDescriptor:
        return QueryDescriptor(
            table=statement.table,
            select=statement.columns,
            filters={column: _bind(p, params) for column, p in statement.where},
            order=dict(statement.order),
            limit=_bind(statement.limit, params) if statement.limit is not None else None,
            offset=_bind(statement.offset, params) if statement.offset is not None else None,
        )

    def execute(self, sql: str, params: Sequence[Any] = ()) -> list[dict[str, Any]]:
        """Parse, bind, and run; always returns a list of rows."""
        statement = parse(sql)
        if isinstance(statement, SelectStatement):
            rows = self._adapter.query(self._descriptor(statement, params))
            return list(rows or [])

        if isinstance(statement, InsertStatement):
            fields = {c: _bind(v, params) for c, v in zip(statement.columns, statement.values, strict=True)}
            row = self._adapter.insert(statement.table, fields)
        elif isinstance(statement, UpdateStatement):
            fields = {c: _bind(v, params) for c, v in statement.assignments}
            row = self._adapter.update(statement.table, fields, {"id": _bind(statement.key, params)})
        else:
            row = self._adapter.delete(statement.table, {"id": _bind(statement.key, params)})

        if not statement.returning or row is None:
            return []
        return [row]


__all__ = [
    "Token",
    "tokenize",
    "Param",
    "Literal",
    "SelectStatement",
    "InsertStatement",
    "UpdateStatement",
    "DeleteStatement",
    "Statement",
    "parse",
    "SQLStringInterpreter",
]
