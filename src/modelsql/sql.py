"""
SQL statement compilation for model operations.

Each compile function turns model metadata plus a query or attribute mapping
into a ``Statement``: SQL text and the ordered values for its positional
placeholders.

    compile_select(model, query)         select "t".* from "t" where ...
    compile_select_count(model, query)   select COUNT(*) as _count from "t" ...
    compile_insert(model, attributes)    insert into "t" (...) values (...)
    compile_update(model, pk, changes)   update "t" set ... where "t"."pk" = pk
    compile_delete(model, pk)            delete from "t" where "t"."pk" = pk

Identifiers are always double-quoted. Strings and numbers given for plain
attributes are inlined as quoted literals; values of converted types
(boolean, date, uuid) and any other Python object are bound through the
dialect placeholder (``?`` for sqlite, ``%s`` for postgresql).
"""
import logging
import math
import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from modelsql.dialect import Dialect, get_dialect
from modelsql.exceptions import ValidationError
from modelsql.mapper import column_name_for
from modelsql.model import Attribute, Model
from modelsql.query import Comparison, Equality, Logical, Query, parse_query
from modelsql.types import COERCED_TYPES, to_column

logger = logging.getLogger(__name__)

COMPARISON_SQL = {
    'eq': '=',
    'ne': '<>',
    'gt': '>',
    'gte': '>=',
    'lt': '<',
    'lte': '<=',
    'like': 'like',
}

_IDENTIFIER = re.compile(r'^[A-Za-z_][A-Za-z0-9_]*$')
_STRING_LITERAL = re.compile(r"'(?:[^']|'')*'")


@dataclass(frozen=True, slots=True)
class Statement:
    """Compiled SQL text and its bound values."""
    sql: str
    values: tuple = ()


def quote_identifier(identifier: str, dialect: str = 'sqlite') -> str:
    """Safely quote database identifiers.

    Parameters
        identifier: Table or column name
        dialect: Database dialect

    Returns
        Quoted identifier

    Raises
        ValueError: If dialect is unsupported
    """
    if dialect in {'postgresql', 'sqlite'}:
        return '"' + identifier.replace('"', '""') + '"'

    raise ValueError(f'Unknown dialect: {dialect}')


def quote_literal(value: Any) -> str:
    """Render a string or number as an SQL literal.
    """
    if value is None:
        return 'null'
    if isinstance(value, str):
        return "'" + value.replace("'", "''") + "'"
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    if isinstance(value, float) and math.isfinite(value):
        return repr(value)
    raise ValueError(f'Cannot inline {type(value).__name__} value')


def _escape_percent_in_literals(sql: str) -> str:
    """Double ``%`` inside string literals for format-style drivers."""
    if '%' not in sql:
        return sql
    return _STRING_LITERAL.sub(lambda m: m.group(0).replace('%', '%%'), sql)


def _inlinable(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, float):
        return math.isfinite(value)
    return isinstance(value, str | int)


class _Builder:
    """Collects SQL fragments and bound values for one statement."""

    def __init__(self, model: Model, dialect: Dialect) -> None:
        self.model = model
        self.dialect = dialect
        self.values: list[Any] = []

    def ident(self, name: str) -> str:
        return quote_identifier(name, self.dialect.name)

    @property
    def table(self) -> str:
        return self.ident(self.model.table_name)

    def column(self, key: str) -> tuple[str, Attribute | None]:
        """Column reference for a filter key and the attribute behind it.

        Keys without a declared attribute (relation keys such as ``tag_id``)
        are referenced unqualified.
        """
        attribute = self.model.get(key)
        if attribute is None:
            if not isinstance(key, str) or not _IDENTIFIER.match(key):
                raise ValidationError(f'Invalid filter key {key!r} for {self.model.name}')
            logger.debug(f'Passing through undeclared key {key!r} on {self.model.name}')
            return self.ident(key), None
        return f'{self.table}.{self.ident(column_name_for(attribute))}', attribute

    def coerce(self, attribute: Attribute | None, value: Any) -> Any:
        if attribute is None:
            return to_column(None, None, value)
        return to_column(attribute.type, attribute.column_type, value, attribute.name)

    def value(self, attribute: Attribute | None, value: Any) -> str:
        """Render a value, inlining plain literals and binding the rest.
        """
        coerced = self.coerce(attribute, value)
        if coerced is None:
            return 'null'
        typed = attribute is not None and attribute.type in COERCED_TYPES
        if not typed and _inlinable(coerced):
            return quote_literal(coerced)
        self.values.append(coerced)
        return self.dialect.placeholder

    def predicate(self, clause: Any, nested: bool = False) -> str | None:
        if isinstance(clause, Equality):
            column, attribute = self.column(clause.key)
            rendered = self.value(attribute, clause.value)
            if rendered == 'null':
                return f'{column} is null'
            return f'{column} = {rendered}'

        if isinstance(clause, Comparison):
            column, attribute = self.column(clause.key)
            if clause.op in {'in', 'nin'}:
                return self.membership(column, attribute, clause)
            if clause.op not in COMPARISON_SQL:
                raise ValidationError(f'Unknown comparison {clause.op!r}')
            rendered = self.value(attribute, clause.value)
            if rendered == 'null':
                if clause.op == 'ne':
                    return f'{column} is not null'
                if clause.op == 'eq':
                    return f'{column} is null'
                raise ValidationError(f'Cannot compare {clause.key!r} with null')
            return f'{column} {COMPARISON_SQL[clause.op]} {rendered}'

        if isinstance(clause, Logical):
            parts = [p for p in (self.predicate(c, nested=True) for c in clause.clauses) if p]
            if not parts:
                return None
            if len(parts) == 1:
                return parts[0]
            joined = f' {clause.op} '.join(parts)
            return f'({joined})' if nested else joined

        raise ValidationError(f'Unsupported clause {clause!r}')

    def membership(self, column: str, attribute: Attribute | None,
                   clause: Comparison) -> str:
        if not clause.value:
            # Nothing is in an empty set
            return '1 = 0' if clause.op == 'in' else '1 = 1'
        rendered = ', '.join(self.value(attribute, item) for item in clause.value)
        keyword = 'in' if clause.op == 'in' else 'not in'
        return f'{column} {keyword} ({rendered})'

    def where(self, query: Query) -> str:
        if query.where is None:
            return ''
        predicate = self.predicate(query.where)
        return f' where {predicate}' if predicate else ''

    def order_by(self, query: Query) -> str:
        if not query.sort:
            return ''
        terms = [f'{self.column(key)[0]} {direction}' for key, direction in query.sort]
        return ' order by ' + ', '.join(terms)

    def primary_predicate(self, pk: Any) -> str:
        if pk is None:
            raise ValidationError(f'A primary key value is required for {self.model.name}')
        primary = self.model.primary
        column = self.ident(column_name_for(primary))
        return f'{self.table}.{column} = {self.value(primary, pk)}'

    def statement(self, sql: str) -> Statement:
        if self.dialect.escapes_percent:
            sql = _escape_percent_in_literals(sql)
        logger.debug(f'Compiled: {sql} with {len(self.values)} parameters')
        return Statement(sql, tuple(self.values))


def compile_select(model: Model, query: Mapping | Query | None = None,
                   dialect: str = 'sqlite') -> Statement:
    """Compile a select of whole rows matching the query.

    Limit/offset are appended when the query carries pagination; page mode
    is converted to the equivalent limit and offset.
    """
    query = parse_query(query)
    b = _Builder(model, get_dialect(dialect))
    sql = f'select {b.table}.* from {b.table}' + b.where(query) + b.order_by(query)
    if query.paginated:
        limit, offset = query.window()
        sql += f' limit {limit} offset {offset}'
    return b.statement(sql)


def compile_select_count(model: Model, query: Mapping | Query | None = None,
                         dialect: str = 'sqlite') -> Statement:
    """Compile a count of rows matching the query, ignoring pagination.
    """
    query = parse_query(query)
    b = _Builder(model, get_dialect(dialect))
    return b.statement(f'select COUNT(*) as _count from {b.table}' + b.where(query))


def _declared_items(model: Model, attributes: Mapping) -> list[tuple[Attribute, Any]]:
    items = []
    for key, value in attributes.items():
        attribute = model.get(key)
        if attribute is None:
            logger.debug(f'Removed attribute {key} not in {model.name}')
            continue
        items.append((attribute, value))
    return items


def compile_insert(model: Model, attributes: Mapping, dialect: str = 'sqlite') -> Statement:
    """Compile an insert of the given attribute values.

    Undeclared keys are dropped and a missing primary key is left for the
    database to generate.
    """
    b = _Builder(model, get_dialect(dialect))
    primary = model.primary
    items = [(a, v) for a, v in _declared_items(model, attributes)
             if not (a is primary and v is None)]

    if items:
        columns = ', '.join(b.ident(column_name_for(a)) for a, _ in items)
        rendered = ', '.join(b.value(a, v) for a, v in items)
        sql = f'insert into {b.table} ({columns}) values ({rendered})'
    else:
        sql = f'insert into {b.table} default values'

    if b.dialect.supports_returning:
        sql += f' returning {b.ident(column_name_for(primary))}'
    return b.statement(sql)


def compile_update(model: Model, pk: Any, changes: Mapping,
                   dialect: str = 'sqlite') -> Statement | None:
    """Compile an update of changed attributes for the row with primary key ``pk``.

    Returns
        Statement, or None when there is nothing to change
    """
    b = _Builder(model, get_dialect(dialect))
    primary = model.primary
    items = [(a, v) for a, v in _declared_items(model, changes) if a is not primary]
    if not items:
        logger.debug(f'No changes to update for {model.name} {pk!r}')
        return None

    assignments = ', '.join(f'{b.ident(column_name_for(a))} = {b.value(a, v)}' for a, v in items)
    return b.statement(f'update {b.table} set {assignments} where {b.primary_predicate(pk)}')


def compile_delete(model: Model, pk: Any, dialect: str = 'sqlite') -> Statement:
    """Compile a delete of the row with primary key ``pk``.
    """
    b = _Builder(model, get_dialect(dialect))
    return b.statement(f'delete from {b.table} where {b.primary_predicate(pk)}')
