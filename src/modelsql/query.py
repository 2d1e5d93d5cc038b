"""
Query specification parsing.

Callers describe queries with plain mappings:

    {'name': 'alex'}                                  equality
    {'age': {'$gt': 18, '$lt': 65}}                   comparisons, and'ed
    {'$or': {'id': 1, 'name': 'jeff'}}                disjunction
    {'$or': [{'id': 1}, {'name': 'jeff', 'age': 3}]}  disjunction of groups
    {'id': [1, 2, 3]}                                 membership
    {'deleted_at': None}                              is null
    {'where': {...}, 'sort': '-name', 'page': 2, 'pageSize': 25}

``parse_query`` lowers a mapping once into a frozen ``Query`` whose filter is
a tree of ``Equality``, ``Comparison`` and ``Logical`` nodes, so the compiler
never has to inspect raw shapes.
"""
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Union

from modelsql.exceptions import ValidationError

from libb import isiterable

logger = logging.getLogger(__name__)

OPERATORS = {
    '$eq': 'eq',
    '$ne': 'ne',
    '$gt': 'gt',
    '$gte': 'gte',
    '$lt': 'lt',
    '$lte': 'lte',
    '$in': 'in',
    '$nin': 'nin',
    '$like': 'like',
}

LOGICAL = {'$or': 'or', '$and': 'and'}

PAGINATION_KEYS = {'limit', 'offset', 'page', 'pageSize', 'page_size'}
RESERVED_KEYS = PAGINATION_KEYS | {'where', 'sort', 'order'}


@dataclass(frozen=True, slots=True)
class Equality:
    key: str
    value: Any


@dataclass(frozen=True, slots=True)
class Comparison:
    key: str
    op: str
    value: Any


@dataclass(frozen=True, slots=True)
class Logical:
    op: str
    clauses: tuple['Clause', ...]


Clause = Union[Equality, Comparison, Logical]


@dataclass(frozen=True, slots=True)
class Query:
    """A parsed query: filter tree, ordering and pagination."""
    where: Clause | None = None
    sort: tuple[tuple[str, str], ...] = ()
    limit: int | None = None
    offset: int | None = None
    page: int | None = None
    page_size: int | None = None

    @property
    def paged(self) -> bool:
        """Page mode wins over limit/offset when both are given."""
        return self.page is not None or self.page_size is not None

    @property
    def paginated(self) -> bool:
        return self.paged or self.limit is not None or self.offset is not None

    def window(self, default_limit: int = 50) -> tuple[int, int]:
        """Resolve the (limit, offset) pair this query asks for.
        """
        if self.paged:
            page = self.page or 1
            page_size = self.page_size or default_limit
            return page_size, (page - 1) * page_size
        limit = self.limit if self.limit is not None else default_limit
        offset = self.offset if self.offset is not None else 0
        return limit, offset

    def with_defaults(self, default_limit: int = 50) -> 'Query':
        """Copy of this query with every pagination field resolved.
        """
        if self.paged:
            return Query(self.where, self.sort, page=self.page or 1,
                         page_size=self.page_size or default_limit)
        limit, offset = self.window(default_limit)
        return Query(self.where, self.sort, limit=limit, offset=offset)


def _to_int(key: str, value: Any, minimum: int) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValidationError(f'{key} must be an integer, got {value!r}')
    try:
        number = int(value)
    except (TypeError, ValueError) as err:
        raise ValidationError(f'{key} must be an integer, got {value!r}') from err
    if number < minimum:
        raise ValidationError(f'{key} must be at least {minimum}, got {number}')
    return number


def _is_list(value: Any) -> bool:
    return isiterable(value) and not isinstance(value, str | bytes | bytearray | Mapping)


def _parse_operators(key: str, operators: Mapping) -> list[Clause]:
    clauses: list[Clause] = []
    for name, operand in operators.items():
        if name not in OPERATORS:
            raise ValidationError(f'Unknown operator {name!r} for {key!r}')
        op = OPERATORS[name]
        if op in {'in', 'nin'}:
            if not _is_list(operand):
                raise ValidationError(f'{name} for {key!r} expects a list')
            operand = tuple(operand)
        if op == 'eq':
            clauses.append(Equality(key, operand))
        else:
            clauses.append(Comparison(key, op, operand))
    return clauses


def _parse_group(op: str, value: Any) -> Logical:
    if isinstance(value, Mapping):
        clauses = tuple(parse_filter(value, flatten=True))
    elif _is_list(value):
        clauses = tuple(_and(parse_filter(item)) for item in value)
    else:
        raise ValidationError(f'${op} expects a mapping or a list of mappings')
    return Logical(op, tuple(c for c in clauses if c is not None))


def _and(clauses: list[Clause]) -> Clause | None:
    if not clauses:
        return None
    if len(clauses) == 1:
        return clauses[0]
    return Logical('and', tuple(clauses))


def parse_filter(spec: Mapping, flatten: bool = False) -> list[Clause]:
    """Lower a filter mapping into a list of clauses to be and'ed.

    With ``flatten`` the comparisons of one key are returned as separate
    clauses, which is how entries of an ``$or`` mapping are combined.
    """
    if not isinstance(spec, Mapping):
        raise ValidationError(f'Filter must be a mapping, got {type(spec).__name__}')
    clauses: list[Clause] = []
    for key, value in spec.items():
        if key in LOGICAL:
            clauses.append(_parse_group(LOGICAL[key], value))
        elif isinstance(key, str) and key.startswith('$'):
            raise ValidationError(f'Unknown logical operator {key!r}')
        elif isinstance(value, Mapping):
            found = _parse_operators(key, value)
            if flatten:
                clauses.extend(found)
            elif found:
                clauses.append(_and(found))
        elif _is_list(value):
            clauses.append(Comparison(key, 'in', tuple(value)))
        else:
            clauses.append(Equality(key, value))
    return clauses


def parse_sort(sort: Any) -> tuple[tuple[str, str], ...]:
    """Normalize ordering: ``'-name'``, ``['name', '-id']`` or ``{'name': 'desc'}``.
    """
    if not sort:
        return ()
    if isinstance(sort, str):
        sort = [part.strip() for part in sort.split(',') if part.strip()]
    if isinstance(sort, Mapping):
        items = []
        for key, direction in sort.items():
            _check_sort_key(key)
            # True == 1 would otherwise read as ascending
            if isinstance(direction, bool):
                raise ValidationError(f'Invalid sort direction {direction!r} for {key!r}')
            if isinstance(direction, str):
                direction = direction.lower()
            if direction in {'desc', -1}:
                items.append((key, 'desc'))
            elif direction in {'asc', 1}:
                items.append((key, 'asc'))
            else:
                raise ValidationError(f'Invalid sort direction {direction!r} for {key!r}')
        return tuple(items)
    if not isiterable(sort):
        raise ValidationError(f'Invalid sort {sort!r}')
    items = []
    for key in sort:
        _check_sort_key(key)
        if key.startswith('-'):
            items.append((key[1:], 'desc'))
        else:
            items.append((key.lstrip('+'), 'asc'))
    return tuple(items)


def _check_sort_key(key: Any) -> None:
    if not isinstance(key, str):
        raise ValidationError(f'Sort key must be a string, got {key!r}')


def parse_query(spec: Mapping | Query | None) -> Query:
    """Parse a query specification mapping into a Query.

    The mapping is read, never modified. Filters given under ``where`` are
    combined with filters given at the top level.
    """
    if spec is None:
        return Query()
    if isinstance(spec, Query):
        return spec
    if not isinstance(spec, Mapping):
        raise ValidationError(f'Query must be a mapping, got {type(spec).__name__}')

    filters = {k: v for k, v in spec.items() if k not in RESERVED_KEYS}
    clauses = parse_filter(filters)
    if spec.get('where') is not None:
        clauses.extend(parse_filter(spec['where']))

    page_size = spec.get('pageSize', spec.get('page_size'))
    query = Query(
        where=_and(clauses),
        sort=parse_sort(spec.get('sort', spec.get('order'))),
        limit=_to_int('limit', spec.get('limit'), 0),
        offset=_to_int('offset', spec.get('offset'), 0),
        page=_to_int('page', spec.get('page'), 1),
        page_size=_to_int('pageSize', page_size, 1),
    )
    if query.paged and (query.limit is not None or query.offset is not None):
        logger.debug('Both page and limit/offset given, using page/pageSize')
    return query
