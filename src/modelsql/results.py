"""
Result normalization: raw rows to model-shaped records with pagination.
"""
import logging
import math
from collections.abc import Iterable, Mapping
from typing import Any

from modelsql.mapper import resolve_key
from modelsql.model import Model
from modelsql.query import Query, parse_query
from modelsql.types import from_column

from libb import attrdict

logger = logging.getLogger(__name__)


class Collection(list):
    """Records returned by ``find_all`` plus their pagination window.

    Direct mode carries ``limit`` and ``offset``; page mode carries ``page``,
    ``page_size`` and ``pages``. ``total`` is set when the total row count
    of the unpaginated query is known.
    """

    def __init__(self, items: Iterable = (), limit: int | None = None,
                 offset: int | None = None, page: int | None = None,
                 page_size: int | None = None, pages: int | None = None,
                 total: int | None = None) -> None:
        super().__init__(items)
        self.limit = limit
        self.offset = offset
        self.page = page
        self.page_size = page_size
        self.pages = pages
        self.total = total

    @property
    def paged(self) -> bool:
        return self.page is not None

    def to_dict(self) -> dict[str, Any]:
        """Serializable representation with the pagination properties.
        """
        data: dict[str, Any] = {'collection': [dict(record) for record in self]}
        if self.paged:
            data.update(page=self.page, page_size=self.page_size, pages=self.pages,
                        total=self.total)
            return data
        data.update(limit=self.limit, offset=self.offset)
        if self.total is not None:
            data['total'] = self.total
        return data


def _row_to_dict(row: Any) -> dict[str, Any]:
    if isinstance(row, dict):
        return row
    if hasattr(row, 'keys') and callable(row.keys):
        return {key: row[key] for key in row.keys()}  # noqa: SIM118
    if hasattr(row, '_asdict'):
        return row._asdict()
    return dict(row)


def normalize_row(model: Model, row: Mapping[str, Any]) -> attrdict:
    """Map a raw result row to attribute names and runtime types.

    Keys that resolve to no attribute are dropped. When a row carries both a
    bare and a table-prefixed key for one attribute, the bare key wins.
    """
    record = attrdict()
    from_bare: set[str] = set()
    for key, raw in _row_to_dict(row).items():
        attribute, bare = resolve_key(model, key)
        if attribute is None:
            continue
        if not bare and attribute.name in from_bare:
            continue
        record[attribute.name] = from_column(attribute.type, raw, attribute.name)
        if bare:
            from_bare.add(attribute.name)
    return record


def normalize_collection(model: Model, rows: Iterable[Mapping[str, Any]],
                         query: Mapping | Query | None = None,
                         total: int | None = None, default_limit: int = 50) -> Collection:
    """Normalize rows and attach the pagination window of the query.

    In page mode ``pages`` is ``ceil(total / page_size)``, where ``total``
    must be the row count of the unpaginated query; it stays None when the
    total is unknown.
    """
    query = parse_query(query)
    records = [normalize_row(model, row) for row in rows]
    limit, offset = query.window(default_limit)

    if query.paged:
        pages = math.ceil(total / limit) if total is not None else None
        return Collection(records, page=query.page or 1, page_size=limit,
                          pages=pages, total=total)

    return Collection(records, limit=limit, offset=offset, total=total)


def normalize_count(rows: list[Mapping[str, Any]]) -> int:
    """Extract the count from a ``select COUNT(*)`` result.
    """
    if not rows:
        logger.debug('Count query returned no rows')
        return 0
    row = _row_to_dict(rows[0])
    value = row.get('_count')
    if value is None and row:
        value = next(iter(row.values()))
    return int(value or 0)
