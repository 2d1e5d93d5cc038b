"""
Model persistence operations.

The Adapter binds one model to a pool and exposes the operations a model
layer calls:

- find_all(spec) - Paginated Collection of records matching spec
- find_one(id_or_spec) - First matching record or None
- count(spec) - Number of matching rows
- save(attributes) - Insert, or update when the primary key is set
- remove(id) - Delete by primary key

Each operation compiles its statement, runs it through the retrying
Executor and normalizes the returned rows.
"""
import logging
from collections.abc import Iterable, Mapping
from dataclasses import fields
from typing import Any

from modelsql.connection import Pool, connect
from modelsql.executor import Executor
from modelsql.model import Model
from modelsql.options import AdapterOptions
from modelsql.query import Equality, Query, parse_query
from modelsql.results import Collection, normalize_collection, normalize_count
from modelsql.results import normalize_row
from modelsql.sql import compile_delete, compile_insert, compile_select
from modelsql.sql import compile_select_count, compile_update

from libb import attrdict, load_options

__all__ = ['Adapter', 'use']

logger = logging.getLogger(__name__)


class Adapter:
    """Persistence operations for one model over a pool.

    Args:
        model: Model metadata
        pool: Pool providing connections (``SqlAlchemyPool`` or any object
            implementing the ``Pool`` protocol)
        retry_attempts: Total attempts for statements hitting transient errors
        retry_delay: Seconds to wait before the first retry
        retry_backoff: Delay multiplier between retries
        shared_connection: Use the pool's shared connection for every statement
        default_limit: Page size when a query does not request one
    """

    def __init__(self, model: Model, pool: Pool, retry_attempts: int = 3,
                 retry_delay: float = 0.05, retry_backoff: float = 1.5,
                 shared_connection: bool = False, default_limit: int = 50,
                 executor: Executor | None = None) -> None:
        self.model = model
        self.pool = pool
        self.dialect = pool.dialect
        self.default_limit = default_limit
        self.executor = executor or Executor(pool, attempts=retry_attempts,
                                             delay=retry_delay, backoff=retry_backoff,
                                             shared=shared_connection)

    def __repr__(self) -> str:
        return f'Adapter({self.model!r}, dialect={self.dialect!r})'

    @classmethod
    def from_options(cls, model: Model, options: AdapterOptions,
                     pool: Pool | None = None) -> 'Adapter':
        return cls(model, pool or connect(options),
                   retry_attempts=options.retry_attempts,
                   retry_delay=options.retry_delay,
                   retry_backoff=options.retry_backoff,
                   shared_connection=options.shared_connection,
                   default_limit=options.default_limit)

    def find_all(self, spec: Mapping | Query | None = None) -> Collection:
        """Find records matching spec, one page at a time.

        Without pagination fields the first ``default_limit`` rows are
        returned. In page mode the total row count is taken from the driver
        when reported, else counted with a second statement.
        """
        query = parse_query(spec).with_defaults(self.default_limit)
        result = self.executor.execute(compile_select(self.model, query, self.dialect))

        total = result.total
        if query.paged and total is None:
            total = self.count(Query(where=query.where))

        collection = normalize_collection(self.model, result.rows, query, total,
                                          self.default_limit)
        logger.debug(f'Found {len(collection)} {self.model.name} records')
        return collection

    def find_one(self, id_or_spec: Any) -> attrdict | None:
        """Find a record by primary key value or by query spec.

        A spec lookup fetches a single row; its sort and offset still apply.
        """
        if isinstance(id_or_spec, Mapping | Query):
            parsed = parse_query(id_or_spec)
            offset = parsed.window(self.default_limit)[1] if parsed.paginated else 0
            query = Query(parsed.where, parsed.sort, limit=1, offset=offset)
        else:
            query = Query(where=Equality(self.model.primary.name, id_or_spec))
        result = self.executor.execute(compile_select(self.model, query, self.dialect))
        if not result.rows:
            return None
        return normalize_row(self.model, result.rows[0])

    def count(self, spec: Mapping | Query | None = None) -> int:
        """Count rows matching spec; pagination fields are ignored.
        """
        statement = compile_select_count(self.model, spec, self.dialect)
        return normalize_count(self.executor.execute(statement).rows)

    def insert(self, attributes: Mapping[str, Any]) -> attrdict:
        """Insert a record and return its attributes with the generated key.
        """
        result = self.executor.execute(compile_insert(self.model, attributes, self.dialect))
        record = attrdict(attributes)
        primary = self.model.primary.name
        if record.get(primary) is None:
            generated = None
            if result.rows:
                generated = normalize_row(self.model, result.rows[0]).get(primary)
            if generated is None:
                generated = result.lastrowid
            if generated is not None:
                record[primary] = generated
        return record

    def update(self, pk: Any, changes: Mapping[str, Any]) -> int:
        """Update changed attributes of one record, returning the affected row count.

        Nothing is executed when there are no changes.
        """
        statement = compile_update(self.model, pk, changes, self.dialect)
        if statement is None:
            return 0
        return self.executor.execute(statement).rowcount

    def save(self, attributes: Mapping[str, Any],
             changed: Iterable[str] | None = None) -> attrdict:
        """Insert a new record or update an existing one.

        A record with a primary key value is updated with the attributes
        named in ``changed`` (all given attributes by default); otherwise it
        is inserted.
        """
        primary = self.model.primary.name
        pk = attributes.get(primary)
        if pk is None:
            return self.insert(attributes)
        names = list(changed) if changed is not None else [k for k in attributes if k != primary]
        self.update(pk, {name: attributes[name] for name in names if name in attributes})
        return attrdict(attributes)

    def remove(self, pk: Any) -> int:
        """Delete a record by primary key, returning the affected row count.
        """
        return self.executor.execute(compile_delete(self.model, pk, self.dialect)).rowcount


def use(model: Model, options: AdapterOptions | dict[str, Any] | str,
        config: Any | None = None, pool: Pool | None = None, **kw: Any) -> Adapter:
    """Create an Adapter for a model from options

    Args:
        model: Model metadata
        options: AdapterOptions, configuration path, dictionary of options
        config: Configuration object (for loading from config files)
        pool: Pool to use instead of the one described by the options
        **kw: Additional keyword arguments to override options

    Returns
        Adapter bound to the shared pool for these options
    """
    if isinstance(options, AdapterOptions):
        for option in fields(options):
            kw.pop(option.name, None)
    else:
        options_func = load_options(cls=AdapterOptions)(lambda o, c: o)
        options = options_func(options, config, **kw)

    return Adapter.from_options(model, options, pool=pool)
