"""
Pooled connections for the adapter, backed by SQLAlchemy.

The executor only relies on the small ``Pool`` / ``PooledConnection``
protocols defined here, so any object with the same methods can be injected
(test doubles, other drivers). ``SqlAlchemyPool`` is the implementation used
in production:

- ``get_connection()`` checks out an exclusive engine connection
- ``query(sql, values)`` runs on one shared connection
- ``on('connection' | 'error', handler)`` subscribes to pool events

Disconnects reported by SQLAlchemy's ``handle_error`` event are emitted as
``error`` events carrying a ``PoolError`` with the affected connection.
"""
import atexit
import logging
import threading
import time
from collections import defaultdict
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field, fields
from typing import Any, Protocol

import sqlalchemy as sa
from modelsql.dialect import get_dialect
from modelsql.exceptions import PoolError
from modelsql.options import AdapterOptions
from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.pool import NullPool, StaticPool

from libb import load_options

__all__ = [
    'QueryResult',
    'Pool',
    'PooledConnection',
    'SqlAlchemyConnection',
    'SqlAlchemyPool',
    'connect',
    'dispose_all_pools',
]

logger = logging.getLogger(__name__)

_pool_registry: dict[str, 'SqlAlchemyPool'] = {}
_pool_registry_lock = threading.RLock()


@dataclass(slots=True)
class QueryResult:
    """Rows and driver metadata returned by one statement."""
    rows: list[dict[str, Any]] = field(default_factory=list)
    rowcount: int = -1
    lastrowid: Any = None
    total: int | None = None


class PooledConnection(Protocol):
    def query(self, sql: str, values: Sequence[Any] = ()) -> QueryResult: ...

    def release(self) -> None: ...

    def destroy(self) -> None: ...


class Pool(Protocol):
    dialect: str

    def get_connection(self) -> PooledConnection: ...

    def query(self, sql: str, values: Sequence[Any] = ()) -> QueryResult: ...

    def on(self, event: str, handler: Callable[..., None]) -> None: ...


class SqlAlchemyConnection:
    """Wraps a checked-out SQLAlchemy connection to track calls and execution time
    """

    def __init__(self, sa_connection: sa.engine.Connection,
                 pool: 'SqlAlchemyPool | None' = None) -> None:
        self.sa_connection = sa_connection
        self.pool = pool
        self.dialect = sa_connection.engine.dialect.name
        self.released = False
        self.destroyed = False
        self.calls = 0
        self.time = 0

    def addcall(self, elapsed: float) -> None:
        """Track execution statistics
        """
        self.time += elapsed
        self.calls += 1

    @property
    def usable(self) -> bool:
        return not (self.released or self.destroyed
                    or self.sa_connection.closed or self.sa_connection.invalidated)

    def query(self, sql: str, values: Sequence[Any] = ()) -> QueryResult:
        """Execute one statement and commit it.
        """
        start = time.time()
        try:
            result = self.sa_connection.exec_driver_sql(sql, tuple(values))
            rows = [dict(row) for row in result.mappings()] if result.returns_rows else []
            lastrowid = result.lastrowid if self.dialect == 'sqlite' else None
            rowcount = result.rowcount
            self.sa_connection.commit()
        except Exception:
            if self.usable:
                try:
                    self.sa_connection.rollback()
                except Exception as err:
                    logger.debug(f'Rollback after failed statement failed: {err}')
            raise
        finally:
            self.addcall(time.time() - start)
        logger.debug(f'Executed query with {len(values)} parameters, {len(rows)} rows')
        return QueryResult(rows=rows, rowcount=rowcount, lastrowid=lastrowid)

    def release(self) -> None:
        """Return the connection to the pool. Safe to call more than once.
        """
        if self.released:
            return
        self.released = True
        if self.pool is not None:
            self.pool.forget(self)
        if not self.sa_connection.closed:
            self.sa_connection.close()
        logger.debug(f'Connection released: {self.calls} queries in {self.time:.2f}s')

    def destroy(self) -> None:
        """Invalidate the underlying DBAPI connection so the pool discards it.
        """
        if self.destroyed:
            return
        self.destroyed = True
        if not self.sa_connection.closed and not self.sa_connection.invalidated:
            self.sa_connection.invalidate()
        logger.debug('Connection destroyed')


class SqlAlchemyPool:
    """Pool implementation over a SQLAlchemy engine.
    """

    def __init__(self, engine: Engine, options: AdapterOptions | None = None) -> None:
        self.engine = engine
        self.options = options
        self.dialect = engine.dialect.name
        self._handlers: dict[str, list[Callable[..., None]]] = defaultdict(list)
        self._checked_out: dict[int, SqlAlchemyConnection] = {}
        self._shared: SqlAlchemyConnection | None = None
        self._lock = threading.RLock()
        event.listen(engine, 'connect', self._on_connect)
        event.listen(engine, 'handle_error', self._on_handle_error)

    @property
    def is_pooled(self) -> bool:
        """Check if the engine uses a real pool rather than NullPool
        """
        return not isinstance(self.engine.pool, NullPool)

    def on(self, event_name: str, handler: Callable[..., None]) -> None:
        """Subscribe to ``connection`` or ``error`` events.
        """
        if event_name not in {'connection', 'error'}:
            raise ValueError(f'Unknown pool event: {event_name}')
        self._handlers[event_name].append(handler)

    def emit(self, event_name: str, payload: Any) -> None:
        handlers = self._handlers.get(event_name, [])
        if event_name == 'error' and not handlers:
            logger.error(f'Unhandled pool error: {payload}')
        for handler in handlers:
            handler(payload)

    def get_connection(self) -> SqlAlchemyConnection:
        """Check out an exclusive connection.
        """
        connection = SqlAlchemyConnection(self.engine.connect(), pool=self)
        with self._lock:
            self._checked_out[id(connection.sa_connection)] = connection
        return connection

    def forget(self, connection: SqlAlchemyConnection) -> None:
        with self._lock:
            self._checked_out.pop(id(connection.sa_connection), None)

    def query(self, sql: str, values: Sequence[Any] = ()) -> QueryResult:
        """Run a statement on the shared connection, reconnecting if it was lost.
        """
        with self._lock:
            if self._shared is None or not self._shared.usable:
                if self._shared is not None:
                    self._shared.release()
                self._shared = self.get_connection()
            return self._shared.query(sql, values)

    def dispose(self) -> None:
        """Release the shared connection and dispose the engine.
        """
        with self._lock:
            if self._shared is not None:
                self._shared.release()
                self._shared = None
        self.engine.dispose()
        logger.debug(f'Disposed {self.dialect} pool')

    def _on_connect(self, dbapi_connection: Any, connection_record: Any) -> None:
        self.emit('connection', dbapi_connection)

    def _on_handle_error(self, context: Any) -> None:
        if not context.is_disconnect:
            return
        affected = None
        if context.connection is not None:
            with self._lock:
                affected = self._checked_out.get(id(context.connection))
        error = PoolError(str(context.original_exception), connection=affected)
        error.__cause__ = context.original_exception
        self.emit('error', error)


def create_engine_for_options(options: AdapterOptions,
                              engine_factory: Callable[..., Engine] = sa.create_engine,
                              **kwargs: Any) -> Engine:
    """Create a SQLAlchemy engine for the given options.
    """
    url = get_dialect(options.drivername).build_url(options)

    engine_kwargs: dict[str, Any] = {'echo': False}

    if options.drivername == 'sqlite' and options.database == ':memory:':
        # Every checkout must see the same in-memory database
        engine_kwargs['poolclass'] = StaticPool
        engine_kwargs['connect_args'] = {'check_same_thread': False}
    elif not options.use_pool:
        engine_kwargs['poolclass'] = NullPool
    else:
        engine_kwargs['pool_size'] = options.pool_max_connections
        engine_kwargs['pool_recycle'] = options.pool_max_idle_time
        engine_kwargs['pool_timeout'] = options.pool_wait_timeout
        engine_kwargs['max_overflow'] = 10
        engine_kwargs['pool_pre_ping'] = True
        engine_kwargs['pool_reset_on_return'] = 'rollback'

    engine_kwargs.update(kwargs)
    return engine_factory(url, **engine_kwargs)


def get_pool_for_options(options: AdapterOptions, **kwargs: Any) -> SqlAlchemyPool:
    """Get or create the pool shared by every adapter using these options.
    """
    key = str(options)

    with _pool_registry_lock:
        if key in _pool_registry:
            logger.debug(f'Using existing pool for {options.drivername}')
            return _pool_registry[key]

        pool = SqlAlchemyPool(create_engine_for_options(options, **kwargs), options)
        _pool_registry[key] = pool
        logger.debug(f'Created new pool for {options.drivername}')
        return pool


def dispose_all_pools() -> None:
    """Dispose all pools in the registry.
    """
    with _pool_registry_lock:
        for pool in list(_pool_registry.values()):
            pool.dispose()
        _pool_registry.clear()
        logger.debug('All pools disposed')


atexit.register(dispose_all_pools)


@load_options(cls=AdapterOptions)
def connect(options: AdapterOptions | dict[str, Any] | str,
            config: Any | None = None, **kw: Any) -> SqlAlchemyPool:
    """Create (or reuse) the connection pool described by the options

    Args:
        options: Can be:
                - AdapterOptions object
                - String path to configuration
                - Dictionary of options
                - Options specified as keyword arguments
        config: Configuration object (for loading from config files)
        **kw: Additional keyword arguments to override options

    Returns
        SqlAlchemyPool shared by all adapters created with the same options
    """
    if isinstance(options, AdapterOptions):
        for option in fields(options):
            kw.pop(option.name, None)
    else:
        options_func = load_options(cls=AdapterOptions)(lambda o, c: o)
        options = options_func(options, config, **kw)

    return get_pool_for_options(options)
