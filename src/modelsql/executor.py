"""
Statement execution with retry on transient backend errors.

Each attempt acquires an exclusive connection from the pool (or uses the
pool's shared connection), runs the statement and releases the connection
before the next attempt or before returning. Deadlocks, lock wait timeouts
and connections lost mid-query are retried up to ``attempts`` times in total;
every other error propagates unchanged on the first failure.
"""
import logging
import threading
import time
import weakref
from collections.abc import Callable
from typing import Any

from modelsql.connection import Pool, QueryResult
from modelsql.exceptions import is_transient_error
from modelsql.sql import Statement

logger = logging.getLogger(__name__)

# Pools that already carry the destroy-and-log error handler
_guarded_pools: weakref.WeakSet = weakref.WeakSet()
_guarded_pools_lock = threading.Lock()


def guard_pool(pool: Pool) -> None:
    """Register the pool error handler once per pool.

    Pools are shared by every adapter created with the same options.
    """
    with _guarded_pools_lock:
        if pool in _guarded_pools:
            return
        pool.on('error', Executor.handle_pool_error)
        _guarded_pools.add(pool)


class Executor:
    """Runs compiled statements against a pool.

    Args:
        pool: Pool to acquire connections from
        attempts: Total attempts per statement, including the first
        delay: Seconds to wait before the first retry
        backoff: Multiplier applied to the delay after each retry
        shared: Use ``pool.query`` on the shared connection instead of an
            exclusive connection per attempt
        sleep: Function used to wait between attempts
    """

    def __init__(self, pool: Pool, attempts: int = 3, delay: float = 0.05,
                 backoff: float = 1.5, shared: bool = False,
                 sleep: Callable[[float], None] = time.sleep) -> None:
        if attempts < 1:
            raise ValueError('attempts must be at least 1')
        self.pool = pool
        self.attempts = attempts
        self.delay = delay
        self.backoff = backoff
        self.shared = shared
        self.sleep = sleep
        guard_pool(pool)

    @staticmethod
    def handle_pool_error(error: Any) -> None:
        """Destroy the connection a pool-level error was raised for.

        Pool errors arrive outside of any caller's operation, so they are
        logged rather than raised.
        """
        connection = getattr(error, 'connection', None)
        logger.error(f'Pool error, destroying connection: {error}')
        if connection is None:
            return
        try:
            connection.destroy()
        except Exception as err:
            logger.error(f'Could not destroy connection after pool error: {err}')

    def _attempt(self, statement: Statement) -> QueryResult:
        if self.shared:
            return self.pool.query(statement.sql, statement.values)

        logger.debug('Acquiring connection')
        connection = self.pool.get_connection()
        try:
            return connection.query(statement.sql, statement.values)
        finally:
            connection.release()

    def execute(self, statement: Statement) -> QueryResult:
        """Execute a statement, retrying transient failures.

        Raises
            The last backend error once the attempts are used up, or any
            non-transient error immediately.
        """
        delay = self.delay
        for attempt in range(1, self.attempts + 1):
            try:
                return self._attempt(statement)
            except Exception as err:
                if not is_transient_error(err):
                    raise
                if attempt >= self.attempts:
                    logger.error(f'Maximum attempts ({self.attempts}) exceeded: {err}')
                    raise
                logger.warning(f'Transient error (attempt {attempt}/{self.attempts}): {err}')
                if delay:
                    self.sleep(delay)
                delay *= self.backoff
