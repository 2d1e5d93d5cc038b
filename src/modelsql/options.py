from dataclasses import dataclass

from modelsql.dialect import get_available_dialects, get_dialect
from modelsql.dialect import is_supported_dialect

from libb import ConfigOptions, scriptname

__all__ = ['AdapterOptions']


@dataclass
class AdapterOptions(ConfigOptions):
    """Options

    supported driver names: `postgresql`, `sqlite`

    Connection pooling options:
    - use_pool: Whether to use SQLAlchemy connection pooling (default: True)
    - pool_max_connections: Maximum connections in pool (default: 5)
    - pool_max_idle_time: Maximum seconds a connection can be idle (default: 300)
    - pool_wait_timeout: Maximum seconds to wait for a connection (default: 30)
    - shared_connection: Run every statement on one shared connection instead
      of checking out an exclusive connection per attempt (default: False)

    Retry options:
    - retry_attempts: Total attempts for a statement hitting a transient error
    - retry_delay: Seconds to wait before the first retry
    - retry_backoff: Multiplier applied to the delay after each retry

    default_limit is the page size used by find_all when none is requested.
    """
    drivername: str = 'postgresql'
    hostname: str = None
    username: str = None
    password: str = None
    database: str = None
    port: int = 0
    timeout: int = 0
    appname: str = None
    # Connection pooling parameters
    use_pool: bool = True
    pool_max_connections: int = 5
    pool_max_idle_time: int = 300
    pool_wait_timeout: int = 30
    shared_connection: bool = False
    # Retry parameters
    retry_attempts: int = 3
    retry_delay: float = 0.05
    retry_backoff: float = 1.5
    default_limit: int = 50

    def __post_init__(self):
        if not is_supported_dialect(self.drivername):
            available = get_available_dialects()
            raise ValueError(f'drivername must be one of: {available}')
        if self.retry_attempts < 1:
            raise ValueError('retry_attempts must be at least 1')
        if self.default_limit < 1:
            raise ValueError('default_limit must be at least 1')
        self.appname = self.appname or scriptname() or 'python_console'
        get_dialect(self.drivername).validate_options(self)
