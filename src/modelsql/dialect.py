"""
Dialect registry for backend-specific SQL details.

Each dialect describes what differs between backends for the statements the
compiler emits: the positional placeholder, whether generated keys come back
through ``returning``, the SQLAlchemy URL and the required connection options.
"""
from typing import TYPE_CHECKING

import sqlalchemy as sa

if TYPE_CHECKING:
    from modelsql.options import AdapterOptions

_DIALECT_REGISTRY: dict[str, type['Dialect']] = {}


def register_dialect(name: str):
    """Decorator to register a dialect class under a name.

    Usage:
        @register_dialect('postgresql')
        class PostgresDialect(Dialect):
            ...
    """
    def decorator(cls: type['Dialect']) -> type['Dialect']:
        cls.name = name
        _DIALECT_REGISTRY[name] = cls
        return cls
    return decorator


class Dialect:
    """Base class for dialect-specific behavior.
    """
    name: str = ''
    placeholder: str = '?'
    supports_returning: bool = False
    required_options: tuple[str, ...] = ()

    @property
    def escapes_percent(self) -> bool:
        """Format-style drivers treat ``%`` in the SQL text as a marker."""
        return self.placeholder == '%s'

    @classmethod
    def validate_options(cls, options: 'AdapterOptions') -> None:
        """Raise ValueError if a required option is empty.
        """
        for field in cls.required_options:
            if not getattr(options, field):
                raise ValueError(f'field {field} cannot be None or 0')

    def build_url(self, options: 'AdapterOptions') -> sa.URL:
        raise NotImplementedError


@register_dialect('postgresql')
class PostgresDialect(Dialect):
    placeholder = '%s'
    supports_returning = True
    required_options = ('hostname', 'username', 'database')

    def build_url(self, options: 'AdapterOptions') -> sa.URL:
        query = {}
        if options.timeout:
            query['connect_timeout'] = str(options.timeout)
        if options.appname:
            query['application_name'] = options.appname
        return sa.URL.create(
            drivername='postgresql+psycopg',
            username=options.username,
            password=options.password,
            host=options.hostname,
            port=options.port or None,
            database=options.database,
            query=query
        )


@register_dialect('sqlite')
class SQLiteDialect(Dialect):
    required_options = ('database',)

    def build_url(self, options: 'AdapterOptions') -> sa.URL:
        return sa.URL.create(drivername='sqlite', database=options.database)


def get_dialect(name: str) -> Dialect:
    """Get a dialect instance by name.
    """
    if name not in _DIALECT_REGISTRY:
        available = list(_DIALECT_REGISTRY)
        raise ValueError(f'Unsupported dialect: {name}. Available: {available}')
    return _DIALECT_REGISTRY[name]()


def get_available_dialects() -> list[str]:
    """Return list of registered dialect names."""
    return list(_DIALECT_REGISTRY)


def is_supported_dialect(name: str) -> bool:
    """Check if a dialect is supported."""
    return name in _DIALECT_REGISTRY
