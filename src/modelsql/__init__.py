"""
Relational persistence for model metadata, with PostgreSQL and SQLite support.

Typical use:

    User = Model('User').attr('id', primary=True).attr('fullname', column_name='name')
    users = modelsql.use(User, {'drivername': 'sqlite', 'database': 'app.db'})
    users.save({'fullname': 'alex'})
    page = users.find_all({'fullname': 'alex', 'page': 1, 'pageSize': 25})
    page.to_dict()

The compile functions can also be used on their own to produce SQL text and
bound values for a model without touching a database.
"""
__version__ = '0.1.0'

from modelsql.adapter import Adapter, use
from modelsql.connection import QueryResult, SqlAlchemyPool, connect
from modelsql.connection import dispose_all_pools
from modelsql.exceptions import BackendError, DatabaseError, PoolError
from modelsql.exceptions import TransientBackendError, TypeConversionError
from modelsql.exceptions import ValidationError, ValueConversionError
from modelsql.exceptions import is_transient_error
from modelsql.executor import Executor
from modelsql.model import Attribute, Model
from modelsql.options import AdapterOptions
from modelsql.query import Comparison, Equality, Logical, Query, parse_query
from modelsql.results import Collection, normalize_collection, normalize_row
from modelsql.sql import Statement, compile_delete, compile_insert
from modelsql.sql import compile_select, compile_select_count, compile_update
from modelsql.types import from_column, to_column

__all__ = [
    'use',
    'connect',
    'dispose_all_pools',
    'Adapter',
    'AdapterOptions',
    'Executor',
    'SqlAlchemyPool',
    'QueryResult',
    'Model',
    'Attribute',
    'Query',
    'Equality',
    'Comparison',
    'Logical',
    'parse_query',
    'Statement',
    'compile_select',
    'compile_select_count',
    'compile_insert',
    'compile_update',
    'compile_delete',
    'Collection',
    'normalize_row',
    'normalize_collection',
    'to_column',
    'from_column',
    'is_transient_error',
    'DatabaseError',
    'ValidationError',
    'TypeConversionError',
    'ValueConversionError',
    'BackendError',
    'TransientBackendError',
    'PoolError',
]
