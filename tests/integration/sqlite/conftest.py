"""
Fixtures for SQLite integration tests.
"""
import modelsql
import pytest

CREATE_USER = """
CREATE TABLE "user" (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT,
    email TEXT UNIQUE,
    age INTEGER,
    active INTEGER,
    subscribed_at TEXT,
    updated_at INTEGER
)
"""

CREATE_IMAGE = """
CREATE TABLE "image" (
    id BLOB PRIMARY KEY,
    name TEXT
)
"""


@pytest.fixture
def sqlite_pool(tmp_path):
    """File-based SQLite pool with the test schema."""
    pool = modelsql.connect({
        'drivername': 'sqlite',
        'database': str(tmp_path / 'test.db'),
    })
    connection = pool.get_connection()
    try:
        connection.query(CREATE_USER)
        connection.query(CREATE_IMAGE)
    finally:
        connection.release()

    yield pool

    pool.dispose()


@pytest.fixture
def users(sqlite_pool, user_model):
    return modelsql.Adapter(user_model, sqlite_pool, retry_delay=0)


@pytest.fixture
def images(sqlite_pool, uuid_model):
    return modelsql.Adapter(uuid_model, sqlite_pool, retry_delay=0)


@pytest.fixture
def seeded_users(users):
    """Adapter with 30 users: user0 .. user29, even ages active."""
    for i in range(30):
        users.save({'fullname': f'user{i}', 'email': f'user{i}@example.com',
                    'age': i, 'active': i % 2 == 0})
    return users
