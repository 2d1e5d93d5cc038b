import pathlib
import site

import pytest
from modelsql.connection import dispose_all_pools

HERE = pathlib.Path(pathlib.Path(__file__).resolve()).parent
site.addsitedir(HERE)


@pytest.fixture(autouse=True)
def clear_pools():
    """Dispose shared pools before and after each test to ensure test isolation."""
    dispose_all_pools()
    yield
    dispose_all_pools()


pytest_plugins = [
    'tests.fixtures.mocks',
    'tests.fixtures.models',
]
