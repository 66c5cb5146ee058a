# Ensure project root is on sys.path so `import src.order_change...` works when running tests in various environments.
import os
import sys
import tempfile
from pathlib import Path

# Qt sin pantalla y carpeta de datos aislada para pruebas (evita contaminar ./data)
os.environ.setdefault('QT_QPA_PLATFORM', 'offscreen')
TEST_DATA_DIR = Path(tempfile.mkdtemp(prefix='order_change_test_'))
os.environ['ORDER_CHANGE_DATA_DIR'] = TEST_DATA_DIR.as_posix()
os.environ.setdefault('DATABASE_URL', 'sqlite:///:memory:')
os.environ.pop('ORDER_CHANGE_EDIT_ROLES', None)

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

import pytest
from src.order_change.db import make_engine, make_session_factory
from src.order_change.repository import init_db


@pytest.fixture
def engine():
    engine = make_engine(":memory:")
    init_db(engine, seed=True)
    return engine


@pytest.fixture
def session_factory(engine):
    Session = make_session_factory(engine)
    return Session


@pytest.fixture
def bank_ids(session_factory):
    from src.order_change.repository import list_banks
    with session_factory() as s:
        return {b.code: b.id for b in list_banks(s)}
