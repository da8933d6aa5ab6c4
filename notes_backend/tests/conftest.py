import pytest
from fastapi.testclient import TestClient

from src.api.db import SQLiteRepository
from src.api.main import create_app
from src.api.repositories import InMemoryRepository
from src.api.settings import Settings


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "data" / "notes.db")


@pytest.fixture
def app(db_path):
    return create_app(Settings(persistence_backend="sqlite", sqlite_db_path=db_path))


@pytest.fixture
def client(app):
    # Entering the context runs the lifespan, which opens the note store
    with TestClient(app) as c:
        yield c


@pytest.fixture(params=["sqlite", "memory"])
def repo(request, db_path):
    if request.param == "sqlite":
        r = SQLiteRepository(db_path)
    else:
        r = InMemoryRepository()
    yield r
    r.close()
