import pytest

import database
from config import settings
from library import Library
from users import UserDirectory


@pytest.fixture
def db_file(tmp_path, monkeypatch):
    # tmp_path is already unique per test
    path = str(tmp_path / "library.db")
    monkeypatch.setattr(database, "DATABASE_FILE", path)
    # Cheap hashing keeps the suite fast
    monkeypatch.setattr(settings, "password_iterations", 1000)
    database.initialize_database()
    return path


@pytest.fixture
def lib(db_file):
    return Library()


@pytest.fixture
def directory(db_file):
    return UserDirectory()
