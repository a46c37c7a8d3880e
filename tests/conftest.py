from datetime import date

import pytest

from core import storage
from core.models import Application


def _make_app(**overrides) -> Application:
    data = dict(
        user_id="1",
        type="scholarship",
        name="Erasmus Mundus",
        country="Germany",
        application_open=date(2024, 10, 1),
        deadline=date(2025, 1, 15),
    )
    data.update(overrides)
    return Application(**data)


@pytest.fixture
def db(tmp_path, monkeypatch):
    """Чистая sqlite-база на каждый тест."""
    path = tmp_path / "test.db"
    monkeypatch.setattr(storage, "DB_PATH", path)
    storage.init_db()
    return path


@pytest.fixture
def make_app():
    return _make_app
