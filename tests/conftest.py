"""
Shared pytest fixtures
"""
import pytest

import db


@pytest.fixture
def temp_db(tmp_path):
    """Point db at a fresh SQLite file with tables and plan prices in place."""
    with pytest.MonkeyPatch.context() as mp:
        mp.setattr(db, "DB_FILE", tmp_path / "gym_billing_test.db")
        db.init_db()
        yield db.DB_FILE
