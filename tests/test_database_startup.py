"""Tests for database initialization and startup behavior.

These tests verify that the application refuses to start when migrations
haven't been run.
"""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, inspect

from zkpaste.database import REQUIRED_TABLES
from zkpaste.main import check_database_tables, create_app


@pytest.fixture
def empty_engine(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'empty.db'}",
        connect_args={"check_same_thread": False},
    )
    try:
        yield engine
    finally:
        engine.dispose()


class TestDatabaseStartup:
    """Tests for database initialization at startup."""

    def test_check_database_tables_raises_on_missing_tables(self, empty_engine):
        """
        Running `make dev` without `make migrate` must fail loudly at startup
        rather than with `no such table: pastes` on the first request.
        """
        assert inspect(empty_engine).get_table_names() == []

        with pytest.raises(RuntimeError) as exc_info:
            check_database_tables(empty_engine)

        error_message = str(exc_info.value)
        assert "Database tables missing" in error_message
        assert "pastes" in error_message
        assert "make migrate" in error_message

    def test_check_database_tables_passes_with_all_tables(self, db_engine):
        # Should not raise any exception
        check_database_tables(db_engine)

    def test_required_tables_exist_after_setup(self, db_engine):
        tables = set(inspect(db_engine).get_table_names())
        assert REQUIRED_TABLES.issubset(
            tables
        ), f"Missing required tables. Expected: {REQUIRED_TABLES}, Found: {tables}"

    def test_app_refuses_to_start_without_tables(self, empty_engine, test_settings):
        app = create_app(test_settings, engine=empty_engine)

        with pytest.raises(RuntimeError, match="Database tables missing"):
            with TestClient(app):
                pass
