"""Shared fixtures for GymDesk tests.

Provides a fresh temp-file SQLite DatabaseManager for each test plus
small helpers that create plans and members through the facade.
"""
import os
import shutil
import tempfile
from datetime import date

import pytest

from database.manager import DatabaseManager


@pytest.fixture
def temp_db():
    """Yield a fresh DatabaseManager bound to a temp SQLite database."""
    temp_dir = tempfile.mkdtemp(prefix="gymdesk-tests-")
    db_path = os.path.join(temp_dir, "test.db")
    manager = DatabaseManager(
        database_url=f"sqlite:///{db_path}",
        expiring_window_days=7,
        renewal_window_days=30,
    )
    manager.create_tables()

    try:
        yield manager
    finally:
        manager.close()
        shutil.rmtree(temp_dir, ignore_errors=True)


@pytest.fixture
def db_conn(temp_db):
    """Yield the DatabaseConnection behind temp_db."""
    return temp_db.conn


@pytest.fixture
def sample_date():
    """Stable date value for deterministic tests."""
    return date(2024, 1, 28)


def make_plan(db, name="Basic Plan", price="49", duration_months="1", **extra):
    """Helper: create a plan through the facade and return its dict."""
    fields = {"name": name, "price": price, "duration_months": duration_months}
    fields.update(extra)
    return db.create_plan(fields)


def make_member(db, first_name="Jane", last_name="Doe", email=None, **extra):
    """Helper: create a member through the facade and return its dict."""
    fields = {
        "first_name": first_name,
        "last_name": last_name,
        "email": email or f"{first_name.lower()}.{last_name.lower()}@example.com",
    }
    fields.update(extra)
    return db.create_member(fields)
