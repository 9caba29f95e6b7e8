"""Fixtures for database module tests.

Builds on the temp_db fixture from tests/conftest.py with a ready-made
plan and member so repository tests can focus on the behaviour under test.
"""
from datetime import date

import pytest

from database.base_crud import BaseCRUD
from tests.conftest import make_member, make_plan


@pytest.fixture
def base_crud(db_conn):
    """Yield a BaseCRUD instance."""
    return BaseCRUD(db_conn)


@pytest.fixture
def basic_plan(temp_db):
    """A one-month plan."""
    return make_plan(temp_db, "Basic Plan", "49", "1",
                     features="Gym Access, Locker Room")


@pytest.fixture
def annual_plan(temp_db):
    """A twelve-month plan."""
    return make_plan(temp_db, "Annual Plan", "599", "12")


@pytest.fixture
def enrolled_member(temp_db, basic_plan):
    """A member enrolled on the basic plan starting 2024-01-31."""
    return make_member(temp_db, plan_id=basic_plan["id"],
                       start_date=date(2024, 1, 31).isoformat())
