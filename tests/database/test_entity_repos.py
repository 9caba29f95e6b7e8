"""Entity repository tests.

- BaseCRUD: create / get / update / delete, StorageError mapping
- MemberRepository: list_with_memberships, search, count_dependents, delete_member
- PlanRepository: get_plans, active member counts, delete_plan
"""
from datetime import date

import pytest

from business.errors import ReferentialError, StorageError
from database.models import Member, MemberMembership, MembershipPlan
from tests.conftest import make_member, make_plan


# ============================================================
# BaseCRUD Tests
# ============================================================
class TestBaseCRUD:
    """Tests for the generic CRUD helpers."""

    def test_create_get_update_delete(self, base_crud):
        plan = base_crud.create(MembershipPlan, name="Trial", price=0,
                                duration_months=1)
        assert plan.id > 0
        assert base_crud.get_by_id(MembershipPlan, plan.id).name == "Trial"

        updated = base_crud.update_by_id(MembershipPlan, plan.id, name="Trial+")
        assert updated.name == "Trial+"

        assert base_crud.delete_by_id(MembershipPlan, plan.id) is True
        assert base_crud.get_by_id(MembershipPlan, plan.id) is None

    def test_missing_records(self, base_crud):
        assert base_crud.update_by_id(MembershipPlan, 99999, name="x") is None
        assert base_crud.delete_by_id(MembershipPlan, 99999) is False

    def test_get_all_and_count_with_filters(self, base_crud):
        base_crud.create(MembershipPlan, name="A", price=1, duration_months=1)
        base_crud.create(MembershipPlan, name="B", price=2, duration_months=1,
                         is_active=False)
        assert base_crud.count(MembershipPlan) == 2
        active = base_crud.get_all(MembershipPlan, filters={"is_active": True})
        assert [p.name for p in active] == ["A"]

    def test_database_error_becomes_storage_error(self, base_crud):
        with pytest.raises(StorageError):
            # first_name is NOT NULL
            base_crud.create(Member, last_name="Doe", email="x@example.com")


# ============================================================
# MemberRepository Tests
# ============================================================
class TestMemberRepository:
    """Tests for MemberRepository."""

    def test_list_loads_memberships(self, temp_db, enrolled_member):
        members = temp_db.members.list_with_memberships()
        assert len(members) == 1
        # Relationships were eagerly loaded, usable outside the session
        assert members[0].memberships[0].plan.name == "Basic Plan"

    def test_list_newest_first(self, temp_db):
        make_member(temp_db, "First", "One")
        make_member(temp_db, "Second", "Two")
        names = [m.first_name for m in temp_db.members.list_with_memberships()]
        assert names == ["Second", "First"]

    def test_search_by_name_and_email(self, temp_db):
        make_member(temp_db, "Jane", "Doe")
        make_member(temp_db, "John", "Smith", email="jsmith@gymtest.org")

        assert [m.last_name for m in temp_db.members.search("jane doe")] == ["Doe"]
        assert [m.last_name for m in temp_db.members.search("GYMTEST.ORG")] == ["Smith"]
        assert len(temp_db.members.search("j")) == 2
        assert temp_db.members.search("nobody") == []

    def test_search_escapes_like_wildcards(self, temp_db):
        make_member(temp_db, "Jane", "Doe")
        make_member(temp_db, "Ann", "O_Neil", email="ann@example.com")

        assert temp_db.members.search("%") == []
        assert [m.last_name for m in temp_db.members.search("_")] == ["O_Neil"]
        assert temp_db.members.search("D_e") == []

    def test_count_dependents(self, temp_db, enrolled_member):
        temp_db.create_payment({
            "member_id": enrolled_member["id"], "amount": "49", "method": "Cash",
        })
        assert temp_db.members.count_dependents(enrolled_member["id"]) == (1, 1)

    def test_delete_member_without_dependents(self, temp_db):
        member = make_member(temp_db)
        assert temp_db.members.delete_member(member["id"]) is True
        assert temp_db.members.get_by_id(Member, member["id"]) is None

    def test_delete_member_blocked_by_membership(self, temp_db, enrolled_member):
        with pytest.raises(ReferentialError):
            temp_db.members.delete_member(enrolled_member["id"])
        assert temp_db.members.get_by_id(Member, enrolled_member["id"]) is not None

    def test_delete_missing_member(self, temp_db):
        assert temp_db.members.delete_member(99999) is False


# ============================================================
# PlanRepository Tests
# ============================================================
class TestPlanRepository:
    """Tests for PlanRepository."""

    def test_get_plans_active_only(self, temp_db, basic_plan):
        make_plan(temp_db, "Legacy", "10", "1", is_active=False)
        assert len(temp_db.plans.get_plans()) == 2
        assert [p.name for p in temp_db.plans.get_plans(active_only=True)] == [
            "Basic Plan"
        ]

    def test_active_member_counts(self, temp_db, basic_plan, annual_plan):
        make_member(temp_db, "A", "One", plan_id=basic_plan["id"])
        make_member(temp_db, "B", "Two", plan_id=basic_plan["id"])
        make_member(temp_db, "C", "Three", plan_id=annual_plan["id"])

        counts = temp_db.plans.active_member_counts()
        assert counts == {basic_plan["id"]: 2, annual_plan["id"]: 1}
        assert temp_db.plans.count_active_members(basic_plan["id"]) == 2

    def test_delete_plan_blocked_while_in_use(self, temp_db, enrolled_member,
                                              basic_plan):
        with pytest.raises(ReferentialError):
            temp_db.plans.delete_plan(basic_plan["id"])

    def test_delete_plan_keeps_history(self, temp_db, enrolled_member, basic_plan):
        current = temp_db.get_current_membership(enrolled_member["id"])
        temp_db.close_membership(current["id"])

        assert temp_db.plans.delete_plan(basic_plan["id"]) is True

        history = temp_db.memberships.get_by_id(MemberMembership, current["id"])
        assert history.plan_id is None
        assert history.plan_name == "Basic Plan"
        assert history.end_date == date(2024, 2, 29)

    def test_delete_missing_plan(self, temp_db):
        assert temp_db.plans.delete_plan(99999) is False
