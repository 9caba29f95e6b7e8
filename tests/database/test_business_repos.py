"""Business record repository tests.

- MembershipRepository: create_membership, enroll, get_current, close, renew, get_expiring
- PaymentRepository: create_payment, list_payments, update_status
- ReminderRepository: create / list / update_status / sync_expiry_reminders
"""
from datetime import date

import pytest

from business.errors import ReferentialError, ValidationError
from database.models import Member, MemberMembership
from database.business_repos import MembershipRepository, PaymentRepository
from tests.conftest import make_member, make_plan


# ============================================================
# MembershipRepository Tests
# ============================================================
class TestMembershipRepository:
    """Tests for MembershipRepository."""

    def test_end_date_computed_once_from_plan(self, temp_db, basic_plan):
        member = make_member(temp_db)
        membership = temp_db.memberships.create_membership(
            member["id"], basic_plan["id"], date(2024, 1, 31)
        )
        assert membership.end_date == date(2024, 2, 29)
        assert membership.plan_name == "Basic Plan"
        assert membership.status == "active"

        # Changing the plan later does not move existing end dates
        temp_db.update_plan(basic_plan["id"], {
            "name": "Basic Plan", "price": "49", "duration_months": "6",
        })
        stored = temp_db.memberships.get_by_id(MemberMembership, membership.id)
        assert stored.end_date == date(2024, 2, 29)

    def test_missing_member_or_plan(self, temp_db, basic_plan):
        member = make_member(temp_db)
        with pytest.raises(ReferentialError):
            temp_db.memberships.create_membership(99999, basic_plan["id"],
                                                  date(2024, 1, 1))
        with pytest.raises(ReferentialError):
            temp_db.memberships.create_membership(member["id"], 99999,
                                                  date(2024, 1, 1))

    def test_inactive_plan_rejected(self, temp_db):
        plan = make_plan(temp_db, "Legacy", "10", "1", is_active=False)
        member = make_member(temp_db)
        with pytest.raises(ValidationError):
            temp_db.memberships.create_membership(member["id"], plan["id"],
                                                  date(2024, 1, 1))

    def test_one_active_membership_per_member(self, temp_db, enrolled_member,
                                              annual_plan):
        with pytest.raises(ValidationError):
            temp_db.memberships.create_membership(
                enrolled_member["id"], annual_plan["id"], date(2024, 2, 1)
            )
        assert len(temp_db.memberships.get_active_for_member(
            enrolled_member["id"])) == 1

    def test_enroll_is_atomic(self, temp_db):
        with pytest.raises(ReferentialError):
            temp_db.memberships.enroll(
                {"first_name": "Ghost", "last_name": "Plan",
                 "email": "ghost@example.com"},
                plan_id=99999,
            )
        assert temp_db.members.count(Member) == 0

    def test_pick_current_prefers_latest_start(self):
        older = MemberMembership(id=1, status="active", start_date=date(2024, 1, 1))
        newer = MemberMembership(id=2, status="active", start_date=date(2024, 3, 1))
        closed = MemberMembership(id=3, status="expired", start_date=date(2024, 5, 1))
        assert MembershipRepository.pick_current([older, newer, closed]) is newer
        assert MembershipRepository.pick_current([closed]) is None

    def test_close_membership(self, temp_db, enrolled_member):
        current = temp_db.memberships.get_current(enrolled_member["id"])
        closed = temp_db.memberships.close(current.id, "cancelled")
        assert closed.status == "cancelled"
        assert temp_db.memberships.get_current(enrolled_member["id"]) is None

        with pytest.raises(ValidationError):
            temp_db.memberships.close(current.id, "active")

    def test_renew_before_expiry_continues_from_end_date(self, temp_db,
                                                         enrolled_member,
                                                         basic_plan):
        renewed = temp_db.memberships.renew(
            enrolled_member["id"], basic_plan["id"], today=date(2024, 2, 20)
        )
        assert renewed.start_date == date(2024, 2, 29)
        assert renewed.end_date == date(2024, 3, 29)

        statuses = sorted(
            m.status for m in temp_db.memberships.get_all(
                MemberMembership, filters={"member_id": enrolled_member["id"]}
            )
        )
        assert statuses == ["active", "expired"]

    def test_renew_after_expiry_starts_today(self, temp_db, enrolled_member,
                                             annual_plan):
        renewed = temp_db.memberships.renew(
            enrolled_member["id"], annual_plan["id"], today=date(2024, 3, 10)
        )
        assert renewed.start_date == date(2024, 3, 10)
        assert renewed.end_date == date(2025, 3, 10)

    def test_renew_failure_keeps_current_membership(self, temp_db,
                                                    enrolled_member):
        with pytest.raises(ReferentialError):
            temp_db.memberships.renew(enrolled_member["id"], 99999,
                                      today=date(2024, 2, 20))
        current = temp_db.memberships.get_current(enrolled_member["id"])
        assert current is not None
        assert current.end_date == date(2024, 2, 29)

    def test_get_expiring_window(self, temp_db, enrolled_member):
        assert len(temp_db.memberships.get_expiring(date(2024, 2, 22), 7)) == 1
        assert temp_db.memberships.get_expiring(date(2024, 2, 21), 7) == []
        assert temp_db.memberships.get_expiring(date(2024, 3, 1), 7) == []


# ============================================================
# PaymentRepository Tests
# ============================================================
class TestPaymentRepository:
    """Tests for PaymentRepository."""

    def test_transaction_id_format(self):
        txn = PaymentRepository.generate_transaction_id()
        assert txn.startswith("TXN")
        assert len(txn) == 9
        assert txn[3:].isdigit()

    def test_create_payment_generates_transaction_id(self, temp_db, enrolled_member):
        payment = temp_db.payments.create_payment({
            "member_id": enrolled_member["id"], "amount": 49, "method": "Cash",
            "payment_date": date(2024, 1, 31), "status": "completed",
        })
        assert payment.transaction_id.startswith("TXN")

    def test_keeps_given_transaction_id(self, temp_db, enrolled_member):
        payment = temp_db.payments.create_payment({
            "member_id": enrolled_member["id"], "amount": 49, "method": "Cash",
            "payment_date": date(2024, 1, 31), "transaction_id": "EXT-1",
        })
        assert payment.transaction_id == "EXT-1"

    def test_membership_must_belong_to_member(self, temp_db, enrolled_member):
        other = make_member(temp_db, "Other", "Person")
        membership_id = enrolled_member["current_membership"]["id"]
        with pytest.raises(ReferentialError):
            temp_db.payments.create_payment({
                "member_id": other["id"], "membership_id": membership_id,
                "amount": 49, "method": "Cash", "payment_date": date(2024, 1, 31),
            })

    def test_unknown_member(self, temp_db):
        with pytest.raises(ReferentialError):
            temp_db.payments.create_payment({
                "member_id": 99999, "amount": 49, "method": "Cash",
                "payment_date": date(2024, 1, 31),
            })

    def test_list_filters_and_order(self, temp_db, enrolled_member):
        member_id = enrolled_member["id"]
        for day, status in ((1, "completed"), (15, "pending"), (10, "failed")):
            temp_db.payments.create_payment({
                "member_id": member_id, "amount": 10, "method": "Cash",
                "payment_date": date(2024, 2, day), "status": status,
                "transaction_id": f"TXN0000{day:02d}",
            })

        dates = [p.payment_date.day for p in temp_db.payments.list_payments()]
        assert dates == [15, 10, 1]
        assert len(temp_db.payments.list_payments(status="pending")) == 1
        assert len(temp_db.payments.list_payments(keyword="TXN000010")) == 1
        assert len(temp_db.payments.list_payments(keyword="jane")) == 3
        assert temp_db.payments.list_payments(member_id=99999) == []

    def test_keyword_wildcards_match_literally(self, temp_db, enrolled_member):
        for txn in ("EXT_1", "EXT%2", "EXTA3"):
            temp_db.payments.create_payment({
                "member_id": enrolled_member["id"], "amount": 10, "method": "Cash",
                "payment_date": date(2024, 2, 1), "transaction_id": txn,
            })

        assert [p.transaction_id for p in temp_db.payments.list_payments(keyword="T_1")] == ["EXT_1"]
        assert [p.transaction_id for p in temp_db.payments.list_payments(keyword="%")] == ["EXT%2"]
        assert temp_db.payments.list_payments(keyword="T_3") == []

    def test_status_transitions(self, temp_db, enrolled_member):
        payment = temp_db.payments.create_payment({
            "member_id": enrolled_member["id"], "amount": 49, "method": "Cash",
            "payment_date": date(2024, 1, 31), "status": "pending",
        })
        assert temp_db.payments.update_status(payment.id, "completed").status == "completed"
        # Same status is a no-op
        assert temp_db.payments.update_status(payment.id, "completed").status == "completed"

        with pytest.raises(ValidationError):
            temp_db.payments.update_status(payment.id, "pending")
        with pytest.raises(ValidationError):
            temp_db.payments.update_status(payment.id, "refunded")

        assert temp_db.payments.update_status(99999, "completed") is None


# ============================================================
# ReminderRepository Tests
# ============================================================
class TestReminderRepository:
    """Tests for ReminderRepository."""

    def test_create_requires_member(self, temp_db):
        with pytest.raises(ReferentialError):
            temp_db.reminders.create_reminder({
                "member_id": 99999, "reminder_type": "follow_up",
                "due_date": date(2024, 2, 1),
            })

    def test_list_sorted_by_due_date(self, temp_db, enrolled_member):
        for day in (20, 5, 12):
            temp_db.reminders.create_reminder({
                "member_id": enrolled_member["id"], "reminder_type": "follow_up",
                "due_date": date(2024, 2, day),
            })
        days = [r.due_date.day for r in temp_db.reminders.list_reminders()]
        assert days == [5, 12, 20]
        assert temp_db.reminders.list_reminders(reminder_type="payment_due") == []

    def test_update_status(self, temp_db, enrolled_member):
        reminder = temp_db.reminders.create_reminder({
            "member_id": enrolled_member["id"], "reminder_type": "follow_up",
            "due_date": date(2024, 2, 1),
        })
        assert temp_db.reminders.update_status(reminder.id, "completed").status == "completed"
        assert temp_db.reminders.update_status(reminder.id, "pending").status == "pending"
        with pytest.raises(ValidationError):
            temp_db.reminders.update_status(reminder.id, "done")

    def test_sync_expiry_reminders(self, temp_db, enrolled_member):
        created = temp_db.reminders.sync_expiry_reminders(date(2024, 2, 25), 7)
        assert len(created) == 1
        reminder = created[0]
        assert reminder.reminder_type == "membership_expiry"
        assert reminder.due_date == date(2024, 2, 29)
        assert reminder.message == "Basic Plan expires in 4 days"
        assert reminder.priority == "medium"

        # Already has a pending expiry reminder
        assert temp_db.reminders.sync_expiry_reminders(date(2024, 2, 26), 7) == []

    def test_sync_high_priority_close_to_expiry(self, temp_db, enrolled_member):
        created = temp_db.reminders.sync_expiry_reminders(date(2024, 2, 29), 7)
        assert created[0].message == "Basic Plan expires today"
        assert created[0].priority == "high"
