"""业务记录仓库 —— 核心业务数据的数据访问层。

管理系统中的核心业务记录（会员卡、支付记录、跟进提醒），
这些记录是日常经营活动产生的交易数据。

写入前会检查关联实体是否存在，引用不存在的会员/套餐/会员卡时
抛出 ReferentialError。
"""
import time
from typing import Optional, List, Dict, Any, get_args
from datetime import date, timedelta
from sqlalchemy import or_
from sqlalchemy.orm import Session, selectinload
from loguru import logger

from business.errors import ReferentialError, ValidationError
from business.plan_terms import compute_end_date
from business.requests import PaymentStatus, ReminderStatus
from .base_crud import BaseCRUD, LIKE_ESCAPE, like_pattern
from .connection import DatabaseConnection
from .entity_repos import MemberRepository
from .models import (
    Member, MembershipPlan, MemberMembership, Payment, Reminder
)

# 支付状态只允许 pending -> completed / failed
PAYMENT_TRANSITIONS = {
    "pending": {"completed", "failed"},
}


def _require_member(sess: Session, member_id: int) -> Member:
    member = sess.get(Member, member_id)
    if member is None:
        raise ReferentialError(f"Member {member_id} does not exist")
    return member


class MembershipRepository(BaseCRUD):
    """会员卡 仓库。

    负责开卡、续卡、结束会员卡。每个会员同一时间最多只有一张
    状态为 active 的会员卡。
    """

    def __init__(self, conn: DatabaseConnection,
                 member_repo: MemberRepository) -> None:
        super().__init__(conn)
        self._members = member_repo

    def create_membership(self, member_id: int, plan_id: int,
                          start_date: date,
                          session: Optional[Session] = None
                          ) -> MemberMembership:
        """开卡。

        到期日按套餐时长计算一次并保存。

        Args:
            member_id: 会员ID。
            plan_id: 套餐ID。
            start_date: 开始日期。
            session: 外部会话（可选，传入时不提交）。

        Returns:
            新创建的 MemberMembership 对象。

        Raises:
            ReferentialError: 会员或套餐不存在。
            ValidationError: 套餐已下架，或会员已有 active 会员卡。
        """
        def _do(sess):
            _require_member(sess, member_id)
            plan = sess.get(MembershipPlan, plan_id)
            if plan is None:
                raise ReferentialError(f"Plan {plan_id} does not exist")
            if not plan.is_active:
                raise ValidationError(
                    f"Plan '{plan.name}' is not available for new memberships",
                    [{"field": "plan_id", "message": "plan is inactive"}]
                )
            if self.get_active_for_member(member_id, session=sess):
                logger.warning(
                    f"Rejected membership for member {member_id}: "
                    f"already has an active membership"
                )
                raise ValidationError(
                    f"Member {member_id} already has an active membership",
                    [{"field": "member_id",
                      "message": "member already has an active membership"}]
                )

            membership = MemberMembership(
                member_id=member_id,
                plan_id=plan.id,
                plan_name=plan.name,
                start_date=start_date,
                end_date=compute_end_date(start_date, plan.duration_months),
                status="active",
            )
            sess.add(membership)
            sess.flush()
            sess.refresh(membership)
            return membership

        if session:
            return _do(session)

        with self._get_session() as sess:
            membership = _do(sess)
            sess.commit()
        logger.info(
            f"Created membership {membership.id} for member {member_id} "
            f"({membership.start_date} ~ {membership.end_date})"
        )
        return membership

    def get_active_for_member(self, member_id: int,
                              session: Optional[Session] = None
                              ) -> List[MemberMembership]:
        """获取会员所有状态为 active 的会员卡。"""
        return self.get_all(
            MemberMembership,
            filters={"member_id": member_id, "status": "active"},
            order_by=MemberMembership.start_date.desc(),
            session=session
        )

    def get_current(self, member_id: int,
                    session: Optional[Session] = None
                    ) -> Optional[MemberMembership]:
        """获取会员当前的 active 会员卡，没有返回 None。

        出现多张 active 会员卡属于数据异常，记录警告并返回开始日期最晚的一张。
        """
        return self.pick_current(
            self.get_active_for_member(member_id, session=session), member_id
        )

    @staticmethod
    def pick_current(memberships: List[MemberMembership],
                     member_id: Optional[int] = None
                     ) -> Optional[MemberMembership]:
        """从会员卡列表中选出当前 active 会员卡（开始日期最晚的一张）。"""
        active = sorted(
            (m for m in memberships if m.status == "active"),
            key=lambda m: (m.start_date, m.id),
            reverse=True,
        )
        if not active:
            return None
        if len(active) > 1:
            logger.warning(
                f"Member {member_id} has {len(active)} active memberships, "
                f"using the latest one"
            )
        return active[0]

    def enroll(self, member_fields: Dict[str, Any],
               plan_id: Optional[int] = None,
               start_date: Optional[date] = None) -> Member:
        """新增会员，指定套餐时同时开卡（同一事务，任一步失败都不落库）。

        Args:
            member_fields: 已校验的会员字段。
            plan_id: 套餐ID（可选）。
            start_date: 开卡日期，默认今天。

        Returns:
            新创建的 Member 对象。
        """
        with self._get_session() as sess:
            member = self._members.create_member(member_fields, session=sess)
            if plan_id is not None:
                self.create_membership(
                    member.id, plan_id, start_date or date.today(), session=sess
                )
            sess.commit()

        logger.info(
            f"Enrolled member {member.id} ({member.full_name})"
            + (f" on plan {plan_id}" if plan_id is not None else "")
        )
        return member

    def get_all_active(self, session: Optional[Session] = None
                       ) -> List[MemberMembership]:
        """获取所有 active 会员卡。"""
        return self.get_all(
            MemberMembership, filters={"status": "active"},
            order_by=MemberMembership.end_date, session=session
        )

    def get_expiring(self, today: date, window_days: int,
                     session: Optional[Session] = None
                     ) -> List[MemberMembership]:
        """获取到期日在 [today, today + window_days] 内的 active 会员卡。"""
        def _query(sess):
            return sess.query(MemberMembership).options(
                selectinload(MemberMembership.member)
            ).filter(
                MemberMembership.status == "active",
                MemberMembership.end_date >= today,
                MemberMembership.end_date <= today + timedelta(days=window_days)
            ).order_by(MemberMembership.end_date).all()

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)

    def close(self, membership_id: int, status: str = "expired",
              session: Optional[Session] = None
              ) -> Optional[MemberMembership]:
        """结束会员卡。

        Args:
            membership_id: 会员卡ID。
            status: 结束后的状态（不能为 active），默认 expired。

        Returns:
            更新后的 MemberMembership 对象，不存在返回 None。

        Raises:
            ValidationError: status 为空或为 active。
        """
        if not status or status == "active":
            raise ValidationError(
                "A membership can only be closed with a non-active status",
                [{"field": "status", "message": "must not be 'active'"}]
            )
        return self.update_by_id(
            MemberMembership, membership_id, session=session, status=status
        )

    def renew(self, member_id: int, plan_id: int,
              start_date: Optional[date] = None,
              today: Optional[date] = None) -> MemberMembership:
        """续卡：结束当前 active 会员卡并开一张新卡（同一事务）。

        未指定开始日期时，当前会员卡尚未到期则从其到期日开始，否则从今天开始。

        Returns:
            新创建的 MemberMembership 对象。
        """
        today = today or date.today()
        with self._get_session() as sess:
            current = self.get_current(member_id, session=sess)
            if start_date is None:
                if current is not None and current.end_date > today:
                    start_date = current.end_date
                else:
                    start_date = today
            for membership in self.get_active_for_member(member_id, session=sess):
                membership.status = "expired"
            sess.flush()

            renewed = self.create_membership(
                member_id, plan_id, start_date, session=sess
            )
            sess.commit()

        logger.info(
            f"Renewed member {member_id}: membership {renewed.id} "
            f"({renewed.start_date} ~ {renewed.end_date})"
        )
        return renewed


class PaymentRepository(BaseCRUD):
    """支付记录 仓库。

    支付记录只追加；状态只允许从 pending 变为 completed 或 failed。
    """

    def __init__(self, conn: DatabaseConnection) -> None:
        super().__init__(conn)

    @staticmethod
    def generate_transaction_id() -> str:
        """生成交易流水号：TXN + 6位数字。"""
        return f"TXN{int(time.time() * 1000) % 1_000_000:06d}"

    def create_payment(self, fields: Dict[str, Any]) -> Payment:
        """记录一笔支付。

        Args:
            fields: 已校验的支付字段（member_id、amount、method、payment_date、
                status，可选 membership_id、description、transaction_id）。

        Returns:
            新创建的 Payment 对象。

        Raises:
            ReferentialError: 会员或会员卡不存在，或会员卡不属于该会员。
        """
        fields = dict(fields)
        if not fields.get("transaction_id"):
            fields["transaction_id"] = self.generate_transaction_id()

        with self._get_session() as sess:
            _require_member(sess, fields["member_id"])
            membership_id = fields.get("membership_id")
            if membership_id is not None:
                membership = sess.get(MemberMembership, membership_id)
                if membership is None:
                    raise ReferentialError(
                        f"Membership {membership_id} does not exist"
                    )
                if membership.member_id != fields["member_id"]:
                    raise ReferentialError(
                        f"Membership {membership_id} does not belong to "
                        f"member {fields['member_id']}"
                    )

            payment = self.create(Payment, session=sess, **fields)
            sess.commit()

        logger.info(
            f"Recorded payment {payment.id}: {payment.amount} "
            f"via {payment.method} ({payment.status})"
        )
        return payment

    def get_payment(self, payment_id: int,
                    session: Optional[Session] = None) -> Optional[Payment]:
        """按ID查询支付记录，并加载会员与会员卡。"""
        def _query(sess):
            return sess.query(Payment).options(
                selectinload(Payment.member),
                selectinload(Payment.membership),
            ).filter(Payment.id == payment_id).first()

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)

    def list_payments(self, status: Optional[str] = None,
                      keyword: Optional[str] = None,
                      member_id: Optional[int] = None,
                      session: Optional[Session] = None) -> List[Payment]:
        """查询支付记录（按支付日期倒序）。

        Args:
            status: 按状态过滤（可选）。
            keyword: 按会员姓名或交易流水号搜索（可选）。
            member_id: 按会员过滤（可选）。
        """
        def _query(sess):
            query = sess.query(Payment).options(
                selectinload(Payment.member),
                selectinload(Payment.membership),
            )
            if status:
                query = query.filter(Payment.status == status)
            if member_id is not None:
                query = query.filter(Payment.member_id == member_id)
            if keyword:
                pattern = like_pattern(keyword)
                query = query.join(Member, Payment.member_id == Member.id).filter(
                    or_(
                        Payment.transaction_id.ilike(pattern, escape=LIKE_ESCAPE),
                        (Member.first_name + " " + Member.last_name).ilike(pattern, escape=LIKE_ESCAPE),
                    )
                )
            return query.order_by(
                Payment.payment_date.desc(), Payment.id.desc()
            ).all()

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)

    def update_status(self, payment_id: int, status: str) -> Optional[Payment]:
        """更新支付状态。

        Returns:
            更新后的 Payment 对象，不存在返回 None。

        Raises:
            ValidationError: 状态值非法或状态流转不允许。
        """
        if status not in get_args(PaymentStatus):
            raise ValidationError(
                f"Unknown payment status: {status}",
                [{"field": "status", "message": "unknown payment status"}]
            )

        with self._get_session() as sess:
            payment = sess.get(Payment, payment_id)
            if payment is None:
                return None
            if payment.status == status:
                return payment
            if status not in PAYMENT_TRANSITIONS.get(payment.status, set()):
                raise ValidationError(
                    f"Payment {payment_id} cannot change from "
                    f"'{payment.status}' to '{status}'",
                    [{"field": "status", "message": "transition not allowed"}]
                )
            payment.status = status
            sess.commit()

        logger.info(f"Payment {payment_id} status -> {status}")
        return payment


class ReminderRepository(BaseCRUD):
    """跟进提醒 仓库。

    提醒由用户手动在 pending / completed 之间切换，不会自动过期。
    """

    def __init__(self, conn: DatabaseConnection,
                 membership_repo: MembershipRepository) -> None:
        super().__init__(conn)
        self._memberships = membership_repo

    def create_reminder(self, fields: Dict[str, Any],
                        session: Optional[Session] = None) -> Reminder:
        """新增提醒。

        Raises:
            ReferentialError: 会员不存在。
        """
        def _do(sess):
            _require_member(sess, fields["member_id"])
            return self.create(Reminder, session=sess, **fields)

        if session:
            return _do(session)

        with self._get_session() as sess:
            reminder = _do(sess)
            sess.commit()
        logger.info(
            f"Created reminder {reminder.id} ({reminder.reminder_type}) "
            f"for member {reminder.member_id}"
        )
        return reminder

    def get_reminder(self, reminder_id: int,
                     session: Optional[Session] = None) -> Optional[Reminder]:
        """按ID查询提醒，并加载会员。"""
        def _query(sess):
            return sess.query(Reminder).options(
                selectinload(Reminder.member)
            ).filter(Reminder.id == reminder_id).first()

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)

    def list_reminders(self, reminder_type: Optional[str] = None,
                       status: Optional[str] = None,
                       session: Optional[Session] = None) -> List[Reminder]:
        """查询提醒（按截止日期排序）。"""
        def _query(sess):
            query = sess.query(Reminder).options(selectinload(Reminder.member))
            if reminder_type:
                query = query.filter(Reminder.reminder_type == reminder_type)
            if status:
                query = query.filter(Reminder.status == status)
            return query.order_by(Reminder.due_date, Reminder.id).all()

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)

    def has_pending_expiry(self, membership_id: int,
                           session: Optional[Session] = None) -> bool:
        """会员卡是否已有待处理的到期提醒。"""
        return self.count(
            Reminder,
            filters={
                "membership_id": membership_id,
                "reminder_type": "membership_expiry",
                "status": "pending",
            },
            session=session
        ) > 0

    def update_status(self, reminder_id: int, status: str) -> Optional[Reminder]:
        """切换提醒状态。

        Raises:
            ValidationError: 状态不是 pending / completed。
        """
        if status not in get_args(ReminderStatus):
            raise ValidationError(
                f"Unknown reminder status: {status}",
                [{"field": "status", "message": "must be pending or completed"}]
            )
        return self.update_by_id(Reminder, reminder_id, status=status)

    def sync_expiry_reminders(self, today: date,
                              window_days: int) -> List[Reminder]:
        """为即将到期的 active 会员卡生成到期提醒。

        由用户手动触发，不是后台任务。已有待处理到期提醒的会员卡跳过。

        Args:
            today: 当前日期。
            window_days: 到期窗口天数。

        Returns:
            本次新建的提醒列表。
        """
        created: List[Reminder] = []
        with self._get_session() as sess:
            for membership in self._memberships.get_expiring(
                    today, window_days, session=sess):
                if self.has_pending_expiry(membership.id, session=sess):
                    continue
                remaining = (membership.end_date - today).days
                when = "today" if remaining == 0 else f"in {remaining} days"
                reminder = self.create(
                    Reminder, session=sess,
                    member_id=membership.member_id,
                    membership_id=membership.id,
                    reminder_type="membership_expiry",
                    due_date=membership.end_date,
                    message=f"{membership.plan_name or 'Membership'} expires {when}",
                    priority="high" if remaining <= 3 else "medium",
                    status="pending",
                )
                created.append(reminder)
            sess.commit()

        logger.info(f"Created {len(created)} membership expiry reminders")
        return created
