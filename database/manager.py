"""数据库管理器 —— 统一门面（Facade）。

DatabaseManager 是 database 模块的统一入口，组合了所有子仓库，
提供两套 API：

1. **子仓库访问**（细粒度）：
   通过 ``db.members``、``db.plans`` 等属性直接访问子仓库，
   返回 ORM 对象，适合需要精细控制的场景。

2. **便捷方法**（粗粒度）：
   提供扁平化的方法（如 ``create_member()``、``list_payments()``），
   入参为原始字段字典，先校验再写库，返回字典/基本类型，
   适合 Web 接口等上层调用。

校验失败抛出 ValidationError（不访问数据库），数据库失败抛出
StorageError，删除被依赖记录阻止时抛出 ReferentialError。
记录不存在时返回 None / False。
"""
from typing import Optional, List, Dict, Any
from datetime import date
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from loguru import logger

from business import aggregations
from business.membership_status import (
    classify_membership_status, payment_standing, payment_status_label
)
from business.requests import (
    MemberCreate, MemberUpdate, PlanCreate, PlanActiveUpdate, MembershipCreate,
    PaymentCreate, ReminderCreate, ExpirySyncRequest, parse_request
)
from config.settings import settings
from .connection import DatabaseConnection
from .entity_repos import MemberRepository, PlanRepository
from .business_repos import (
    MembershipRepository, PaymentRepository, ReminderRepository
)
from .models import (
    Member, MembershipPlan, MemberMembership, Payment, Reminder
)

NO_PLAN = "No Plan"


def _money(value: Any) -> float:
    return float(value) if value is not None else 0.0


def _all_filter(value: Optional[str]) -> Optional[str]:
    """'All' / 'all' / 空值表示不过滤。"""
    if not value or value.lower() == "all":
        return None
    return value


class DatabaseManager:
    """数据库管理器 —— 统一门面。

    组合了所有子仓库，提供统一的数据库访问接口。

    Attributes:
        conn: 数据库连接管理器。
        members: 会员仓库。
        plans: 会员套餐仓库。
        memberships: 会员卡仓库。
        payments: 支付记录仓库。
        reminders: 提醒仓库。
        expiring_window_days: Expiring 状态阈值天数。
        renewal_window_days: 仪表盘即将到期统计窗口天数。

    Example::

        db = DatabaseManager("sqlite:///data/gym.db")
        db.create_tables()

        plan = db.create_plan({"name": "Basic", "price": "49", "duration_months": "1"})
        member = db.create_member({
            "first_name": "Jane", "last_name": "Doe", "email": "jane@example.com",
            "plan_id": plan["id"], "start_date": "2024-01-31",
        })
    """

    def __init__(self, database_url: Optional[str] = None,
                 expiring_window_days: Optional[int] = None,
                 renewal_window_days: Optional[int] = None) -> None:
        """初始化数据库管理器。

        Args:
            database_url: 数据库连接URL。如果为None则使用settings配置。
            expiring_window_days: Expiring 阈值，默认取 settings。
            renewal_window_days: 即将到期统计窗口，默认取 settings。
        """
        # 基础设施层
        self.conn = DatabaseConnection(database_url)

        self.expiring_window_days = (
            expiring_window_days if expiring_window_days is not None
            else settings.expiring_window_days
        )
        self.renewal_window_days = (
            renewal_window_days if renewal_window_days is not None
            else settings.renewal_window_days
        )

        # 实体仓库
        self.members = MemberRepository(self.conn)
        self.plans = PlanRepository(self.conn)

        # 业务记录仓库
        self.memberships = MembershipRepository(self.conn, self.members)
        self.payments = PaymentRepository(self.conn)
        self.reminders = ReminderRepository(self.conn, self.memberships)

    # ================================================================
    # 基础设施方法
    # ================================================================

    def create_tables(self) -> None:
        """创建所有数据库表（幂等操作）。"""
        self.conn.create_tables()

    def get_session(self) -> Session:
        """获取数据库会话。"""
        return self.conn.get_session()

    @property
    def database_url(self) -> str:
        """数据库连接URL。"""
        return self.conn.database_url

    @property
    def engine(self):
        """SQLAlchemy 引擎对象。"""
        return self.conn.engine

    def ping(self) -> bool:
        """检查数据库是否可用。"""
        try:
            self.conn.execute_raw_sql("SELECT 1")
        except SQLAlchemyError as e:
            logger.warning(f"Database ping failed: {e}")
            return False
        return True

    def close(self) -> None:
        """关闭数据库连接，释放所有资源。"""
        self.conn.close()

    # ================================================================
    # 字典转换
    # ================================================================

    def _classify(self, end_date: Optional[date], fallback: Optional[str],
                  today: Optional[date]) -> Optional[str]:
        return classify_membership_status(
            end_date, today=today, fallback_status=fallback,
            expiring_days=self.expiring_window_days
        )

    @staticmethod
    def _membership_dict(m: MemberMembership) -> Dict[str, Any]:
        return {
            "id": m.id,
            "member_id": m.member_id,
            "plan_id": m.plan_id,
            "plan_name": m.plan_name,
            "start_date": m.start_date,
            "end_date": m.end_date,
            "status": m.status,
        }

    def _member_summary(self, member: Member,
                        today: Optional[date] = None) -> Dict[str, Any]:
        current = MembershipRepository.pick_current(member.memberships, member.id)
        end_date = current.end_date if current else None
        return {
            "id": member.id,
            "name": member.full_name,
            "first_name": member.first_name,
            "last_name": member.last_name,
            "email": member.email or "",
            "phone": member.phone or "",
            "plan": (current.plan_name or NO_PLAN) if current else NO_PLAN,
            "status": self._classify(end_date, member.status, today),
            "raw_status": member.status,
            "join_date": member.created_at.date() if member.created_at else None,
            "end_date": end_date,
            "payment_status": payment_standing(end_date, today),
        }

    def _member_detail(self, member: Member,
                       today: Optional[date] = None) -> Dict[str, Any]:
        current = MembershipRepository.pick_current(member.memberships, member.id)
        detail = self._member_summary(member, today)
        detail.update({
            "address": member.address,
            "emergency_contact_name": member.emergency_contact_name,
            "emergency_contact_phone": member.emergency_contact_phone,
            "notes": member.notes,
            "created_at": member.created_at,
            "current_membership": (
                self._membership_dict(current) if current else None
            ),
            "memberships": [
                self._membership_dict(m)
                for m in sorted(member.memberships,
                                key=lambda m: (m.start_date, m.id),
                                reverse=True)
            ],
        })
        return detail

    @staticmethod
    def _plan_dict(plan: MembershipPlan, member_count: int = 0) -> Dict[str, Any]:
        return {
            "id": plan.id,
            "name": plan.name,
            "price": _money(plan.price),
            "duration_months": plan.duration_months,
            "features": list(plan.features or []),
            "description": plan.description,
            "is_active": plan.is_active,
            "member_count": member_count,
        }

    @staticmethod
    def _payment_dict(p: Payment) -> Dict[str, Any]:
        return {
            "id": p.id,
            "member_id": p.member_id,
            "member_name": p.member.full_name if p.member else None,
            "membership_id": p.membership_id,
            "plan": p.membership.plan_name if p.membership else None,
            "amount": _money(p.amount),
            "method": p.method,
            "payment_date": p.payment_date,
            "status": p.status,
            "status_label": payment_status_label(p.status),
            "transaction_id": p.transaction_id,
            "description": p.description,
        }

    @staticmethod
    def _reminder_dict(r: Reminder) -> Dict[str, Any]:
        return {
            "id": r.id,
            "member_id": r.member_id,
            "member_name": r.member.full_name if r.member else None,
            "membership_id": r.membership_id,
            "reminder_type": r.reminder_type,
            "due_date": r.due_date,
            "message": r.message,
            "priority": r.priority,
            "status": r.status,
        }

    # ================================================================
    # 会员
    # ================================================================

    def list_members(self, search: Optional[str] = None,
                     status: Optional[str] = None,
                     today: Optional[date] = None) -> List[Dict[str, Any]]:
        """获取会员列表（按加入时间倒序）。

        Args:
            search: 按姓名或邮箱搜索（可选）。
            status: 按推导状态过滤，如 Active / Expiring / Expired（All 不过滤）。
            today: 当前日期，默认今天。

        Returns:
            会员摘要字典列表，status 为读取时推导的状态。
        """
        rows = [
            self._member_summary(m, today)
            for m in self.members.list_with_memberships(search)
        ]
        status = _all_filter(status)
        if status:
            rows = [
                r for r in rows
                if (r["status"] or "").lower() == status.lower()
            ]
        return rows

    def get_member(self, member_id: int,
                   today: Optional[date] = None) -> Optional[Dict[str, Any]]:
        """获取会员详情（含全部会员卡），不存在返回 None。"""
        member = self.members.get_with_memberships(member_id)
        if member is None:
            return None
        return self._member_detail(member, today)

    def create_member(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        """新增会员。

        first_name、last_name、email 必填。同时传入 plan_id 时一并开卡
        （start_date 默认今天），会员与会员卡在同一事务中写入。

        Returns:
            新会员详情字典。

        Raises:
            ValidationError: 必填字段缺失或格式错误。
            ReferentialError: 套餐不存在。
        """
        request = parse_request(MemberCreate, fields)
        member = self.memberships.enroll(
            request.model_dump(exclude={"plan_id", "start_date"}),
            plan_id=request.plan_id,
            start_date=request.start_date,
        )
        return self.get_member(member.id)

    def update_member(self, member_id: int,
                      fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """修改会员资料（只更新传入的字段），不存在返回 None。"""
        request = parse_request(MemberUpdate, fields)
        changes = request.model_dump(exclude_unset=True)
        if changes:
            if self.members.update_by_id(Member, member_id, **changes) is None:
                return None
        return self.get_member(member_id)

    def delete_member(self, member_id: int) -> bool:
        """删除会员。

        Returns:
            是否删除成功，不存在返回 False。

        Raises:
            ReferentialError: 会员仍有会员卡或支付记录。
        """
        return self.members.delete_member(member_id)

    # ================================================================
    # 套餐
    # ================================================================

    def list_plans(self, active_only: bool = False) -> List[Dict[str, Any]]:
        """获取套餐列表，每个套餐附带 active 会员数 member_count。"""
        counts = self.plans.active_member_counts()
        return [
            self._plan_dict(p, counts.get(p.id, 0))
            for p in self.plans.get_plans(active_only)
        ]

    def get_plan(self, plan_id: int) -> Optional[Dict[str, Any]]:
        """获取套餐，不存在返回 None。"""
        plan = self.plans.get_by_id(MembershipPlan, plan_id)
        if plan is None:
            return None
        return self._plan_dict(plan, self.plans.count_active_members(plan_id))

    def create_plan(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        """新增套餐。

        name、price、duration_months 必填；features 支持逗号分隔字符串。

        Raises:
            ValidationError: 必填字段缺失或数值非法。
        """
        request = parse_request(PlanCreate, fields)
        plan = self.plans.create(MembershipPlan, **request.model_dump())
        return self._plan_dict(plan)

    def update_plan(self, plan_id: int,
                    fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """修改套餐，不存在返回 None。

        name、price、duration_months 必填；features、description、is_active
        只在传入时修改。已开的会员卡到期日不受影响。
        """
        request = parse_request(PlanCreate, fields)
        plan = self.plans.update_by_id(
            MembershipPlan, plan_id, **request.model_dump(exclude_unset=True)
        )
        if plan is None:
            return None
        return self._plan_dict(plan, self.plans.count_active_members(plan_id))

    def set_plan_active(self, plan_id: int,
                        is_active: Any) -> Optional[Dict[str, Any]]:
        """上架/下架套餐，不存在返回 None。

        Raises:
            ValidationError: is_active 不是合法的布尔值。
        """
        request = parse_request(PlanActiveUpdate, {"is_active": is_active})
        plan = self.plans.update_by_id(
            MembershipPlan, plan_id, is_active=request.is_active
        )
        if plan is None:
            return None
        return self._plan_dict(plan, self.plans.count_active_members(plan_id))

    def delete_plan(self, plan_id: int) -> bool:
        """删除套餐。

        Raises:
            ReferentialError: 仍有 active 会员卡使用该套餐。
        """
        return self.plans.delete_plan(plan_id)

    # ================================================================
    # 会员卡
    # ================================================================

    def create_membership(self, member_id: Any, plan_id: Any,
                          start_date: Any = None) -> Dict[str, Any]:
        """开卡，到期日按套餐时长计算并保存。

        Raises:
            ValidationError: 参数非法，或会员已有 active 会员卡。
            ReferentialError: 会员或套餐不存在。
        """
        fields = {"member_id": member_id, "plan_id": plan_id}
        if start_date is not None:
            fields["start_date"] = start_date
        request = parse_request(MembershipCreate, fields)
        membership = self.memberships.create_membership(
            request.member_id, request.plan_id, request.start_date
        )
        return self._membership_dict(membership)

    def get_current_membership(self, member_id: int) -> Optional[Dict[str, Any]]:
        """获取会员当前 active 会员卡，没有返回 None。"""
        current = self.memberships.get_current(member_id)
        return self._membership_dict(current) if current else None

    def close_membership(self, membership_id: int,
                         status: str = "expired") -> Optional[Dict[str, Any]]:
        """结束会员卡，不存在返回 None。"""
        membership = self.memberships.close(membership_id, status)
        return self._membership_dict(membership) if membership else None

    def renew_membership(self, member_id: int, plan_id: int,
                         start_date: Any = None,
                         today: Optional[date] = None) -> Dict[str, Any]:
        """续卡：结束当前会员卡并开新卡。

        未指定 start_date 时，当前卡未到期则从到期日续，否则从今天开始。
        """
        fields = {"member_id": member_id, "plan_id": plan_id}
        if start_date is not None:
            fields["start_date"] = start_date
        request = parse_request(MembershipCreate, fields)
        membership = self.memberships.renew(
            request.member_id, request.plan_id,
            request.start_date if start_date is not None else None,
            today=today,
        )
        return self._membership_dict(membership)

    # ================================================================
    # 支付
    # ================================================================

    def list_payments(self, status: Optional[str] = None,
                      search: Optional[str] = None,
                      member_id: Optional[int] = None) -> List[Dict[str, Any]]:
        """获取支付记录列表（按支付日期倒序）。

        Args:
            status: completed / pending / failed（大小写不敏感，All 不过滤）。
            search: 按会员姓名或交易流水号搜索。
            member_id: 只看某个会员。
        """
        status = _all_filter(status)
        payments = self.payments.list_payments(
            status=status.lower() if status else None,
            keyword=search,
            member_id=member_id,
        )
        return [self._payment_dict(p) for p in payments]

    def create_payment(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        """记录支付。

        member_id、amount、method 必填；payment_date 默认今天，
        status 默认 completed，未提供 transaction_id 时自动生成。

        Raises:
            ValidationError: 必填字段缺失或格式错误。
            ReferentialError: 会员或会员卡不存在。
        """
        request = parse_request(PaymentCreate, fields)
        payment = self.payments.create_payment(request.model_dump())
        return self._payment_dict(self.payments.get_payment(payment.id))

    def update_payment_status(self, payment_id: int,
                              status: str) -> Optional[Dict[str, Any]]:
        """更新支付状态（只允许 pending -> completed / failed）。"""
        payment = self.payments.update_status(payment_id, (status or "").lower())
        if payment is None:
            return None
        return self._payment_dict(self.payments.get_payment(payment_id))

    # ================================================================
    # 提醒
    # ================================================================

    def list_reminders(self, reminder_type: Optional[str] = None,
                       status: Optional[str] = None) -> List[Dict[str, Any]]:
        """获取提醒列表（按截止日期排序），All/all 表示不过滤。"""
        reminders = self.reminders.list_reminders(
            reminder_type=_all_filter(reminder_type),
            status=_all_filter(status),
        )
        return [self._reminder_dict(r) for r in reminders]

    def create_reminder(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        """新增提醒。

        Raises:
            ValidationError: 字段缺失或取值非法。
            ReferentialError: 会员不存在。
        """
        request = parse_request(ReminderCreate, fields)
        reminder = self.reminders.create_reminder(request.model_dump())
        return self._reminder_dict(self.reminders.get_reminder(reminder.id))

    def update_reminder_status(self, reminder_id: int,
                               status: str) -> Optional[Dict[str, Any]]:
        """切换提醒状态（pending / completed），不存在返回 None。"""
        if self.reminders.update_status(reminder_id, status) is None:
            return None
        return self._reminder_dict(self.reminders.get_reminder(reminder_id))

    def sync_expiry_reminders(self, today: Optional[date] = None,
                              window_days: Any = None
                              ) -> List[Dict[str, Any]]:
        """为即将到期的会员卡生成到期提醒，返回新建的提醒。

        Raises:
            ValidationError: window_days 不是非负整数。
        """
        request = parse_request(ExpirySyncRequest, {"window_days": window_days})
        created = self.reminders.sync_expiry_reminders(
            today or date.today(),
            request.window_days if request.window_days is not None
            else self.expiring_window_days,
        )
        return [
            self._reminder_dict(self.reminders.get_reminder(r.id))
            for r in created
        ]

    # ================================================================
    # 仪表盘
    # ================================================================

    def get_dashboard_stats(self, today: Optional[date] = None) -> Dict[str, Any]:
        """仪表盘统计。

        本月营收只统计 completed 状态的支付。

        Returns:
            包含 total_members、active_members、new_members_this_month、
            monthly_revenue、pending_payments、pending_amount、
            expiring_memberships 的字典。
        """
        today = today or date.today()
        members = self.members.get_all(Member)
        payments = self.payments.get_all(Payment)
        active_memberships = self.memberships.get_all_active()

        return {
            "total_members": len(members),
            "active_members": aggregations.count_by_status(members, "active"),
            "new_members_this_month": aggregations.count_created_in_month(
                members, today
            ),
            "monthly_revenue": float(aggregations.monthly_revenue(payments, today)),
            "pending_payments": aggregations.count_by_status(payments, "pending"),
            "pending_amount": float(aggregations.sum_pending(payments)),
            "expiring_memberships": aggregations.count_expiring_soon(
                active_memberships, today, self.renewal_window_days
            ),
        }
