"""统计汇总函数。

纯函数，输入为内存中的记录列表（字典或 ORM 对象均可），空列表返回 0。
"""
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Iterable, Optional

from business.membership_status import to_date


def _field(row: Any, name: str) -> Any:
    """读取字典键或对象属性。"""
    if isinstance(row, dict):
        return row.get(name)
    return getattr(row, name, None)


def _amount(row: Any) -> Decimal:
    value = _field(row, "amount")
    if value is None:
        return Decimal("0")
    return Decimal(str(value))


def sum_by_status(payments: Iterable[Any], status: str) -> Decimal:
    """按支付状态汇总金额。"""
    return sum(
        (_amount(p) for p in payments if _field(p, "status") == status),
        Decimal("0"),
    )


def sum_completed(payments: Iterable[Any]) -> Decimal:
    """已完成支付的金额合计。"""
    return sum_by_status(payments, "completed")


def sum_pending(payments: Iterable[Any]) -> Decimal:
    """待支付的金额合计。"""
    return sum_by_status(payments, "pending")


def _in_month(value: Any, today: date) -> bool:
    d = to_date(value)
    return d is not None and d.year == today.year and d.month == today.month


def monthly_revenue(payments: Iterable[Any],
                    today: Optional[date] = None) -> Decimal:
    """本月营收：支付日期在当月且状态为 completed 的金额合计。"""
    today = today or date.today()
    return sum_completed(
        p for p in payments if _in_month(_field(p, "payment_date"), today)
    )


def count_by_status(rows: Iterable[Any], status: str) -> int:
    """统计 status 字段等于给定值的记录数。"""
    return sum(1 for r in rows if _field(r, "status") == status)


def count_active_for_plan(memberships: Iterable[Any], plan_id: int) -> int:
    """统计某套餐下状态为 active 的会员卡数量。"""
    return sum(
        1 for m in memberships
        if _field(m, "status") == "active" and _field(m, "plan_id") == plan_id
    )


def count_expiring_soon(memberships: Iterable[Any],
                        today: Optional[date] = None,
                        window_days: int = 30) -> int:
    """统计到期日落在 [today, today + window_days] 内的会员卡数量。"""
    today = today or date.today()
    horizon = today + timedelta(days=window_days)
    count = 0
    for m in memberships:
        end = to_date(_field(m, "end_date"))
        if end is not None and today <= end <= horizon:
            count += 1
    return count


def count_created_in_month(rows: Iterable[Any],
                           today: Optional[date] = None) -> int:
    """统计 created_at 落在当月的记录数。"""
    today = today or date.today()
    return sum(1 for r in rows if _in_month(_field(r, "created_at"), today))
