"""会员状态推导。

会员状态不落库，每次读取时根据到期日实时计算，避免与存储状态不一致。
"""
from datetime import date, datetime
from typing import Optional, Union

STATUS_ACTIVE = "Active"
STATUS_EXPIRING = "Expiring"
STATUS_EXPIRED = "Expired"

PAID = "Paid"
DUE = "Due"

PAYMENT_STATUS_LABELS = {
    "completed": "Completed",
    "pending": "Pending",
    "failed": "Failed",
}

DateLike = Union[date, datetime, str, None]


def to_date(value: DateLike) -> Optional[date]:
    """将 date/datetime/ISO 字符串转换为 date，无法识别返回 None。"""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value[:10])
        except ValueError:
            return None
    return None


def days_until(end_date: date, today: date) -> int:
    """距离到期日的天数，已过期为负数。"""
    return (end_date - today).days


def classify_membership_status(end_date: DateLike,
                               today: Optional[date] = None,
                               fallback_status: Optional[str] = None,
                               expiring_days: int = 7) -> Optional[str]:
    """根据到期日推导会员状态。

    - 到期日 <= 今天: Expired
    - 剩余 1 ~ expiring_days 天: Expiring
    - 其他: Active

    没有到期日（或日期无法解析）时返回会员的原始存储状态。

    Args:
        end_date: 当前有效会员卡的到期日。
        today: 当前日期，默认 date.today()。
        fallback_status: 会员的原始存储状态。
        expiring_days: Expiring 阈值天数。

    Returns:
        推导出的状态字符串。
    """
    end = to_date(end_date)
    if end is None:
        return fallback_status

    remaining = days_until(end, today or date.today())
    if remaining <= 0:
        return STATUS_EXPIRED
    if remaining <= expiring_days:
        return STATUS_EXPIRING
    return STATUS_ACTIVE


def payment_standing(end_date: DateLike,
                     today: Optional[date] = None) -> str:
    """会员缴费状态：到期日在今天之后为 Paid，否则为 Due。"""
    end = to_date(end_date)
    if end is not None and end > (today or date.today()):
        return PAID
    return DUE


def payment_status_label(status: Optional[str]) -> Optional[str]:
    """支付状态码转显示文本，未知状态原样返回。"""
    return PAYMENT_STATUS_LABELS.get(status, status)
