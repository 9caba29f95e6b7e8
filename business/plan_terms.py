"""套餐期限计算。

会员卡到期日 = 开始日期 + 套餐月数（按自然月计算，而不是固定 30 天）。
目标月份没有对应日期时取该月最后一天，例如 1月31日 + 1个月 = 2月28日/29日。
"""
import calendar
from datetime import date


def add_months(start: date, months: int) -> date:
    """将日期按自然月向后推移。

    Args:
        start: 起始日期。
        months: 推移的月数，必须 >= 0。

    Returns:
        推移后的日期，日超出目标月天数时截断到月末。

    Raises:
        ValueError: months 为负数。
    """
    if months < 0:
        raise ValueError(f"months must be non-negative, got {months}")

    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(start.day, last_day))


def compute_end_date(start_date: date, duration_months: int) -> date:
    """计算会员卡到期日。

    仅在开卡时调用一次，结果写入数据库；之后套餐时长变化不影响已开的卡。

    Args:
        start_date: 开始日期。
        duration_months: 套餐时长（月），必须 >= 1。

    Returns:
        到期日期。

    Raises:
        ValueError: 套餐时长小于 1。
    """
    if duration_months < 1:
        raise ValueError(
            f"duration_months must be at least 1, got {duration_months}"
        )
    return add_months(start_date, duration_months)
