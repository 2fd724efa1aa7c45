"""封装日期计算的常用辅助函数。"""

from datetime import date, timedelta
from typing import Optional

from ..errors import ValidationError


def recent_period(days: int) -> tuple[date, date]:
    """
    功能说明:
        根据给定天数返回最近的起止日期（包含当天）。
    参数:
        days (int): 包含的天数，至少为 1。
    返回:
        tuple[date, date]: (start, end) 日期元组。
    """
    end = date.today()
    start = end - timedelta(days=max(days, 1) - 1)
    return start, end


def _month_end(day: date) -> date:
    first_of_next = (day.replace(day=28) + timedelta(days=4)).replace(day=1)
    return first_of_next - timedelta(days=1)


def preset_range(
    preset: str,
    *,
    today: Optional[date] = None,
    custom_start: Optional[date] = None,
    custom_end: Optional[date] = None,
) -> Optional[tuple[date, date]]:
    """
    功能说明:
        将每日广告费页面的日期快捷选项转换为闭区间。周以周一为起点。
    参数:
        preset (str): none/today/this_week/last_week/this_month/last_month/custom。
        today (Optional[date]): 参考日期，默认当天。
        custom_start (Optional[date]): custom 的起始日期。
        custom_end (Optional[date]): custom 的结束日期。
    返回:
        Optional[tuple[date, date]]: (start, end)；`none` 返回 None 表示不筛选。
    """
    today = today or date.today()
    if preset == "none":
        return None
    if preset == "today":
        return today, today
    if preset in {"this_week", "last_week"}:
        start = today - timedelta(days=today.weekday())
        if preset == "last_week":
            start -= timedelta(days=7)
        return start, start + timedelta(days=6)
    if preset == "this_month":
        return today.replace(day=1), _month_end(today)
    if preset == "last_month":
        last_month_end = today.replace(day=1) - timedelta(days=1)
        return last_month_end.replace(day=1), last_month_end
    if preset == "custom":
        # 自定义区间未填完整时回退为当天。
        if custom_start and custom_end:
            return custom_start, custom_end
        return today, today
    raise ValidationError(f"不支持的日期选项：{preset}")
