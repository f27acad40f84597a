"""财年工具 — 财年以起始日历年命名（FY 2024 = 2024-07-01 ~ 2025-06-30）"""

from datetime import date

from fleet_assets.config import settings


def fiscal_year_on_date(on_date: date, start_month: int | None = None) -> int:
    """返回日期所在财年"""
    start_month = start_month or settings.FISCAL_YEAR_START_MONTH
    if on_date.month >= start_month:
        return on_date.year
    return on_date.year - 1


def start_of_fiscal_year(year: int, start_month: int | None = None) -> date:
    """财年第一天"""
    start_month = start_month or settings.FISCAL_YEAR_START_MONTH
    return date(year, start_month, 1)


def current_fiscal_year(on_date: date | None = None) -> int:
    return fiscal_year_on_date(on_date or date.today())


def current_planning_year(on_date: date | None = None) -> int:
    """当前规划年 = 当前财年 + PLANNING_YEAR_OFFSET"""
    return current_fiscal_year(on_date) + settings.PLANNING_YEAR_OFFSET


def fiscal_year_label(year: int) -> str:
    """2024 → "FY 24-25" """
    return f"FY {year % 100:02d}-{(year + 1) % 100:02d}"
