"""
Sales history filtering and period aggregates.

A sale's calendar date comes from its server timestamp (converted to the
report timezone) or, for sales that have not round-tripped yet or were
imported without one, from the stored display date string.
"""
import math
from dataclasses import dataclass
from datetime import date, datetime, timezone, tzinfo
from decimal import Decimal
from typing import Iterable

from manha_pos.schemas.sales import FilterType, Sale

DATE_STR_FORMATS = ("%m/%d/%Y", "%Y-%m-%d")


@dataclass(frozen=True)
class ReportResult:
    sales: list[Sale]
    revenue: Decimal
    order_count: int


def sort_sales(sales: Iterable[Sale]) -> list[Sale]:
    """Newest first; a sale without a server timestamp yet counts as newest."""

    def key(sale: Sale) -> float:
        return sale.created_at.timestamp() if sale.created_at else math.inf

    return sorted(sales, key=key, reverse=True)


def sale_date(sale: Sale, tz: tzinfo = timezone.utc) -> date | None:
    if sale.created_at is not None:
        created = sale.created_at
        if created.tzinfo is None:
            created = created.replace(tzinfo=timezone.utc)
        return created.astimezone(tz).date()

    raw = (sale.date_str or "").strip()
    for fmt in DATE_STR_FORMATS:
        try:
            return datetime.strptime(raw, fmt).date()
        except ValueError:
            continue
    return None


def matches_search(sale: Sale, term: str) -> bool:
    needle = term.strip().lower()
    if not needle:
        return True
    haystack = (sale.order_number, sale.customer_name, sale.customer_mobile)
    return any(field and needle in field.lower() for field in haystack)


def _parse_month(value: str | None, today: date) -> tuple[int, int]:
    if not value:
        return today.year, today.month
    year, month = value.split("-", 1)
    return int(year), int(month)


def filter_sales(
    sales: Iterable[Sale],
    *,
    search: str = "",
    filter_type: FilterType = "all",
    filter_date: date | None = None,
    filter_month: str | None = None,
    filter_year: int | None = None,
    tz: tzinfo = timezone.utc,
    include_undated: bool = True,
) -> ReportResult:
    """
    Select the sales matching ``search`` within the requested period.

    Missing reference values default to the current day/month/year in ``tz``.
    Sales whose date cannot be derived are kept when ``include_undated`` is
    set, which is how the shop's history screen has always behaved.
    """
    today = datetime.now(tz).date()
    ref_date = filter_date or today
    ref_year, ref_month = _parse_month(filter_month, today)
    ref_only_year = filter_year or today.year

    def in_period(sale: Sale) -> bool:
        if filter_type == "all":
            return True
        derived = sale_date(sale, tz)
        if derived is None:
            return include_undated
        if filter_type == "daily":
            return derived == ref_date
        if filter_type == "monthly":
            return (derived.year, derived.month) == (ref_year, ref_month)
        return derived.year == ref_only_year

    matched = [
        sale for sale in sort_sales(sales) if matches_search(sale, search) and in_period(sale)
    ]
    revenue = sum((sale.total for sale in matched), Decimal("0"))
    return ReportResult(sales=matched, revenue=revenue, order_count=len(matched))
