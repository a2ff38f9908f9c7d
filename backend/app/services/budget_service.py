"""Financial computation for work plan exports.

Pure functions: project duration in months, per-category line and category
totals, and the backward allocation ("gross-up") that turns a net subtotal
into the grossed-up total on which tax, overhead and reserve are charged.
Everything works on Decimal and rounds money to two places.
"""

import logging
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional

from app.models.budget_models import (
    CATEGORY_ORDER,
    DIRECT_CATEGORIES,
    INDIRECT_CATEGORIES,
    EquipmentItem,
    ExpenseItem,
    FinancialConfig,
    FinancialData,
    PersonnelCost,
)

logger = logging.getLogger(__name__)

# Two-decimal quantizer for money rounding
_TWO_PLACES = Decimal("0.01")

_HUNDRED = Decimal("100")

PERSONNEL_CATEGORIES = ("direct_personnel", "indirect_personnel")


def _money(value: Decimal) -> Decimal:
    return value.quantize(_TWO_PLACES, rounding=ROUND_HALF_UP)


def to_decimal(value: Any) -> Decimal:
    """Convert numbers, numeric strings and None to Decimal (None -> 0)."""
    if value is None or value == "":
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


# ---------------------------------------------------------------------------
# Duration
# ---------------------------------------------------------------------------


def project_month_count(start: Optional[date], end: Optional[date]) -> int:
    """Number of calendar months spanned by ``start``..``end``, inclusive.

    A project running from 2025-01-15 to 2025-12-10 spans 12 months.
    Missing dates or an end before the start give 0.
    """
    if start is None or end is None or end < start:
        return 0
    return (end.year - start.year) * 12 + (end.month - start.month) + 1


# ---------------------------------------------------------------------------
# Line totals
# ---------------------------------------------------------------------------


def equipment_line_total(item: EquipmentItem) -> Decimal:
    return _money(to_decimal(item.quantity) * to_decimal(item.unit_cost))


def expense_line_total(item: ExpenseItem) -> Decimal:
    return _money(to_decimal(item.quantity) * to_decimal(item.unit_cost))


def personnel_line_total(item: PersonnelCost, month_count: int) -> Decimal:
    """(base salary + monthly charges) x project months."""
    monthly = to_decimal(item.base_salary) + to_decimal(item.monthly_charges)
    return _money(monthly * Decimal(max(month_count, 0)))


def personnel_hours_total(item: PersonnelCost) -> Decimal:
    """Hourly cost x total project hours."""
    return _money(to_decimal(item.hourly_cost) * to_decimal(item.total_hours))


def line_total(category: str, item: Any, month_count: int) -> Decimal:
    """Dispatch to the line-total formula of ``category``."""
    if category in PERSONNEL_CATEGORIES:
        return personnel_line_total(item, month_count)
    if isinstance(item, EquipmentItem):
        return equipment_line_total(item)
    return expense_line_total(item)


def category_items(financial: FinancialData, category: str) -> List[Any]:
    return list(getattr(financial, category, None) or [])


def category_total(financial: FinancialData, category: str, month_count: int) -> Decimal:
    total = Decimal("0")
    for item in category_items(financial, category):
        total += line_total(category, item, month_count)
    return _money(total)


# ---------------------------------------------------------------------------
# Backward allocation
# ---------------------------------------------------------------------------


def gross_up_total(
    net_subtotal: Any,
    tax_pct: Any = 0,
    overhead_pct: Any = 0,
    reserve_pct: Any = 0,
) -> Decimal:
    """Gross total such that deducting the percentages leaves ``net_subtotal``.

    ``total = net / (1 - (tax + overhead + reserve) / 100)``. Percentages are
    whole numbers. When the divisor is zero or negative the net subtotal is
    returned unchanged.
    """
    net = to_decimal(net_subtotal)
    divisor = Decimal("1") - (
        to_decimal(tax_pct) + to_decimal(overhead_pct) + to_decimal(reserve_pct)
    ) / _HUNDRED
    if divisor <= 0:
        logger.warning(
            "Deduction percentages sum to 100%% or more; treating %s as gross", net
        )
        return _money(net)
    return _money(net / divisor)


def percentage_of(total: Decimal, pct: Any) -> Decimal:
    return _money(to_decimal(total) * to_decimal(pct) / _HUNDRED)


def allocate(net_subtotal: Any, config: FinancialConfig) -> Dict[str, Decimal]:
    """Gross-up ``net_subtotal`` and split the gross total into its parts.

    Returns gross, tax, net (gross - tax), overhead, reserve and executable
    (net - overhead - reserve).
    """
    gross = gross_up_total(
        net_subtotal, config.tax_pct, config.overhead_pct, config.reserve_pct
    )
    tax = percentage_of(gross, config.tax_pct)
    overhead = percentage_of(gross, config.overhead_pct)
    reserve = percentage_of(gross, config.reserve_pct)
    net = _money(gross - tax)
    return {
        "gross": gross,
        "tax": tax,
        "net": net,
        "overhead": overhead,
        "reserve": reserve,
        "executable": _money(net - overhead - reserve),
    }


# ---------------------------------------------------------------------------
# Aggregates
# ---------------------------------------------------------------------------


def calculate_totals(financial: Optional[FinancialData], month_count: int) -> Dict[str, Any]:
    """Roll every category up and apply the backward allocation.

    Returns a dict with:
    - categories: category key -> total, in summary order
    - subtotal_direct, subtotal_indirect, net_subtotal
    - tax, overhead, reserve, grand_total
    """
    financial = financial or FinancialData()
    config = financial.config or FinancialConfig()

    categories: Dict[str, Decimal] = {}
    for key in CATEGORY_ORDER:
        categories[key] = category_total(financial, key, month_count)

    subtotal_direct = _money(sum((categories[k] for k in DIRECT_CATEGORIES), Decimal("0")))
    subtotal_indirect = _money(
        sum((categories[k] for k in INDIRECT_CATEGORIES), Decimal("0"))
    )
    net_subtotal = _money(subtotal_direct + subtotal_indirect)

    grand_total = gross_up_total(
        net_subtotal, config.tax_pct, config.overhead_pct, config.reserve_pct
    )

    return {
        "categories": categories,
        "subtotal_direct": subtotal_direct,
        "subtotal_indirect": subtotal_indirect,
        "net_subtotal": net_subtotal,
        "tax": percentage_of(grand_total, config.tax_pct),
        "overhead": percentage_of(grand_total, config.overhead_pct),
        "reserve": percentage_of(grand_total, config.reserve_pct),
        "grand_total": grand_total,
    }


def distribution_month_count(financial: Optional[FinancialData], month_count: int) -> int:
    """Columns of the monthly distribution grid.

    The project duration when known, otherwise the longest distribution list.
    """
    if month_count > 0:
        return month_count
    if financial is None or not financial.monthly_distribution:
        return 0
    return max((len(values or []) for values in financial.monthly_distribution.values()), default=0)


def distribution_value(
    financial: Optional[FinancialData], category: str, month_index: int
) -> Optional[Decimal]:
    """Allocated value of ``category`` in month ``month_index`` (0-based) or None."""
    if financial is None or not financial.monthly_distribution:
        return None
    values = financial.monthly_distribution.get(category) or []
    if month_index >= len(values) or values[month_index] is None:
        return None
    return _money(to_decimal(values[month_index]))


def monthly_category_sums(financial: Optional[FinancialData], months: int) -> List[Decimal]:
    """Sum of every category's distributed value, per project month."""
    sums: List[Decimal] = []
    for month_index in range(months):
        total = Decimal("0")
        for key in CATEGORY_ORDER:
            value = distribution_value(financial, key, month_index)
            if value is not None:
                total += value
        sums.append(_money(total))
    return sums


def disbursement_rows(financial: Optional[FinancialData], month_count: int) -> List[Dict[str, Any]]:
    """One allocation per project month, from that month's category sum."""
    financial = financial or FinancialData()
    config = financial.config or FinancialConfig()
    months = distribution_month_count(financial, month_count)

    rows: List[Dict[str, Any]] = []
    for month_index, month_sum in enumerate(monthly_category_sums(financial, months)):
        row = allocate(month_sum, config)
        row["month"] = month_index + 1
        rows.append(row)
    return rows


def has_financial_content(financial: Optional[FinancialData]) -> bool:
    """True when at least one line item carries a non-zero amount."""
    if financial is None:
        return False
    totals = calculate_totals(financial, 1)
    if totals["net_subtotal"] != 0:
        return True
    return any(
        personnel_hours_total(item) != 0
        for key in PERSONNEL_CATEGORIES
        for item in category_items(financial, key)
    )
