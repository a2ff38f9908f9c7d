"""
Work Plan API Models

Pydantic models for data validation and serialization.
"""

from .budget_models import (
    CATEGORY_LABELS,
    CATEGORY_ORDER,
    DIRECT_CATEGORIES,
    INDIRECT_CATEGORIES,
    EquipmentItem,
    ExpenseItem,
    FinancialConfig,
    FinancialData,
    PersonnelCost,
)

from .plan import (
    RICH_TEXT_FIELDS,
    Activity,
    IndicatorEntry,
    PlanData,
    Professional,
    ScheduleCell,
    SubActivity,
)

__all__ = [
    # Financial
    "CATEGORY_LABELS",
    "CATEGORY_ORDER",
    "DIRECT_CATEGORIES",
    "INDIRECT_CATEGORIES",
    "EquipmentItem",
    "ExpenseItem",
    "FinancialConfig",
    "FinancialData",
    "PersonnelCost",
    # Plan
    "RICH_TEXT_FIELDS",
    "Activity",
    "IndicatorEntry",
    "PlanData",
    "Professional",
    "ScheduleCell",
    "SubActivity",
]
