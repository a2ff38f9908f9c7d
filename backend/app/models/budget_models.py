"""Pydantic schemas for the financial section of a work plan."""

from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Direct cost categories, in summary display order
DIRECT_CATEGORIES = (
    "direct_personnel",
    "equipment",
    "software",
    "consumables",
    "travel",
    "training",
    "services",
)

# Indirect cost categories ("other expenses" block)
INDIRECT_CATEGORIES = (
    "indirect_personnel",
    "other_expenses",
)

CATEGORY_ORDER = DIRECT_CATEGORIES + INDIRECT_CATEGORIES

CATEGORY_LABELS = {
    "direct_personnel": "Recursos Humanos Diretos",
    "equipment": "Equipamentos e Material Permanente",
    "software": "Licenças de Software",
    "consumables": "Material de Consumo",
    "travel": "Viagens",
    "training": "Treinamento",
    "services": "Serviços de Terceiros",
    "indirect_personnel": "Recursos Humanos Indiretos",
    "other_expenses": "Outros Correlatos",
}


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _none_to_zero(v):
    if v is None or v == "":
        return Decimal("0")
    return v


# ---------------------------------------------------------------------------
# Line Item Schemas
# ---------------------------------------------------------------------------


class EquipmentItem(_CamelModel):
    """Equipment-like line item (equipment, software licences, consumables)."""

    name: str = ""
    activity: str = Field("", description="Activity the item is tagged to")
    type: str = ""
    quantity: Decimal = Decimal("0")
    unit_cost: Decimal = Decimal("0")

    @field_validator("quantity", "unit_cost", mode="before")
    @classmethod
    def blank_to_zero(cls, v):
        return _none_to_zero(v)


class PersonnelCost(_CamelModel):
    """Personnel cost line (direct or indirect staff)."""

    name: str = ""
    base_salary: Decimal = Decimal("0")
    monthly_charges: Decimal = Decimal("0")
    hourly_cost: Decimal = Decimal("0")
    total_hours: Decimal = Decimal("0")

    @field_validator(
        "base_salary", "monthly_charges", "hourly_cost", "total_hours", mode="before"
    )
    @classmethod
    def blank_to_zero(cls, v):
        return _none_to_zero(v)


class ExpenseItem(_CamelModel):
    """Line item of an "other expenses" sub-category (travel, services...)."""

    description: str = ""
    type: str = ""
    quantity: Decimal = Decimal("0")
    unit_cost: Decimal = Decimal("0")

    @field_validator("quantity", "unit_cost", mode="before")
    @classmethod
    def blank_to_zero(cls, v):
        return _none_to_zero(v)


# ---------------------------------------------------------------------------
# Configuration / Aggregate
# ---------------------------------------------------------------------------


class FinancialConfig(BaseModel):
    """Percentages applied on top of the net subtotal.

    Values are whole-number percents (5 means 5%) and are fractions of the
    grossed-up total, not of the net subtotal.
    """

    model_config = ConfigDict(populate_by_name=True)

    tax_pct: Decimal = Field(Decimal("0"), alias="tax")
    overhead_pct: Decimal = Field(Decimal("0"), alias="overhead")
    reserve_pct: Decimal = Field(Decimal("0"), alias="reserve")

    @field_validator("tax_pct", "overhead_pct", "reserve_pct", mode="before")
    @classmethod
    def blank_to_zero(cls, v):
        return _none_to_zero(v)


class FinancialData(_CamelModel):
    """All financial inputs of a work plan. Every list defaults to empty."""

    equipment: List[EquipmentItem] = Field(default_factory=list)
    software: List[EquipmentItem] = Field(default_factory=list)
    consumables: List[EquipmentItem] = Field(default_factory=list)

    direct_personnel: List[PersonnelCost] = Field(default_factory=list)
    indirect_personnel: List[PersonnelCost] = Field(default_factory=list)

    travel: List[ExpenseItem] = Field(default_factory=list)
    training: List[ExpenseItem] = Field(default_factory=list)
    services: List[ExpenseItem] = Field(default_factory=list)
    other_expenses: List[ExpenseItem] = Field(default_factory=list)

    config: FinancialConfig = Field(default_factory=FinancialConfig)

    # category key -> value per project month (index 0 = month 1)
    monthly_distribution: Optional[Dict[str, List[Optional[Decimal]]]] = None

    @field_validator("monthly_distribution")
    @classmethod
    def validate_distribution_keys(cls, v):
        if v is None:
            return v
        unknown = [key for key in v if key not in CATEGORY_ORDER]
        if unknown:
            raise ValueError(
                f"Invalid distribution categories {unknown}. "
                f"Must be among: {', '.join(CATEGORY_ORDER)}"
            )
        return v
