"""Pydantic schemas for the work plan exported as a document.

The wire format is the camelCase JSON produced by the form front-end;
every field is optional so that partially filled plans still export.
"""

from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from app.models.budget_models import FinancialData


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _parse_optional_date(v):
    """Accept "", None, ISO dates and ISO datetimes (time part dropped)."""
    if v is None:
        return None
    if isinstance(v, str):
        v = v.strip()
        if not v:
            return None
        if len(v) > 10 and v[10] in ("T", " "):
            v = v[:10]
    return v


# ---------------------------------------------------------------------------
# Activities / Schedule
# ---------------------------------------------------------------------------


class SubActivity(_CamelModel):
    name: str = ""
    description: str = ""
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    @field_validator("start_date", "end_date", mode="before")
    @classmethod
    def parse_dates(cls, v):
        return _parse_optional_date(v)

    @field_validator("name", "description", mode="before")
    @classmethod
    def none_to_empty(cls, v):
        return "" if v is None else v


class Activity(_CamelModel):
    """One action-plan activity with its ordered sub-activities."""

    name: str = ""
    description: str = ""
    justification: str = ""
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    active_months: List[int] = Field(
        default_factory=list,
        description="Default schedule months (1..12) when no override exists",
    )
    sub_activities: List[SubActivity] = Field(default_factory=list)

    @field_validator("start_date", "end_date", mode="before")
    @classmethod
    def parse_dates(cls, v):
        return _parse_optional_date(v)

    @field_validator("name", "description", "justification", mode="before")
    @classmethod
    def none_to_empty(cls, v):
        return "" if v is None else v

    @field_validator("sub_activities", mode="before")
    @classmethod
    def accept_bare_names(cls, v):
        if v is None:
            return []
        return [{"name": item} if isinstance(item, str) else item for item in v]


class ScheduleCell(_CamelModel):
    """Explicit schedule override; a null sub-activity index targets the activity."""

    activity_index: int
    sub_activity_index: Optional[int] = None
    month: int = Field(..., ge=1, le=12)
    active: bool = True


# ---------------------------------------------------------------------------
# Team / Indicators
# ---------------------------------------------------------------------------


class Professional(_CamelModel):
    name: str = ""
    category: str = ""
    education: str = ""
    degree: str = ""
    mini_cv: str = ""
    role_in_project: str = ""
    activity_assignment: str = ""
    hiring_type: str = ""
    direct_indirect: str = ""

    @field_validator("*", mode="before")
    @classmethod
    def none_to_empty(cls, v):
        return "" if v is None else v


class IndicatorEntry(_CamelModel):
    enabled: bool = False
    quantity: Optional[int] = None


# ---------------------------------------------------------------------------
# Plan
# ---------------------------------------------------------------------------

# Rich-text fields carried as TipTap-style JSON trees, in form order
RICH_TEXT_FIELDS = (
    "motivation",
    "general_objectives",
    "specific_objectives",
    "scope",
    "strategies",
    "innovative_features",
    "expected_results",
    "challenges",
    "proposed_solution",
    "additional_information",
)


class PlanData(_CamelModel):
    """Complete input of one document export. Read-only during a render."""

    # Header
    partner_name: str = ""
    partner_logo: Optional[str] = None
    foundation_name: str = ""
    foundation_logo: Optional[str] = None

    # Identification
    project_name: str = ""
    project_nickname: str = ""
    coordinator_institution: str = ""
    coordinator_company: str = ""
    total_value: Optional[Decimal] = None
    total_value_written: str = ""
    execution_start_date: Optional[date] = None
    execution_end_date: Optional[date] = None
    validity_start_date: Optional[date] = None
    validity_end_date: Optional[date] = None

    # Selected-option sets
    project_types: List[str] = Field(default_factory=list)
    activity_types: List[str] = Field(default_factory=list)
    trl_mrl_level: Optional[int] = Field(None, ge=1, le=9)

    # Rich text
    motivation: Optional[Dict[str, Any]] = None
    general_objectives: Optional[Dict[str, Any]] = None
    specific_objectives: Optional[Dict[str, Any]] = None
    scope: Optional[Dict[str, Any]] = None
    strategies: Optional[Dict[str, Any]] = None
    innovative_features: Optional[Dict[str, Any]] = None
    expected_results: Optional[Dict[str, Any]] = None
    challenges: Optional[Dict[str, Any]] = None
    proposed_solution: Optional[Dict[str, Any]] = None
    additional_information: Optional[Dict[str, Any]] = None

    # Structured sections
    activities: List[Activity] = Field(default_factory=list)
    professionals: List[Professional] = Field(default_factory=list)
    indicators: Dict[str, IndicatorEntry] = Field(default_factory=dict)
    schedule_overrides: List[ScheduleCell] = Field(default_factory=list)
    financial: Optional[FinancialData] = None

    @field_validator(
        "execution_start_date",
        "execution_end_date",
        "validity_start_date",
        "validity_end_date",
        mode="before",
    )
    @classmethod
    def parse_dates(cls, v):
        return _parse_optional_date(v)

    @field_validator("total_value", "trl_mrl_level", mode="before")
    @classmethod
    def blank_to_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator(
        "partner_name",
        "foundation_name",
        "project_name",
        "project_nickname",
        "coordinator_institution",
        "coordinator_company",
        "total_value_written",
        mode="before",
    )
    @classmethod
    def none_to_empty(cls, v):
        return "" if v is None else v

    @field_validator(
        "project_types",
        "activity_types",
        "activities",
        "professionals",
        "schedule_overrides",
        mode="before",
    )
    @classmethod
    def none_to_list(cls, v):
        return [] if v is None else v

    @field_validator("indicators", mode="before")
    @classmethod
    def none_to_dict(cls, v):
        return {} if v is None else v
