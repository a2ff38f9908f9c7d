"""
Merge context builder.

Produces the flat dictionary handed to the merge engine: plain strings for
inline markers and MarkupFragment objects for paragraph-level markers.
"""

import logging
from typing import Any, Dict, List, Optional

from pydantic.alias_generators import to_camel

from app.docx_engine.financial_tables import build_financial_sections, format_brl
from app.docx_engine.images import ImageInfo, decode_logo
from app.docx_engine.markers import FOUNDATION_LOGO_TOKEN, PARTNER_LOGO_TOKEN
from app.docx_engine.rich_text import ImageRegistry, RichTextRenderer
from app.docx_engine.sections import (
    EM_DASH,
    build_activities,
    build_professionals,
    build_schedule,
    filled_activities,
    format_date_br,
    professional_is_filled,
)
from app.models.plan import RICH_TEXT_FIELDS, PlanData
from app.services.budget_service import project_month_count
from app.taxonomy import (
    ACTIVITY_TYPES,
    DIRECT_INDIRECT,
    HIRING_TYPES,
    INDICATORS,
    PROJECT_TYPES,
    TRL_LEVELS,
    lookup_label,
)

logger = logging.getLogger(__name__)

DEFAULT_PARTNER_NAME = "Empresa Parceira"
DEFAULT_FOUNDATION_NAME = "Fundação de Apoio"

CHECKED = "X"
UNCHECKED = "  "

# Empty scalars render as one space so the template line keeps its height
EMPTY = " "


def _scalar(value: Optional[str]) -> str:
    value = (value or "").strip()
    return value or EMPTY


def _check(selected: bool) -> str:
    return CHECKED if selected else UNCHECKED


def format_period(start, end) -> str:
    """``dd/mm/yyyy a dd/mm/yyyy``; a missing bound shows as an em dash."""
    return f"{format_date_br(start)} a {format_date_br(end)}"


def format_trl(level: Optional[int]) -> str:
    if level is None:
        return EMPTY
    if level not in TRL_LEVELS:
        return str(level)
    return f"{level} - {TRL_LEVELS[level]}"


# ============================================================================
# Context sections
# ============================================================================


def decode_plan_logos(plan: PlanData) -> Dict[str, ImageInfo]:
    """Decodable header logos of the plan, keyed by placeholder token."""
    logos: Dict[str, ImageInfo] = {}
    for token, label, value in (
        (PARTNER_LOGO_TOKEN, "Partner", plan.partner_logo),
        (FOUNDATION_LOGO_TOKEN, "Foundation", plan.foundation_logo),
    ):
        if not value:
            continue
        info = decode_logo(value)
        if info is None:
            logger.warning("%s logo could not be decoded; using the name instead", label)
            continue
        logos[token] = info
    return logos


def _header_context(plan: PlanData, logos: Dict[str, ImageInfo]) -> Dict[str, str]:
    partner_name = plan.partner_name.strip()
    foundation_name = plan.foundation_name.strip()

    if PARTNER_LOGO_TOKEN in logos:
        partner_logo = PARTNER_LOGO_TOKEN
    else:
        partner_logo = partner_name or EMPTY
    if FOUNDATION_LOGO_TOKEN in logos:
        foundation_logo = FOUNDATION_LOGO_TOKEN
    else:
        foundation_logo = foundation_name or EMPTY

    return {
        "partnerName": partner_name or DEFAULT_PARTNER_NAME,
        "foundationName": foundation_name or DEFAULT_FOUNDATION_NAME,
        "partnerLogo": partner_logo,
        "foundationLogo": foundation_logo,
    }


def _identification_context(plan: PlanData) -> Dict[str, str]:
    return {
        "projectName": _scalar(plan.project_name),
        "projectNickname": _scalar(plan.project_nickname),
        "coordinatorInstitution": _scalar(plan.coordinator_institution),
        "coordinatorCompany": _scalar(plan.coordinator_company),
        "totalValue": format_brl(plan.total_value) if plan.total_value is not None else EM_DASH,
        "totalValueWritten": _scalar(plan.total_value_written),
        "executionPeriod": format_period(plan.execution_start_date, plan.execution_end_date),
        "validityPeriod": format_period(plan.validity_start_date, plan.validity_end_date),
        "trlMrlLevel": format_trl(plan.trl_mrl_level),
    }


def _checkbox_context(plan: PlanData) -> Dict[str, str]:
    context: Dict[str, str] = {}
    project_types = set(plan.project_types)
    activity_types = set(plan.activity_types)
    for code, (marker, _label) in PROJECT_TYPES.items():
        context[marker] = _check(code in project_types)
    for code, (marker, _label) in ACTIVITY_TYPES.items():
        context[marker] = _check(code in activity_types)
    for level in TRL_LEVELS:
        context[f"trl{level}_check"] = _check(plan.trl_mrl_level == level)

    for key in INDICATORS:
        entry = plan.indicators.get(key)
        enabled = bool(entry and entry.enabled)
        context[f"{key}_check"] = _check(enabled)
        if enabled:
            context[f"{key}_qty"] = str(entry.quantity if entry.quantity is not None else 0)
        else:
            context[f"{key}_qty"] = ""
    return context


def _loop_items(plan: PlanData) -> Dict[str, List[Dict[str, Any]]]:
    """Plain records for templates whose loops were not replaced."""
    activities = [
        {
            "index": number,
            "name": _scalar(activity.name),
            "description": _scalar(activity.description),
            "justification": _scalar(activity.justification),
            "startDate": format_date_br(activity.start_date),
            "endDate": format_date_br(activity.end_date),
            "subActivities": [
                {"name": _scalar(sub.name), "description": _scalar(sub.description)}
                for sub in activity.sub_activities
            ],
        }
        for number, (_index, activity) in enumerate(filled_activities(plan.activities), start=1)
    ]
    professionals = [
        {
            "index": number,
            "name": _scalar(p.name),
            "education": _scalar(p.education),
            "degree": _scalar(p.degree),
            "miniCv": _scalar(p.mini_cv),
            "activityAssignment": _scalar(p.activity_assignment),
            "hiringType": lookup_label(HIRING_TYPES, p.hiring_type),
            "directIndirect": lookup_label(DIRECT_INDIRECT, p.direct_indirect),
        }
        for number, p in enumerate(
            [p for p in plan.professionals if professional_is_filled(p)], start=1
        )
    ]
    return {"activities": activities, "professionals": professionals}


# ============================================================================
# Entry point
# ============================================================================


def build_merge_context(
    plan: PlanData,
    registry: ImageRegistry,
    logos: Optional[Dict[str, ImageInfo]] = None,
) -> Dict[str, Any]:
    """
    Build the complete merge context of one document render.

    Args:
        plan: Validated work plan
        registry: Image registry of this render; local rich-text images are
            registered here and embedded by the post-processor
        logos: Decoded header logos (see decode_plan_logos); decoded from
            the plan when omitted

    Returns:
        Flat dict keyed by marker name
    """
    if logos is None:
        logos = decode_plan_logos(plan)

    context: Dict[str, Any] = {}
    context.update(_header_context(plan, logos))
    context.update(_identification_context(plan))
    context.update(_checkbox_context(plan))

    renderer = RichTextRenderer(registry)
    for field_name in RICH_TEXT_FIELDS:
        context[to_camel(field_name)] = renderer.render(getattr(plan, field_name))

    context["activitiesContent"] = build_activities(plan.activities)
    context["professionalsContent"] = build_professionals(plan.professionals)
    context["cronogramaTable"] = build_schedule(plan.activities, plan.schedule_overrides)

    month_count = project_month_count(plan.execution_start_date, plan.execution_end_date)
    context.update(build_financial_sections(plan.financial, month_count))

    context.update(_loop_items(plan))

    logger.debug(
        "Built merge context: %d keys, %d content image(s)", len(context), len(registry)
    )
    return context
