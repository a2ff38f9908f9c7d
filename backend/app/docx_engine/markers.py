"""
Injection marker vocabulary of the work plan template.

The names here must match the template exactly: the merge step only
substitutes markers it can resolve from the context, and the template
surgeon only consolidates / protects names listed here.
"""

import re
from typing import FrozenSet

from pydantic.alias_generators import to_camel

from app.models.plan import RICH_TEXT_FIELDS
from app.taxonomy import (
    ACTIVITY_TYPES,
    INDICATORS,
    PROJECT_TYPES,
    TRL_LEVELS,
    checkbox_markers,
)

# Flat scalar markers
SCALAR_MARKERS = (
    "projectName",
    "projectNickname",
    "coordinatorInstitution",
    "coordinatorCompany",
    "totalValue",
    "totalValueWritten",
    "executionPeriod",
    "validityPeriod",
    "partnerName",
    "foundationName",
    "partnerLogo",
    "foundationLogo",
    "trlMrlLevel",
)

CHECKBOX_MARKERS = tuple(
    checkbox_markers(PROJECT_TYPES)
    + checkbox_markers(ACTIVITY_TYPES)
    + [f"trl{level}_check" for level in TRL_LEVELS]
)

INDICATOR_MARKERS = tuple(
    name for key in INDICATORS for name in (f"{key}_check", f"{key}_qty")
)

RICH_TEXT_MARKERS = tuple(to_camel(name) for name in RICH_TEXT_FIELDS)

# Financial section tags, in template order
FINANCIAL_TAGS = (
    "financialSummaryTable",
    "directPersonnelTable",
    "indirectPersonnelTable",
    "personnelHoursTable",
    "equipmentTable",
    "softwareTable",
    "consumablesTable",
    "travelTable",
    "trainingTable",
    "servicesTable",
    "otherExpensesTable",
    "monthlyDistributionTable",
    "disbursementScheduleTable",
)

LANDSCAPE_TAG = "monthlyDistributionTable"

# Loop collection -> (loop variable, injection marker replacing the loop)
REPEATING_REGIONS = {
    "activities": ("activity", "activitiesContent"),
    "professionals": ("professional", "professionalsContent"),
}

SCHEDULE_MARKER = "cronogramaTable"

# Markers whose value is paragraph-level raw markup ({{p name }})
BLOCK_MARKERS = (
    RICH_TEXT_MARKERS
    + tuple(marker for _var, marker in REPEATING_REGIONS.values())
    + (SCHEDULE_MARKER,)
    + FINANCIAL_TAGS
)

PARTNER_LOGO_TOKEN = "##PARTNER_LOGO##"
FOUNDATION_LOGO_TOKEN = "##FOUNDATION_LOGO##"

# Stand-ins for author-typed braces while the merge engine runs
OPEN_BRACE_SENTINEL = "\ue000"
CLOSE_BRACE_SENTINEL = "\ue001"

INLINE_MARKERS: FrozenSet[str] = frozenset(
    SCALAR_MARKERS + CHECKBOX_MARKERS + INDICATOR_MARKERS
)

RECOGNIZED_MARKERS: FrozenSet[str] = INLINE_MARKERS | frozenset(BLOCK_MARKERS)

# Names usable inside an unreplaced loop body ({{ activity.name }})
LOOP_VARIABLES: FrozenSet[str] = frozenset(
    [var for var, _marker in REPEATING_REGIONS.values()] + list(REPEATING_REGIONS)
)

# {{ name }}, {{p name }}, {{ activity.name }}
MARKER_RE = re.compile(r"\{\{-?\s*(?:(p|r)\s+)?([A-Za-z_][\w.]*)\s*-?\}\}")

# {% ... %} control statements
STATEMENT_RE = re.compile(r"\{%.*?%\}", re.DOTALL)


def is_recognized(name: str) -> bool:
    """True for vocabulary markers and attribute access on loop variables."""
    root = name.split(".", 1)[0]
    if "." in name:
        return root in LOOP_VARIABLES
    return name in RECOGNIZED_MARKERS or name in LOOP_VARIABLES


def block_marker_text(name: str) -> str:
    return f"{{{{p {name} }}}}"


def inline_marker_text(name: str) -> str:
    return f"{{{{ {name} }}}}"
