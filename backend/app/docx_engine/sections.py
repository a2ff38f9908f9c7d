"""
Section builders for the structured parts of a work plan.

Each builder turns typed plan records into ready-made markup (paragraph
blocks or tables) and falls back to a single italic placeholder paragraph
when there is nothing to show.
"""

import logging
from datetime import date
from typing import Dict, List, Optional, Sequence, Tuple

from app.docx_engine.ooxml import (
    ACTIVE_FILL,
    HEADER_FILL,
    SECTION_FILL,
    SMALL_SIZE,
    TINY_SIZE,
    MarkupFragment,
    column_widths,
    label_value_runs,
    make_cell,
    make_paragraph,
    make_row,
    make_run,
    make_table,
    placeholder_fragment,
    spacer_paragraph,
)
from app.models.plan import Activity, Professional, ScheduleCell, SubActivity
from app.taxonomy import (
    DIRECT_INDIRECT,
    HIRING_TYPES,
    PROFESSIONAL_CATEGORIES,
    lookup_label,
)

logger = logging.getLogger(__name__)

NO_ACTIVITIES = "Nenhuma atividade cadastrada."
NO_PROFESSIONALS = "Nenhum profissional cadastrado."

EM_DASH = "—"
SCHEDULE_MONTHS = 12

_LINE = {"line": 276}
_SUB_INDENT = 360


def format_date_br(value: Optional[date]) -> str:
    """dd/mm/yyyy, or an em dash when the date is missing."""
    if value is None:
        return EM_DASH
    return value.strftime("%d/%m/%Y")


def _blank(text: Optional[str]) -> bool:
    return not (text or "").strip()


# ============================================================================
# Filtering
# ============================================================================


def sub_activity_is_filled(sub: SubActivity) -> bool:
    return not (_blank(sub.name) and _blank(sub.description))


def activity_is_filled(activity: Activity) -> bool:
    if not (
        _blank(activity.name)
        and _blank(activity.description)
        and _blank(activity.justification)
    ):
        return True
    return any(sub_activity_is_filled(sub) for sub in activity.sub_activities)


def filled_activities(activities: Sequence[Activity]) -> List[Tuple[int, Activity]]:
    """Filled activities with their original index, in caller order."""
    return [(i, a) for i, a in enumerate(activities) if activity_is_filled(a)]


def filled_sub_activities(activity: Activity) -> List[Tuple[int, SubActivity]]:
    return [
        (j, sub)
        for j, sub in enumerate(activity.sub_activities)
        if sub_activity_is_filled(sub)
    ]


# ============================================================================
# Activities
# ============================================================================


def _date_line(start: Optional[date], end: Optional[date], size: int = SMALL_SIZE, **ppr):
    runs = [
        make_run("Início: ", bold=True, size=size),
        make_run(format_date_br(start)),
        make_run("    "),
        make_run("Fim: ", bold=True, size=size),
        make_run(format_date_br(end)),
    ]
    return make_paragraph(runs, **ppr)


def build_activities(activities: Sequence[Activity]) -> MarkupFragment:
    """
    Numbered activity blocks.

    For each filled activity: bold "N. name" line, description, numbered
    sub-activities ("N.M name: description", with their own dates when
    given), justification and the start/end line. Unfilled activities and
    sub-activities are skipped and numbering stays sequential.
    """
    entries = filled_activities(activities)
    if not entries:
        return placeholder_fragment(NO_ACTIVITIES)

    fragment = MarkupFragment()
    for number, (_index, activity) in enumerate(entries, start=1):
        title = f"{number}. {activity.name.strip() or '(sem nome)'}"
        fragment.append(make_paragraph(make_run(title, bold=True), **_LINE))

        if not _blank(activity.description):
            fragment.append(
                make_paragraph(label_value_runs("Descrição: ", activity.description), **_LINE)
            )

        subs = filled_sub_activities(activity)
        if subs:
            fragment.append(
                make_paragraph(make_run("Subatividades:", bold=True, size=SMALL_SIZE), **_LINE)
            )
            for sub_number, (_j, sub) in enumerate(subs, start=1):
                runs = [
                    make_run(f"{number}.{sub_number} ", size=SMALL_SIZE),
                    make_run(f"{sub.name.strip() or '(sem nome)'}:", bold=True, size=SMALL_SIZE),
                ]
                if not _blank(sub.description):
                    runs.append(make_run(f" {sub.description}", size=SMALL_SIZE))
                fragment.append(make_paragraph(runs, ind_left=_SUB_INDENT, **_LINE))
                if sub.start_date or sub.end_date:
                    fragment.append(
                        _date_line(
                            sub.start_date,
                            sub.end_date,
                            size=TINY_SIZE,
                            ind_left=_SUB_INDENT * 2,
                            **_LINE,
                        )
                    )

        if not _blank(activity.justification):
            fragment.append(
                make_paragraph(
                    label_value_runs("Justificativa: ", activity.justification), **_LINE
                )
            )

        fragment.append(_date_line(activity.start_date, activity.end_date, **_LINE))

        if number < len(entries):
            fragment.append(spacer_paragraph())

    return fragment


# ============================================================================
# Professionals
# ============================================================================


def professional_is_filled(professional: Professional) -> bool:
    return not (
        _blank(professional.name)
        and _blank(professional.category)
        and _blank(professional.role_in_project)
    )


def role_label(professional: Professional) -> str:
    """Role in the project, else the category label, else an em dash."""
    if not _blank(professional.role_in_project):
        return professional.role_in_project.strip()
    label = lookup_label(PROFESSIONAL_CATEGORIES, professional.category)
    return label or EM_DASH


def _professionals_table(professionals: Sequence[Professional]):
    headers = ["Nº", "Nome", "Titulação", "Função", "Horas"]
    widths = column_widths([6, 34, 20, 28, 12])
    rows = [
        make_row(
            [
                make_cell(text, width=w, fill=HEADER_FILL, bold=True, jc="center")
                for text, w in zip(headers, widths)
            ],
            header=True,
        )
    ]
    for number, professional in enumerate(professionals, start=1):
        values = [
            str(number),
            professional.name.strip() or EM_DASH,
            professional.degree.strip() or EM_DASH,
            role_label(professional),
            EM_DASH,
        ]
        rows.append(
            make_row(
                [
                    make_cell(text, width=w, jc="center" if i in (0, 4) else None)
                    for i, (text, w) in enumerate(zip(values, widths))
                ]
            )
        )
    return make_table(rows, widths)


def build_professionals(professionals: Sequence[Professional]) -> MarkupFragment:
    """Summary table followed by one detail block per professional."""
    entries = [p for p in professionals if professional_is_filled(p)]
    if not entries:
        return placeholder_fragment(NO_PROFESSIONALS)

    fragment = MarkupFragment([_professionals_table(entries), spacer_paragraph()])

    for number, professional in enumerate(entries, start=1):
        fragment.append(
            make_paragraph(make_run(f"{number}. {role_label(professional)}", bold=True), **_LINE)
        )
        fragment.append(
            make_paragraph(label_value_runs("Nome: ", professional.name.strip() or EM_DASH), **_LINE)
        )

        formation = " - ".join(
            part.strip()
            for part in (professional.education, professional.degree)
            if not _blank(part)
        )
        fragment.append(
            make_paragraph(label_value_runs("Formação: ", formation or EM_DASH), **_LINE)
        )

        if not _blank(professional.mini_cv):
            fragment.append(
                make_paragraph(
                    label_value_runs("Minicurrículo: ", professional.mini_cv),
                    jc="both",
                    **_LINE,
                )
            )
        if not _blank(professional.activity_assignment):
            fragment.append(
                make_paragraph(
                    label_value_runs(
                        "Atividades no projeto: ", professional.activity_assignment
                    ),
                    **_LINE,
                )
            )

        hiring = lookup_label(HIRING_TYPES, professional.hiring_type)
        if hiring:
            fragment.append(
                make_paragraph(label_value_runs("Tipo de contratação: ", hiring), **_LINE)
            )
        allocation = lookup_label(DIRECT_INDIRECT, professional.direct_indirect)
        if allocation:
            fragment.append(
                make_paragraph(label_value_runs("Alocação: ", allocation), **_LINE)
            )

        if number < len(entries):
            fragment.append(spacer_paragraph())

    return fragment


# ============================================================================
# Schedule Grid
# ============================================================================


class ScheduleLookup:
    """
    Resolves whether a schedule cell is active.

    Precedence: an override for the exact (activity, sub-activity, month)
    cell, then an activity-wide override for the month, then the activity's
    default month flags.
    """

    def __init__(self, activities: Sequence[Activity], overrides: Sequence[ScheduleCell]):
        self.activities = activities
        self.cells: Dict[Tuple[int, Optional[int], int], bool] = {}
        for cell in overrides:
            self.cells[(cell.activity_index, cell.sub_activity_index, cell.month)] = cell.active

    def is_active(self, activity_index: int, sub_index: Optional[int], month: int) -> bool:
        if sub_index is not None and (activity_index, sub_index, month) in self.cells:
            return self.cells[(activity_index, sub_index, month)]
        if (activity_index, None, month) in self.cells:
            return self.cells[(activity_index, None, month)]
        if 0 <= activity_index < len(self.activities):
            return month in (self.activities[activity_index].active_months or [])
        return False


def _month_cells(lookup: ScheduleLookup, activity_index: int, sub_index: Optional[int], width: int):
    cells = []
    for month in range(1, SCHEDULE_MONTHS + 1):
        active = lookup.is_active(activity_index, sub_index, month)
        cells.append(
            make_cell(
                "X" if active else " ",
                width=width,
                fill=ACTIVE_FILL if active else None,
                size=TINY_SIZE,
                jc="center",
            )
        )
    return cells


def build_schedule(
    activities: Sequence[Activity], overrides: Sequence[ScheduleCell] = ()
) -> MarkupFragment:
    """
    Twelve-month schedule grid.

    One shaded row per activity followed by one row per sub-activity. An
    activity without sub-activities gets its months on its own row.
    Overrides are keyed by original (unfiltered) indexes.
    """
    entries = filled_activities(activities)
    if not entries:
        return placeholder_fragment(NO_ACTIVITIES)

    lookup = ScheduleLookup(activities, overrides)
    name_width = 3000
    month_width = 500
    widths = [name_width] + [month_width] * SCHEDULE_MONTHS

    header = [make_cell("Atividade", width=name_width, fill=HEADER_FILL, bold=True, jc="center")]
    header += [
        make_cell(f"M{m}", width=month_width, fill=HEADER_FILL, bold=True, jc="center")
        for m in range(1, SCHEDULE_MONTHS + 1)
    ]
    rows = [make_row(header, header=True)]

    for number, (index, activity) in enumerate(entries, start=1):
        subs = filled_sub_activities(activity)
        name_cell = make_cell(
            f"{number}. {activity.name.strip()}",
            width=name_width,
            fill=SECTION_FILL,
            bold=True,
        )
        if subs:
            month_cells = [
                make_cell(" ", width=month_width, fill=SECTION_FILL)
                for _ in range(SCHEDULE_MONTHS)
            ]
        else:
            month_cells = _month_cells(lookup, index, None, month_width)
        rows.append(make_row([name_cell] + month_cells))

        for sub_number, (sub_index, sub) in enumerate(subs, start=1):
            text = sub.name.strip() or f"Subatividade {number}.{sub_number}"
            sub_cell = make_cell(
                f"{number}.{sub_number} {text}",
                width=name_width,
                size=TINY_SIZE,
                ind_left=_SUB_INDENT,
            )
            rows.append(
                make_row([sub_cell] + _month_cells(lookup, index, sub_index, month_width))
            )

    logger.debug("Schedule grid built with %d rows", len(rows))
    return MarkupFragment([make_table(rows, widths, fixed_layout=True)])
