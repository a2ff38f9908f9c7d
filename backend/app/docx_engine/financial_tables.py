"""
Financial table builders.

Produce the thirteen financial sections of the work plan (summary,
per-category details, personnel hours, monthly distribution, disbursement
schedule) from ``FinancialData`` using the computations in
``app.services.budget_service``.
"""

import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional, Sequence

from lxml import etree

from app.docx_engine.markers import FINANCIAL_TAGS
from app.docx_engine.ooxml import (
    CONDENSED_SIZE,
    HEADER_FILL,
    LANDSCAPE_TEXT_WIDTH,
    SECTION_FILL,
    SMALL_SIZE,
    SUBTOTAL_FILL,
    MarkupFragment,
    column_widths,
    make_cell,
    make_paragraph,
    make_row,
    make_run,
    make_table,
    placeholder_fragment,
)
from app.models.budget_models import (
    CATEGORY_LABELS,
    DIRECT_CATEGORIES,
    INDIRECT_CATEGORIES,
    FinancialConfig,
    FinancialData,
)
from app.services import budget_service
from app.taxonomy import DIRECT_INDIRECT

logger = logging.getLogger(__name__)

NO_FINANCIAL_DATA = "Nenhum dado financeiro informado."
NO_ITEMS = "Não se aplica."
NO_DISTRIBUTION = "Distribuição mensal não informada."

MONTHLY_DISTRIBUTION_TITLE = "Distribuição Mensal dos Recursos"

_CENTS = Decimal("0.01")

EQUIPMENT_TAGS = {
    "equipmentTable": "equipment",
    "softwareTable": "software",
    "consumablesTable": "consumables",
}

EXPENSE_TAGS = {
    "travelTable": "travel",
    "trainingTable": "training",
    "servicesTable": "services",
    "otherExpensesTable": "other_expenses",
}

PERSONNEL_TAGS = {
    "directPersonnelTable": "direct_personnel",
    "indirectPersonnelTable": "indirect_personnel",
}


# ============================================================================
# Formatting
# ============================================================================


def _grouped(value: Decimal) -> str:
    """1234567.8 -> "1.234.567,80"."""
    text = f"{abs(value).quantize(_CENTS, rounding=ROUND_HALF_UP):,.2f}"
    return text.replace(",", "_").replace(".", ",").replace("_", ".")


def format_brl(value: Any) -> str:
    """Brazilian currency format: ``R$ 1.234,56``."""
    amount = budget_service.to_decimal(value)
    sign = "-" if amount < 0 else ""
    return f"{sign}R$ {_grouped(amount)}"


def format_percent(value: Any) -> str:
    """``12,50%``."""
    amount = budget_service.to_decimal(value).quantize(_CENTS, rounding=ROUND_HALF_UP)
    return f"{amount:.2f}".replace(".", ",") + "%"


def format_quantity(value: Any) -> str:
    amount = budget_service.to_decimal(value)
    if amount == amount.to_integral_value():
        return str(int(amount))
    return f"{amount.normalize():f}".replace(".", ",")


def _pct_label(pct: Any) -> str:
    return format_quantity(pct) + "%"


# ============================================================================
# Table helpers
# ============================================================================


def _header_row(headers: Sequence[str], widths: Sequence[int], size: int = SMALL_SIZE):
    return make_row(
        [
            make_cell(text, width=w, fill=HEADER_FILL, bold=True, size=size, jc="center")
            for text, w in zip(headers, widths)
        ],
        header=True,
    )


def _data_row(
    values: Sequence[str],
    widths: Sequence[int],
    numeric_from: int,
    fill: Optional[str] = None,
    bold: bool = False,
    size: int = SMALL_SIZE,
):
    """Row whose columns from ``numeric_from`` on are right-aligned."""
    return make_row(
        [
            make_cell(
                text,
                width=w,
                fill=fill,
                bold=bold,
                size=size,
                jc="right" if i >= numeric_from else None,
            )
            for i, (text, w) in enumerate(zip(values, widths))
        ]
    )


def _title_paragraph(text: str) -> etree._Element:
    return make_paragraph(make_run(text, bold=True), jc="center", after=120, keep_next=True)


# ============================================================================
# Summary
# ============================================================================


def build_summary(financial: Optional[FinancialData], month_count: int) -> MarkupFragment:
    """
    Category summary with value and share of the grand total.

    Direct categories, direct subtotal, indirect ("other expenses")
    categories, direct + indirect subtotal, then overhead, tax and reserve
    computed on the grossed-up total, and the grand total.
    """
    if not budget_service.has_financial_content(financial):
        return placeholder_fragment(NO_FINANCIAL_DATA)

    config = financial.config or FinancialConfig()
    totals = budget_service.calculate_totals(financial, month_count)
    grand_total = totals["grand_total"]

    def share(value: Decimal) -> str:
        if grand_total == 0:
            return format_percent(0)
        return format_percent(value * 100 / grand_total)

    widths = column_widths([60, 25, 15])
    rows = [_header_row(["Categoria", "Valor (R$)", "%"], widths)]

    for key in DIRECT_CATEGORIES:
        value = totals["categories"][key]
        rows.append(_data_row([CATEGORY_LABELS[key], format_brl(value), share(value)], widths, 1))
    rows.append(
        _data_row(
            [
                "Subtotal (Custos Diretos)",
                format_brl(totals["subtotal_direct"]),
                share(totals["subtotal_direct"]),
            ],
            widths,
            1,
            fill=SUBTOTAL_FILL,
            bold=True,
        )
    )

    for key in INDIRECT_CATEGORIES:
        value = totals["categories"][key]
        rows.append(_data_row([CATEGORY_LABELS[key], format_brl(value), share(value)], widths, 1))
    rows.append(
        _data_row(
            [
                "Subtotal (Custos Diretos + Outros Correlatos)",
                format_brl(totals["net_subtotal"]),
                share(totals["net_subtotal"]),
            ],
            widths,
            1,
            fill=SUBTOTAL_FILL,
            bold=True,
        )
    )

    for label, key, pct in (
        ("Despesas Operacionais", "overhead", config.overhead_pct),
        ("Impostos sobre Serviços", "tax", config.tax_pct),
        ("Reserva Técnica", "reserve", config.reserve_pct),
    ):
        rows.append(
            _data_row(
                [f"{label} ({_pct_label(pct)})", format_brl(totals[key]), share(totals[key])],
                widths,
                1,
            )
        )

    rows.append(
        _data_row(
            ["TOTAL GERAL", format_brl(grand_total), share(grand_total)],
            widths,
            1,
            fill=SECTION_FILL,
            bold=True,
        )
    )
    return MarkupFragment([make_table(rows, widths)])


# ============================================================================
# Category details
# ============================================================================


def build_equipment_table(financial: Optional[FinancialData], category: str) -> MarkupFragment:
    items = budget_service.category_items(financial, category) if financial else []
    if not items:
        return placeholder_fragment(NO_ITEMS)

    widths = column_widths([28, 18, 14, 8, 16, 16])
    rows = [
        _header_row(["Item", "Atividade", "Tipo", "Qtd.", "Valor Unitário", "Total"], widths)
    ]
    total = Decimal("0")
    for item in items:
        line = budget_service.equipment_line_total(item)
        total += line
        rows.append(
            _data_row(
                [
                    item.name or "—",
                    item.activity or "—",
                    item.type or "—",
                    format_quantity(item.quantity),
                    format_brl(item.unit_cost),
                    format_brl(line),
                ],
                widths,
                3,
            )
        )
    rows.append(
        make_row(
            [
                make_cell("Total", width=sum(widths[:5]), grid_span=5, bold=True, fill=SUBTOTAL_FILL),
                make_cell(format_brl(total), width=widths[5], bold=True, fill=SUBTOTAL_FILL, jc="right"),
            ]
        )
    )
    return MarkupFragment([make_table(rows, widths)])


def build_expense_table(financial: Optional[FinancialData], category: str) -> MarkupFragment:
    items = budget_service.category_items(financial, category) if financial else []
    if not items:
        return placeholder_fragment(NO_ITEMS)

    widths = column_widths([36, 16, 10, 19, 19])
    rows = [_header_row(["Descrição", "Tipo", "Qtd.", "Valor Unitário", "Total"], widths)]
    total = Decimal("0")
    for item in items:
        line = budget_service.expense_line_total(item)
        total += line
        rows.append(
            _data_row(
                [
                    item.description or "—",
                    item.type or "—",
                    format_quantity(item.quantity),
                    format_brl(item.unit_cost),
                    format_brl(line),
                ],
                widths,
                2,
            )
        )
    rows.append(
        make_row(
            [
                make_cell("Total", width=sum(widths[:4]), grid_span=4, bold=True, fill=SUBTOTAL_FILL),
                make_cell(format_brl(total), width=widths[4], bold=True, fill=SUBTOTAL_FILL, jc="right"),
            ]
        )
    )
    return MarkupFragment([make_table(rows, widths)])


def build_personnel_table(
    financial: Optional[FinancialData], category: str, month_count: int
) -> MarkupFragment:
    """(base salary + monthly charges) x project months per person."""
    items = budget_service.category_items(financial, category) if financial else []
    if not items:
        return placeholder_fragment(NO_ITEMS)

    widths = column_widths([32, 18, 18, 10, 22])
    rows = [
        _header_row(["Nome", "Salário Base", "Encargos Mensais", "Meses", "Total"], widths)
    ]
    total = Decimal("0")
    for item in items:
        line = budget_service.personnel_line_total(item, month_count)
        total += line
        rows.append(
            _data_row(
                [
                    item.name or "—",
                    format_brl(item.base_salary),
                    format_brl(item.monthly_charges),
                    str(month_count),
                    format_brl(line),
                ],
                widths,
                1,
            )
        )
    rows.append(
        make_row(
            [
                make_cell("Total", width=sum(widths[:4]), grid_span=4, bold=True, fill=SUBTOTAL_FILL),
                make_cell(format_brl(total), width=widths[4], bold=True, fill=SUBTOTAL_FILL, jc="right"),
            ]
        )
    )
    return MarkupFragment([make_table(rows, widths)])


def build_personnel_hours_table(financial: Optional[FinancialData]) -> MarkupFragment:
    """Hourly cost x total hours for direct and indirect staff."""
    entries = []
    if financial is not None:
        for category, flag in (("direct_personnel", "direct"), ("indirect_personnel", "indirect")):
            for item in budget_service.category_items(financial, category):
                if budget_service.to_decimal(item.total_hours) > 0:
                    entries.append((item, DIRECT_INDIRECT[flag]))
    if not entries:
        return placeholder_fragment(NO_ITEMS)

    widths = column_widths([34, 14, 18, 12, 22])
    rows = [_header_row(["Nome", "Alocação", "Custo/Hora", "Horas", "Total"], widths)]
    total = Decimal("0")
    total_hours = Decimal("0")
    for item, allocation in entries:
        line = budget_service.personnel_hours_total(item)
        total += line
        total_hours += budget_service.to_decimal(item.total_hours)
        rows.append(
            _data_row(
                [
                    item.name or "—",
                    allocation,
                    format_brl(item.hourly_cost),
                    format_quantity(item.total_hours),
                    format_brl(line),
                ],
                widths,
                2,
            )
        )
    rows.append(
        make_row(
            [
                make_cell("Total", width=sum(widths[:3]), grid_span=3, bold=True, fill=SUBTOTAL_FILL),
                make_cell(format_quantity(total_hours), width=widths[3], bold=True, fill=SUBTOTAL_FILL, jc="right"),
                make_cell(format_brl(total), width=widths[4], bold=True, fill=SUBTOTAL_FILL, jc="right"),
            ]
        )
    )
    return MarkupFragment([make_table(rows, widths)])


# ============================================================================
# Monthly distribution
# ============================================================================


def build_monthly_distribution(
    financial: Optional[FinancialData], month_count: int
) -> MarkupFragment:
    """
    Category x month grid for the landscape section.

    The section title is part of the output because the template's own title
    paragraph is removed when the landscape section is set up.
    """
    title = _title_paragraph(MONTHLY_DISTRIBUTION_TITLE)
    months = budget_service.distribution_month_count(financial, month_count)
    if financial is None or not financial.monthly_distribution or months == 0:
        fragment = placeholder_fragment(NO_DISTRIBUTION)
        fragment.elements.insert(0, title)
        return fragment

    config = financial.config or FinancialConfig()
    size = CONDENSED_SIZE
    widths = column_widths([18] + [5] * months + [8], total=LANDSCAPE_TEXT_WIDTH)
    headers = ["Categoria"] + [f"M{m}" for m in range(1, months + 1)] + ["Total"]
    rows = [_header_row(headers, widths, size=size)]

    def values_row(label: str, values: List[Optional[Decimal]], fill=None, bold=False):
        total = sum((v for v in values if v is not None), Decimal("0"))
        texts = [label] + [format_brl(v) if v is not None else "" for v in values]
        texts.append(format_brl(total))
        return _data_row(texts, widths, 1, fill=fill, bold=bold, size=size)

    def category_values(key: str) -> List[Optional[Decimal]]:
        return [budget_service.distribution_value(financial, key, m) for m in range(months)]

    def column_sums(keys: Sequence[str]) -> List[Decimal]:
        sums = []
        for m in range(months):
            total = Decimal("0")
            for key in keys:
                value = budget_service.distribution_value(financial, key, m)
                if value is not None:
                    total += value
            sums.append(total)
        return sums

    for key in DIRECT_CATEGORIES:
        rows.append(values_row(CATEGORY_LABELS[key], category_values(key)))
    rows.append(
        values_row("Subtotal (Custos Diretos)", column_sums(DIRECT_CATEGORIES), fill=SUBTOTAL_FILL, bold=True)
    )
    for key in INDIRECT_CATEGORIES:
        rows.append(values_row(CATEGORY_LABELS[key], category_values(key)))
    net_sums = column_sums(DIRECT_CATEGORIES + INDIRECT_CATEGORIES)
    rows.append(
        values_row("Subtotal (Diretos + Outros Correlatos)", net_sums, fill=SUBTOTAL_FILL, bold=True)
    )

    allocations = [budget_service.allocate(value, config) for value in net_sums]
    rows.append(values_row(f"Despesas Operacionais ({_pct_label(config.overhead_pct)})", [a["overhead"] for a in allocations]))
    rows.append(values_row(f"Impostos ({_pct_label(config.tax_pct)})", [a["tax"] for a in allocations]))
    rows.append(values_row(f"Reserva Técnica ({_pct_label(config.reserve_pct)})", [a["reserve"] for a in allocations]))
    rows.append(
        values_row("TOTAL", [a["gross"] for a in allocations], fill=SECTION_FILL, bold=True)
    )

    return MarkupFragment([title, make_table(rows, widths, fixed_layout=True)])


# ============================================================================
# Disbursement schedule
# ============================================================================


def build_disbursement_schedule(
    financial: Optional[FinancialData], month_count: int
) -> MarkupFragment:
    """Per-month gross invoice, tax, net, overhead, reserve and executable values."""
    rows_data = budget_service.disbursement_rows(financial, month_count)
    if not rows_data or all(row["gross"] == 0 for row in rows_data):
        return placeholder_fragment(NO_DISTRIBUTION)

    columns = ("gross", "tax", "net", "overhead", "reserve", "executable")
    headers = [
        "Mês",
        "Valor Bruto",
        "Impostos",
        "Valor Líquido",
        "Despesas Operacionais",
        "Reserva Técnica",
        "Valor Executável",
    ]
    widths = column_widths([8] + [15] * len(columns))
    rows = [_header_row(headers, widths, size=CONDENSED_SIZE + 2)]

    totals: Dict[str, Decimal] = {key: Decimal("0") for key in columns}
    for row in rows_data:
        for key in columns:
            totals[key] += row[key]
        rows.append(
            _data_row(
                [f"M{row['month']}"] + [format_brl(row[key]) for key in columns],
                widths,
                1,
                size=CONDENSED_SIZE + 2,
            )
        )
    rows.append(
        _data_row(
            ["Total"] + [format_brl(totals[key]) for key in columns],
            widths,
            1,
            fill=SECTION_FILL,
            bold=True,
            size=CONDENSED_SIZE + 2,
        )
    )
    return MarkupFragment([make_table(rows, widths)])


# ============================================================================
# All sections
# ============================================================================


def build_financial_sections(
    financial: Optional[FinancialData], month_count: int
) -> Dict[str, MarkupFragment]:
    """Markup for every financial tag, keyed by tag name."""
    sections: Dict[str, MarkupFragment] = {
        "financialSummaryTable": build_summary(financial, month_count),
        "personnelHoursTable": build_personnel_hours_table(financial),
        "monthlyDistributionTable": build_monthly_distribution(financial, month_count),
        "disbursementScheduleTable": build_disbursement_schedule(financial, month_count),
    }
    for tag, category in PERSONNEL_TAGS.items():
        sections[tag] = build_personnel_table(financial, category, month_count)
    for tag, category in EQUIPMENT_TAGS.items():
        sections[tag] = build_equipment_table(financial, category)
    for tag, category in EXPENSE_TAGS.items():
        sections[tag] = build_expense_table(financial, category)

    logger.debug("Built %d financial sections", len(sections))
    return {tag: sections[tag] for tag in FINANCIAL_TAGS}
