"""
Taxonomy constants and lookup utilities.

Shared code tables for the work plan form: project and activity types,
result indicators, TRL/MRL levels, professional categories, hiring types
and the direct/indirect flag used by the export engine.
"""

from typing import Dict, List, Optional


# ============================================================================
# Project / Activity Types (Sections 2 and 3)
# ============================================================================

# Code -> (checkbox marker, label)
PROJECT_TYPES: Dict[str, tuple] = {
    "SW_DEV": ("sw_dev_check", "Desenvolvimento/Melhoria de SW"),
    "PRODUCT_DEV": ("product_dev_check", "Desenvolvimento/Melhoria de Produto"),
    "PROCESS_DEV": ("process_dev_check", "Desenvolvimento/Melhoria de Processo"),
    "AUTOMATION": ("automation_check", "Automação de Processos"),
    "TRAINING": ("training_pt_check", "Capacitação"),
    "NOT_DEFINED": ("not_defined_pt_check", "Não Definido"),
}

ACTIVITY_TYPES: Dict[str, tuple] = {
    "BASIC_RESEARCH": ("basic_research_check", "I - Pesquisa Básica Dirigida"),
    "APPLIED_RESEARCH": ("applied_research_check", "II - Pesquisa Aplicada"),
    "EXPERIMENTAL_DEV": (
        "experimental_dev_check",
        "III - Desenvolvimento Experimental",
    ),
    "TECH_INNOVATION": ("tech_innovation_check", "IV - Inovação Tecnológica"),
    "TRAINING": ("training_at_check", "V - Formação ou Capacitação Profissional"),
    "CONSULTING": (
        "consulting_check",
        "VI - Serviços de Consultoria Científica e Tecnológica",
    ),
    "NOT_DEFINED": ("not_defined_at_check", "Não Definido"),
}


# ============================================================================
# Result Indicators (Section 10)
# ============================================================================

# Indicator key -> label. Keys double as marker prefixes
# (``<key>_check`` / ``<key>_qty``).
INDICATORS: Dict[str, str] = {
    "patents": "Patentes Depositadas",
    "coOwnership": "Concessão de Co-titularidade ou de participação nos resultados",
    "prototypes": "Protótipos com inovação científica ou tecnológica",
    "processes": "Processo com inovação científica ou tecnológica",
    "products": "Produto com inovação científica ou tecnológica",
    "software": "Programa de Computador com inovação científica ou tecnológica",
    "publications": "Publicação científica e tecnológica",
    "trainedProfessionals": "Profissionais formados ou capacitados",
    "ecosystemConservation": "Conservação dos ecossistemas",
    "other": "Outros indicadores",
}


# ============================================================================
# TRL / MRL Levels (Section 12)
# ============================================================================

TRL_LEVELS: Dict[int, str] = {
    1: "Ideação",
    2: "Concepção",
    3: "Prova de Conceito",
    4: "Otimização",
    5: "Prototipagem",
    6: "Escalonamento",
    7: "Demonstração em ambiente operacional",
    8: "Produção",
    9: "Produção contínua",
}


# ============================================================================
# Human Resources (Section 9)
# ============================================================================

PROFESSIONAL_CATEGORIES: Dict[str, str] = {
    "COORDINATOR": "Coordenador(a)",
    "RESEARCHER": "Pesquisador(a)",
    "DEVELOPER": "Desenvolvedor(a)",
    "TECHNICIAN": "Técnico(a)",
    "INTERN": "Estagiário(a)",
    "ADMINISTRATIVE": "Apoio Administrativo",
}

HIRING_TYPES: Dict[str, str] = {
    "CLT": "CLT",
    "PJ": "PJ",
    "INTERCHANGE": "Intercâmbio",
    "OTHER": "Outro",
}

DIRECT_INDIRECT: Dict[str, str] = {
    "direct": "Direto",
    "indirect": "Indireto",
}


def lookup_label(table: Dict, code: Optional[str]) -> str:
    """
    Resolve a stored code to its display label.

    Unknown codes are returned unchanged so that free-text values typed
    before a code table existed still show up in the document.

    Args:
        table: One of the code tables in this module
        code: Stored code (may be empty)

    Returns:
        Label for the code, the code itself, or "" for empty input
    """
    if not code:
        return ""
    value = table.get(code, code)
    if isinstance(value, tuple):
        return value[1]
    return value


def checkbox_markers(table: Dict[str, tuple]) -> List[str]:
    """Marker names of a checkbox code table, in display order."""
    return [marker for marker, _label in table.values()]
