"""
Canonical construction step catalog.

Static configuration consumed by the schedule engine:
    - CONSTRUCTION_STEPS:   the 17 canonical steps, in physical execution order
    - TRADE_COLORS:         trade → display colour (UI only)
    - SUPPLIER_LEAD_DAYS / FABRICATION_LEAD_DAYS / MEASUREMENT_CONFIG:
                            per-step defaults applied when a row is created
    - STAGE_TO_STEP:        project stage → first step still to be scheduled
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class CanonicalStep:
    step_id: str
    title: str
    phase: str
    default_trade_type: str
    default_estimated_days: int

    def to_dict(self) -> dict:
        return {
            "step_id": self.step_id,
            "title": self.title,
            "phase": self.phase,
            "default_trade_type": self.default_trade_type,
            "default_estimated_days": self.default_estimated_days,
        }


CONSTRUCTION_STEPS: tuple[CanonicalStep, ...] = (
    # pre-construction
    CanonicalStep("planification", "Planification du projet", "pre-construction", "autre", 15),
    CanonicalStep("financement", "Financement", "pre-construction", "autre", 20),
    CanonicalStep("plans-permis", "Plans et permis", "pre-construction", "autre", 30),
    # gros oeuvre
    CanonicalStep("excavation-fondation", "Excavation et fondation", "gros-oeuvre", "excavation", 15),
    CanonicalStep("structure", "Structure et charpente", "gros-oeuvre", "charpente", 15),
    CanonicalStep("toiture", "Toiture", "gros-oeuvre", "toiture", 7),
    CanonicalStep("fenetres-portes", "Fenêtres et portes extérieures", "gros-oeuvre", "fenetre", 5),
    # second oeuvre
    CanonicalStep("electricite", "Électricité", "second-oeuvre", "electricite", 7),
    CanonicalStep("plomberie", "Plomberie", "second-oeuvre", "plomberie", 7),
    CanonicalStep("hvac", "Chauffage et ventilation", "second-oeuvre", "hvac", 7),
    CanonicalStep("isolation", "Isolation et pare-vapeur", "second-oeuvre", "isolation", 5),
    # finitions
    CanonicalStep("gypse", "Gypse et peinture", "finitions", "gypse", 15),
    CanonicalStep("revetements-sol", "Revêtements de sol", "finitions", "plancher", 7),
    CanonicalStep("cuisine-sdb", "Cuisine et salles de bain", "finitions", "armoires", 10),
    CanonicalStep("finitions-int", "Finitions intérieures", "finitions", "finitions", 10),
    CanonicalStep("exterieur", "Revêtement extérieur", "finitions", "exterieur", 15),
    CanonicalStep("inspections-finales", "Inspections finales", "finitions", "inspecteur", 5),
)

_STEPS_BY_ID = {s.step_id: s for s in CONSTRUCTION_STEPS}

DEFAULT_TRADE_TYPE = "autre"
DEFAULT_ESTIMATED_DAYS = 5
DEFAULT_SUPPLIER_LEAD_DAYS = 21

TRADE_COLORS = {
    "excavation": "#8B4513",
    "fondation": "#A0522D",
    "beton": "#808080",
    "charpente": "#D2691E",
    "toiture": "#2F4F4F",
    "fenetre": "#4682B4",
    "electricite": "#FFD700",
    "plomberie": "#1E90FF",
    "hvac": "#FF6347",
    "isolation": "#FFB6C1",
    "gypse": "#F5F5DC",
    "peinture": "#9370DB",
    "plancher": "#DEB887",
    "ceramique": "#20B2AA",
    "armoires": "#8FBC8F",
    "comptoirs": "#B8860B",
    "finitions": "#DDA0DD",
    "exterieur": "#556B2F",
    "amenagement": "#228B22",
    "inspecteur": "#DC143C",
    "arpenteur": "#708090",
    "entrepreneur-general": "#483D8B",
    "autre": "#6B7280",
}

# Business days before the step start to call the supplier.
SUPPLIER_LEAD_DAYS = {
    "fenetres-portes": 42,
    "cuisine-sdb": 35,
    "revetements-sol": 14,
}

# Business days before the step start to launch fabrication.
FABRICATION_LEAD_DAYS = {
    "cuisine-sdb": 21,
    "fenetres-portes": 28,
}

MEASUREMENT_CONFIG = {
    "cuisine-sdb": {"after_step": "gypse", "notes": "Mesures après gypse, avant peinture"},
    "revetements-sol": {"after_step": "gypse", "notes": "Mesures après tirage de joints"},
}

STAGE_TO_STEP = {
    "planification": "planification",
    "permis": "plans-permis",
    "fondation": "excavation-fondation",
    "structure": "structure",
    "finition": "gypse",
}


def get_step(step_id: str) -> CanonicalStep | None:
    return _STEPS_BY_ID.get(step_id)


def get_trade_color(trade_type: str | None) -> str:
    return TRADE_COLORS.get(trade_type or DEFAULT_TRADE_TYPE, TRADE_COLORS[DEFAULT_TRADE_TYPE])


def default_row_fields(step_id: str, supplier_lead_days: int = DEFAULT_SUPPLIER_LEAD_DAYS) -> dict:
    """Column defaults for a schedule row created lazily from the catalog.

    Raises KeyError for a step that is not in the catalog.
    """
    step = _STEPS_BY_ID[step_id]
    measurement = MEASUREMENT_CONFIG.get(step_id)
    return {
        "step_id": step.step_id,
        "step_name": step.title,
        "trade_type": step.default_trade_type,
        "trade_color": get_trade_color(step.default_trade_type),
        "estimated_days": step.default_estimated_days,
        "supplier_schedule_lead_days": SUPPLIER_LEAD_DAYS.get(step_id, supplier_lead_days),
        "fabrication_lead_days": FABRICATION_LEAD_DAYS.get(step_id, 0),
        "measurement_required": measurement is not None,
        "measurement_after_step_id": measurement["after_step"] if measurement else None,
        "measurement_notes": measurement["notes"] if measurement else None,
    }


def steps_from_stage(current_stage: str | None = None) -> list[CanonicalStep]:
    """Canonical steps still to schedule for a project at ``current_stage``.

    Unknown or missing stage → the full pipeline.
    """
    first = STAGE_TO_STEP.get(current_stage or "planification")
    for index, step in enumerate(CONSTRUCTION_STEPS):
        if step.step_id == first:
            return list(CONSTRUCTION_STEPS[index:])
    return list(CONSTRUCTION_STEPS)


def total_project_duration(current_stage: str | None = None) -> int:
    """Sum of default durations (business days) from ``current_stage`` to the end."""
    return sum(s.default_estimated_days for s in steps_from_stage(current_stage))
