"""Identity check-ins and weekly reflections — inputs to observation analysis.

A check-in is five yes/no daily practices. The score is how many were done.
"""

from dataclasses import dataclass

# (field, short label) in display order
PRACTICES = (
    ("morning_grounding", "grounding"),
    ("embodied_movement", "movement"),
    ("nutritional_awareness", "nutrition"),
    ("present_connection", "connection"),
    ("curiosity_spark", "curiosity"),
)


@dataclass
class IdentityMetrics:
    date: str
    morning_grounding: bool = False
    embodied_movement: bool = False
    nutritional_awareness: bool = False
    present_connection: bool = False
    curiosity_spark: bool = False

    def practices_done(self) -> list[str]:
        return [label for name, label in PRACTICES if getattr(self, name)]

    @property
    def score(self) -> int:
        return len(self.practices_done())


@dataclass
class WeeklyReflection:
    week_start_date: str
    what_went_well: str = ""
    what_mattered: str = ""
    learnings: str = ""
    capability_growth: bool | None = None
