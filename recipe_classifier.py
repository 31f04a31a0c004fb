import math
from dataclasses import dataclass
from typing import Dict, Tuple

from recipe_metrics import Metrics

# ====================================================================

# Order of the dimensions in every centroid / weight vector.
DIMENSIONS = ("ts_add_pct", "sugars_pct", "fat_pct", "msnf_pct", "sp", "pac")


@dataclass(frozen=True)
class ArchetypeCentroid:
    archetype: str
    centroid: Tuple[float, float, float, float, float, float]
    weights: Tuple[float, float, float, float, float, float] = (1.0, 1.0, 1.0, 1.0, 0.5, 0.5)

    def distance(self, values: Tuple[float, ...]) -> float:
        d = 0.0
        for v, c, w in zip(values, self.centroid, self.weights):
            d += w * (v - c) * (v - c)
        return d if math.isfinite(d) else math.inf


#                       TS    sugar  fat   msnf   SP    PAC
ARCHETYPE_CENTROIDS: Tuple[ArchetypeCentroid, ...] = (
    ArchetypeCentroid("white_base", (34.5, 17.5, 7.5, 10.0, 17.5, 24.0)),
    ArchetypeCentroid("finished_gelato", (39.0, 20.0, 9.5, 8.5, 20.0, 27.0)),
    ArchetypeCentroid("fruit_gelato", (33.0, 24.0, 4.5, 5.5, 22.0, 28.0)),
    ArchetypeCentroid("sorbet", (32.0, 28.0, 0.5, 0.5, 27.0, 30.5)),
)

# Equidistant archetypes resolve to the earliest entry here.
# Provisional order, pending product input.
TIE_BREAK_PRIORITY: Tuple[str, ...] = ("white_base", "finished_gelato", "fruit_gelato", "sorbet")

ARCHETYPES = TIE_BREAK_PRIORITY


def metric_vector(metrics: Metrics) -> Tuple[float, ...]:
    return tuple(float(getattr(metrics, d)) for d in DIMENSIONS)


def archetype_distances(metrics: Metrics) -> Dict[str, float]:
    values = metric_vector(metrics)
    return {c.archetype: c.distance(values) for c in ARCHETYPE_CENTROIDS}


def classify(metrics: Metrics) -> str:
    """Nearest archetype by weighted squared distance; ties go to TIE_BREAK_PRIORITY."""
    distances = archetype_distances(metrics)
    best = min(distances.values())
    if not math.isfinite(best):
        return TIE_BREAK_PRIORITY[0]
    for archetype in TIE_BREAK_PRIORITY:
        if math.isclose(distances[archetype], best, rel_tol=1e-12, abs_tol=1e-12):
            return archetype
    return TIE_BREAK_PRIORITY[0]
