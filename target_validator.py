import logging
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Tuple

from config import CONFIG
from recipe_metrics import METRIC_FIELDS, Metrics

logger = logging.getLogger(__name__)

# ====================================================================

TRACKED_FIELDS = ("total_solids", "fat", "sugars", "msnf", "sp", "pac")
OPTIONAL_FIELDS = ("stabilizer", "fruit")

FIELD_LABELS = {
    "total_solids": "Total solids %",
    "fat": "Fat %",
    "sugars": "Sugars %",
    "msnf": "MSNF %",
    "sp": "SP",
    "pac": "PAC",
    "stabilizer": "Stabilizer %",
    "fruit": "Fruit %",
}

Range = Tuple[float, float]


@dataclass(frozen=True)
class TargetBand:
    archetype: str
    ranges: Mapping[str, Range]

    def __post_init__(self):
        for name, (lo, hi) in self.ranges.items():
            if name not in METRIC_FIELDS:
                raise ValueError(f"Unknown band field {name!r} for {self.archetype!r}")
            if lo > hi:
                raise ValueError(f"Band {name!r} for {self.archetype!r} has min > max ({lo} > {hi})")

    def fields(self) -> List[str]:
        return [f for f in TRACKED_FIELDS + OPTIONAL_FIELDS if f in self.ranges]


@dataclass
class ValidationResult:
    passed: Dict[str, bool] = field(default_factory=dict)
    status: Dict[str, str] = field(default_factory=dict)   # pass / near / fail
    messages: List[str] = field(default_factory=list)

    @property
    def all_passed(self) -> bool:
        return all(self.passed.values())


def load_target_bands(overrides: Optional[Mapping[str, Mapping[str, Range]]] = None) -> Dict[str, TargetBand]:
    """Bands per archetype from CONFIG, with optional per-field overrides."""
    raw = {a: dict(r) for a, r in CONFIG["target_bands"].items()}
    for archetype, ranges in (overrides or {}).items():
        raw.setdefault(archetype, {}).update(ranges)
    return {a: TargetBand(a, {k: (float(lo), float(hi)) for k, (lo, hi) in r.items()})
            for a, r in raw.items()}


def get_target_band(archetype: str) -> TargetBand:
    bands = load_target_bands()
    if archetype not in bands:
        raise ValueError(f"No target band for archetype {archetype!r}")
    return bands[archetype]


def corrective_message(name: str, value: float, lo: float, hi: float, total_g: float) -> str:
    low = value < lo
    gap = (lo - value) if low else (value - hi)
    verb, ingredient, grams_per_point_kg = CONFIG["corrections"][name]["low" if low else "high"]
    grams = gap * grams_per_point_kg * total_g / 1000
    direction = "below" if low else "above"
    return (f"{FIELD_LABELS[name]} {value:.1f} is {direction} target {lo:g}–{hi:g} "
            f"(gap {gap:.1f}): {verb} ~{grams:.0f} g {ingredient}")


def validate(metrics: Metrics, band: TargetBand) -> ValidationResult:
    result = ValidationResult()
    near_ratio = CONFIG["near_band_ratio"]
    for name in band.fields():
        lo, hi = band.ranges[name]
        value = metrics.field_value(name)
        ok = lo <= value <= hi
        result.passed[name] = ok
        if ok:
            result.status[name] = "pass"
            continue
        edge = lo if value < lo else hi
        near = abs(value - edge) <= near_ratio * (hi - lo)
        result.status[name] = "near" if near else "fail"
        result.messages.append(corrective_message(name, value, lo, hi, metrics.total_g))

    if metrics.total_g > 0 and metrics.ts_discrepancy_g > CONFIG["ts_discrepancy_ratio"] * metrics.total_g:
        msg = (f"Total solids disagree: additive {metrics.ts_add_pct:.2f}% vs mass balance "
               f"{metrics.ts_mass_pct:.2f}%; check ingredient compositions")
        logger.warning(msg)
        result.messages.append(msg)
    return result
