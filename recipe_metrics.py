"""
Physicochemical metrics of a frozen-dessert mix.

Masses are accumulated per component, evaporation removes part of the water,
and every percentage is taken against the post-evaporation mass. Sweetening
power (SP) and anti-freezing power (PAC) are concentration-weighted sums of
per-sugar coefficients, so they do not depend on batch size.
"""

import logging
import math
from dataclasses import asdict, dataclass
from typing import Dict, Iterable, List, NamedTuple, Optional, Sequence, Tuple

from config import CONFIG
from ingredient_catalog import IngredientRecord, RecipeLine

logger = logging.getLogger(__name__)

# ====================================================================


class CoefficientPair(NamedTuple):
    sp: float    # sucrose = 1.00
    pac: float   # sucrose = 100


REFERENCE_COEFFICIENTS: Dict[str, CoefficientPair] = {
    "sucrose": CoefficientPair(1.00, 100.0),
    "dextrose": CoefficientPair(0.74, 190.0),
    "fructose": CoefficientPair(1.73, 190.0),
    "invert": CoefficientPair(1.25, 190.0),
    "lactose": CoefficientPair(0.16, 100.0),
    "glucose_syrup": CoefficientPair(0.50, 118.0),
}

# Checked in order; the first pattern found in the id or name wins.
# Glucose syrup comes before dextrose so "glucose syrup" is not read as dextrose.
SUGAR_TYPE_PATTERNS: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("glucose_syrup", ("glucose_de", "glucose syrup", "glucose_syrup", "corn syrup")),
    ("invert", ("invert",)),
    ("fructose", ("fructose",)),
    ("dextrose", ("dextrose", "glucose")),
    ("lactose", ("lactose",)),
    ("sucrose", ("sucrose", "sugar")),
)


@dataclass(frozen=True)
class SugarSource:
    """How an ingredient's sugar is weighted.

    kind is one of "override", "fruit_split", "sugar_type", "baseline";
    portions are (share of the sugar mass, coefficients) and shares sum to 1.
    """
    kind: str
    portions: Tuple[Tuple[float, CoefficientPair], ...]
    label: str = ""


def resolve_sugar_source(ing: IngredientRecord) -> SugarSource:
    """Single resolver for SP/PAC coefficients, in fixed precedence order:
    ingredient override → fruit sugar split → sugar-type table → sucrose baseline.
    """
    if ing.sp_coeff is not None and ing.pac_coeff is not None:
        return SugarSource("override", ((1.0, CoefficientPair(ing.sp_coeff, ing.pac_coeff)),), ing.id)

    if ing.category == "fruit" and ing.sugar_split is not None and ing.sugar_split.total > 0:
        split = ing.sugar_split.normalized()
        return SugarSource("fruit_split", (
            (split.glucose / 100, REFERENCE_COEFFICIENTS["dextrose"]),
            (split.fructose / 100, REFERENCE_COEFFICIENTS["fructose"]),
            (split.sucrose / 100, REFERENCE_COEFFICIENTS["sucrose"]),
        ), ing.id)

    sugar_type = match_sugar_type(ing)
    if sugar_type is not None:
        return SugarSource("sugar_type", ((1.0, REFERENCE_COEFFICIENTS[sugar_type]),), sugar_type)

    return SugarSource("baseline", ((1.0, REFERENCE_COEFFICIENTS["sucrose"]),), "sucrose")


def match_sugar_type(ing: IngredientRecord) -> Optional[str]:
    ing_id = (ing.id or "").lower()
    if ing_id in REFERENCE_COEFFICIENTS:
        return ing_id
    haystacks = (ing_id, (ing.name or "").lower())
    for sugar_type, patterns in SUGAR_TYPE_PATTERNS:
        if any(p in h for p in patterns for h in haystacks):
            return sugar_type
    return None


LACTOSE_SOURCE = SugarSource("sugar_type", ((1.0, REFERENCE_COEFFICIENTS["lactose"]),), "lactose")


@dataclass(frozen=True)
class Metrics:
    input_total_g: float
    evaporated_water_g: float
    total_g: float

    water_g: float
    sugars_g: float
    fat_g: float
    msnf_g: float
    other_g: float

    water_pct: float
    sugars_pct: float
    fat_pct: float
    msnf_pct: float
    other_pct: float

    ts_add_g: float
    ts_mass_g: float
    ts_add_pct: float
    ts_mass_pct: float

    sp: float
    pac: float

    stabilizer_pct: float = 0.0
    fruit_pct: float = 0.0
    diagnostics: Tuple[str, ...] = ()

    @property
    def ts_discrepancy_g(self) -> float:
        return abs(self.ts_add_g - self.ts_mass_g)

    def field_value(self, field_name: str) -> float:
        return getattr(self, METRIC_FIELDS[field_name])

    def as_dict(self) -> Dict[str, float]:
        d = asdict(self)
        d["diagnostics"] = list(self.diagnostics)
        return d


# target / band field name → Metrics attribute
METRIC_FIELDS: Dict[str, str] = {
    "total_solids": "ts_add_pct",
    "sugars": "sugars_pct",
    "fat": "fat_pct",
    "msnf": "msnf_pct",
    "sp": "sp",
    "pac": "pac",
    "stabilizer": "stabilizer_pct",
    "fruit": "fruit_pct",
}


def _grams(line: RecipeLine) -> float:
    g = line.grams or 0.0
    return g if math.isfinite(g) and g > 0 else 0.0


def _part(grams: float, pct: Optional[float]) -> float:
    if pct is None or not math.isfinite(pct):
        return 0.0
    return grams * pct / 100


def sugar_contributions(source: SugarSource, sugar_g: float, total_g: float) -> List[CoefficientPair]:
    """SP/PAC contributed by sugar_g grams of sugar in a mix of total_g grams."""
    if total_g <= 0:
        return []
    out = []
    for share, coeff in source.portions:
        frac = sugar_g * share / total_g
        out.append(CoefficientPair(frac * coeff.sp * 100, frac * (coeff.pac / 100) * 100))
    return out


def compute_metrics(lines: Iterable[RecipeLine], evaporation_pct: float = 0.0) -> Metrics:
    lines = list(lines)
    diagnostics: List[str] = []

    total_g = sum(_grams(l) for l in lines)
    water_g = sugars_g = fat_g = msnf_g = other_g = 0.0
    stabilizer_g = fruit_g = 0.0
    for line in lines:
        g = _grams(line)
        ing = line.ingredient
        water_g += _part(g, ing.water_pct)
        sugars_g += _part(g, ing.sugars_pct)
        fat_g += _part(g, ing.fat_pct)
        msnf_g += _part(g, ing.msnf_pct)
        other_g += _part(g, ing.other_solids_pct)
        if ing.category == "stabilizer":
            stabilizer_g += g
        elif ing.category == "fruit":
            fruit_g += g

    lo, hi = CONFIG["evaporation_limits"]
    evap = evaporation_pct if evaporation_pct is not None and math.isfinite(evaporation_pct) else 0.0
    evap = max(lo, min(hi, evap))
    water_left_g = max(0.0, water_g * (1 - evap / 100))
    water_loss_g = water_g - water_left_g
    final_g = max(0.0, total_g - water_loss_g)
    if final_g <= 0 and lines:
        msg = "Total mass after evaporation is zero; all percentages reported as 0"
        logger.warning(msg)
        diagnostics.append(msg)

    def pct(x: float) -> float:
        return x / final_g * 100 if final_g > 0 else 0.0

    ts_add_g = sugars_g + fat_g + msnf_g + other_g
    ts_mass_g = final_g - water_left_g

    sp = pac = 0.0
    if final_g > 0:
        for line in lines:
            g = _grams(line)
            ing = line.ingredient
            parts = []
            sugar_g = _part(g, ing.sugars_pct)
            if sugar_g > 0:
                parts.append((resolve_sugar_source(ing), sugar_g))
            lactose_g = _part(g, ing.lactose_pct)
            if lactose_g > 0:
                parts.append((LACTOSE_SOURCE, lactose_g))
            for source, mass in parts:
                for c in sugar_contributions(source, mass, final_g):
                    if math.isfinite(c.sp):
                        sp += c.sp
                    else:
                        msg = f"Non-finite SP contribution from {ing.name} ({source.kind}); skipped"
                        logger.warning(msg)
                        diagnostics.append(msg)
                    if math.isfinite(c.pac):
                        pac += c.pac
                    else:
                        msg = f"Non-finite PAC contribution from {ing.name} ({source.kind}); skipped"
                        logger.warning(msg)
                        diagnostics.append(msg)

    sp = sp if math.isfinite(sp) else 0.0
    pac = pac if math.isfinite(pac) else 0.0

    return Metrics(
        input_total_g=total_g,
        evaporated_water_g=water_loss_g,
        total_g=final_g,
        water_g=water_left_g, sugars_g=sugars_g, fat_g=fat_g, msnf_g=msnf_g, other_g=other_g,
        water_pct=pct(water_left_g), sugars_pct=pct(sugars_g), fat_pct=pct(fat_g),
        msnf_pct=pct(msnf_g), other_pct=pct(other_g),
        ts_add_g=ts_add_g, ts_mass_g=ts_mass_g,
        ts_add_pct=pct(ts_add_g), ts_mass_pct=pct(ts_mass_g),
        sp=sp, pac=pac,
        stabilizer_pct=pct(stabilizer_g), fruit_pct=pct(fruit_g),
        diagnostics=tuple(diagnostics),
    )


def sugar_intensity(ing: IngredientRecord) -> CoefficientPair:
    """SP/PAC an ingredient would show if it were the whole mix (no evaporation)."""
    sp = pac = 0.0
    for source, pct_ in ((resolve_sugar_source(ing), ing.sugars_pct), (LACTOSE_SOURCE, ing.lactose_pct)):
        if not pct_:
            continue
        for c in sugar_contributions(source, pct_, 100.0):
            if math.isfinite(c.sp):
                sp += c.sp
            if math.isfinite(c.pac):
                pac += c.pac
    return CoefficientPair(sp, pac)


@dataclass(frozen=True)
class RecipeCost:
    total: float             # currency units per batch
    per_kg: float            # over the whole batch mass, priced or not
    priced_g: float
    unpriced: Tuple[str, ...] = ()


def recipe_cost(lines: Iterable[RecipeLine]) -> RecipeCost:
    """Batch cost from cost_per_kg; lines without a price are listed, not counted."""
    total = priced_g = batch_g = 0.0
    unpriced = []
    for line in lines:
        g = _grams(line)
        batch_g += g
        price = line.ingredient.cost_per_kg
        if price is None or not math.isfinite(price):
            if g > 0:
                unpriced.append(line.ingredient.name)
            continue
        total += g / 1000 * price
        priced_g += g
    per_kg = total / batch_g * 1000 if batch_g > 0 else 0.0
    return RecipeCost(total=total, per_kg=per_kg, priced_g=priced_g, unpriced=tuple(unpriced))


def scale_lines(lines: Sequence[RecipeLine], factor: float) -> List[RecipeLine]:
    return [l.with_grams(l.grams * factor) for l in lines]
