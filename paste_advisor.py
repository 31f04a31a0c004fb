"""
Preservation advice for flavour pastes used as gelato inclusions.

Rule based and deterministic: every method is evaluated on its own, so several
can qualify at once. The output is guidance only; any thermal process still has
to be validated by a process authority before production.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from config import CONFIG
from ingredient_catalog import IngredientRecord, SugarSplit, normalize_token

logger = logging.getLogger(__name__)

# ====================================================================

PASTE_CATEGORIES = ("dairy", "fruit", "confection", "spice", "nut", "mixed")
ALLERGENS = ("milk", "nuts", "gluten")
METHODS = ("retort", "hot_fill", "frozen", "freeze_dry")

ADVISORY_NOTICE = ("Non-binding guidance: process lethality, shelf life and packaging "
                   "must be validated by a qualified process authority.")

# paste category → recipe ingredient category
_INGREDIENT_CATEGORY = {
    "dairy": "dairy",
    "fruit": "fruit",
    "confection": "flavor",
    "spice": "flavor",
    "nut": "flavor",
    "mixed": "flavor",
}


@dataclass(frozen=True)
class PasteComponent:
    name: str
    grams: float
    water_pct: float = 0.0
    sugars_pct: float = 0.0
    fat_pct: float = 0.0
    msnf_pct: float = 0.0
    other_solids_pct: float = 0.0
    sugar_split: Optional[SugarSplit] = None

    @classmethod
    def from_ingredient(cls, ing: IngredientRecord, grams: float) -> "PasteComponent":
        return cls(
            name=ing.name, grams=grams,
            water_pct=ing.water_pct, sugars_pct=ing.sugars_pct, fat_pct=ing.fat_pct,
            msnf_pct=ing.msnf_pct, other_solids_pct=ing.other_solids_pct,
            sugar_split=ing.sugar_split,
        )


@dataclass(frozen=True)
class LabSpecs:
    brix_deg: Optional[float] = None
    ph: Optional[float] = None
    aw_est: Optional[float] = None


@dataclass(frozen=True)
class PasteFormula:
    name: str
    category: str
    components: Tuple[PasteComponent, ...] = ()
    water_pct: float = 0.0
    sugars_pct: float = 0.0
    fat_pct: float = 0.0
    msnf_pct: float = 0.0
    other_solids_pct: float = 0.0
    sugar_split: Optional[SugarSplit] = None
    lab: LabSpecs = LabSpecs()
    cost_per_kg: Optional[float] = None
    allergens: Tuple[str, ...] = ()
    acidity_citric_pct: Optional[float] = None   # titratable acidity as citric acid

    def __post_init__(self):
        if self.category not in PASTE_CATEGORIES:
            raise ValueError(f"Unknown paste category {self.category!r}")
        unknown = [a for a in self.allergens if a not in ALLERGENS]
        if unknown:
            raise ValueError(f"Unknown allergens {unknown} (expected any of {list(ALLERGENS)})")

    @property
    def batch_size_g(self) -> float:
        return sum(c.grams for c in self.components)

    @classmethod
    def from_components(cls, name: str, category: str, components: Sequence[PasteComponent],
                        lab: Optional[LabSpecs] = None, cost_per_kg: Optional[float] = None,
                        allergens: Sequence[str] = (),
                        acidity_citric_pct: Optional[float] = None) -> "PasteFormula":
        """Aggregate composition as a mass-weighted average of the components."""
        components = tuple(components)
        total = sum(c.grams for c in components)

        def w(attr: str) -> float:
            if total <= 0:
                return 0.0
            return sum(getattr(c, attr) * c.grams for c in components) / total

        # sugar of components without a declared split counts as sucrose
        split = None
        glu = fru = suc = 0.0
        for c in components:
            sugar_g = c.grams * c.sugars_pct / 100
            if c.sugar_split is None or c.sugar_split.total <= 0:
                suc += sugar_g
                continue
            s = c.sugar_split.normalized()
            glu += sugar_g * s.glucose / 100
            fru += sugar_g * s.fructose / 100
            suc += sugar_g * s.sucrose / 100
        if glu + fru > 0:
            split = SugarSplit(glucose=glu, fructose=fru, sucrose=suc).normalized()

        return cls(
            name=name, category=category, components=components,
            water_pct=w("water_pct"), sugars_pct=w("sugars_pct"), fat_pct=w("fat_pct"),
            msnf_pct=w("msnf_pct"), other_solids_pct=w("other_solids_pct"),
            sugar_split=split, lab=lab or LabSpecs(), cost_per_kg=cost_per_kg,
            allergens=tuple(allergens), acidity_citric_pct=acidity_citric_pct,
        )

    def allergen_notes(self) -> Tuple[str, ...]:
        return (f"allergens: {', '.join(self.allergens)}",) if self.allergens else ()

    def to_ingredient(self) -> IngredientRecord:
        """The paste as a single recipe ingredient."""
        category = _INGREDIENT_CATEGORY[self.category]
        return IngredientRecord(
            id=normalize_token(self.name),
            name=self.name,
            category=category,
            water_pct=self.water_pct, fat_pct=self.fat_pct, sugars_pct=self.sugars_pct,
            msnf_pct=self.msnf_pct, other_solids_pct=self.other_solids_pct,
            sugar_split=self.sugar_split if category == "fruit" else None,
            cost_per_kg=self.cost_per_kg,
            notes=self.allergen_notes(),
        )

    def freeze_dried_ingredient(self, residual_water_pct: Optional[float] = None) -> IngredientRecord:
        """Freeze-dried powder: water down to a residual level, solids scaled up to match."""
        residual = CONFIG["freeze_dry_residual_water_pct"] if residual_water_pct is None else residual_water_pct
        base = self.to_ingredient()
        solids = base.total_solids_pct
        if solids <= 0:
            logger.warning("Paste %r has no solids; freeze-dried variant is empty", self.name)
            factor = 0.0
            residual = 100.0
        else:
            factor = (100 - residual) / solids
        return IngredientRecord(
            id=f"{base.id}_fd",
            name=f"{self.name} (freeze-dried)",
            category=base.category,
            water_pct=residual,
            fat_pct=base.fat_pct * factor,
            sugars_pct=base.sugars_pct * factor,
            msnf_pct=base.msnf_pct * factor,
            other_solids_pct=base.other_solids_pct * factor,
            sugar_split=base.sugar_split,
            notes=("freeze-dried: raises total solids without adding water",) + base.notes,
        )


@dataclass(frozen=True)
class PreservationPreferences:
    ambient_preferred: bool = False
    clean_label: bool = False
    particulate_mm: Optional[float] = None


@dataclass(frozen=True)
class AdviceTargets:
    brix_deg: Optional[float] = None
    ph: Optional[float] = None
    aw_max: Optional[float] = None
    particle_mm_max: Optional[float] = None


@dataclass(frozen=True)
class GelatoImpact:
    aroma_retention: str    # low / medium / high
    color_browning: str
    notes: Tuple[str, ...] = ()


@dataclass(frozen=True)
class PreservationAdvice:
    method: str
    confidence: float
    why: Tuple[str, ...]
    targets: AdviceTargets
    packaging: Tuple[str, ...]
    storage: str            # ambient / chilled / frozen
    shelf_life_hint: str
    impact_on_gelato: GelatoImpact
    requires_process_validation: bool = True
    notice: str = ADVISORY_NOTICE


def estimate_water_activity(lab: LabSpecs) -> Optional[float]:
    """Measured aw if given, else a rough proxy from °Brix."""
    if lab.aw_est is not None:
        return lab.aw_est
    if lab.brix_deg is None:
        return None
    return max(0.75, 1 - 0.45 * (lab.brix_deg / 100))


def is_dairy(paste: PasteFormula) -> bool:
    return paste.category == "dairy" or (paste.msnf_pct or 0) > CONFIG["dairy_msnf_threshold"]


def advise(paste: PasteFormula, preferences: Optional[PreservationPreferences] = None) -> List[PreservationAdvice]:
    prefs = preferences or PreservationPreferences()
    ph = paste.lab.ph
    brix = paste.lab.brix_deg
    dairy = is_dairy(paste)
    particulate = CONFIG["default_particulate_mm"] if prefs.particulate_mm is None else prefs.particulate_mm
    aw = estimate_water_activity(paste.lab)
    low_acid_ph = CONFIG["low_acid_ph"]
    max_particle = CONFIG["hot_fill_max_particle_mm"]

    adv = []

    # 1) hot fill: high acid, high Brix, no dairy, small particulates
    if (not dairy and ph is not None and ph <= low_acid_ph
            and (brix or 0) >= CONFIG["hot_fill_min_brix"] and particulate <= max_particle):
        why = ["High-acid & high °Bx; typical jam-like hot-fill feasible",
               "No dairy components",
               "Particulates ok"]
        if aw is not None:
            why.append(f"Estimated aw {aw:.2f}")
        if paste.acidity_citric_pct is not None:
            why.append(f"Acidity {paste.acidity_citric_pct:.2f}% as citric")
        if prefs.clean_label:
            why.append("Acid and sugar preserve without added preservatives")
        adv.append(PreservationAdvice(
            method="hot_fill",
            confidence=0.7,
            why=tuple(why),
            targets=AdviceTargets(brix_deg=max(60.0, brix), ph=min(3.8, ph), aw_max=0.85,
                                  particle_mm_max=max_particle),
            packaging=("Glass jar + lug cap (hot-fill)", "HDPE bottle (heat resistant)"),
            storage="ambient",
            shelf_life_hint="Ambient shelf-life typical for hot-filled jams; verify with process authority",
            impact_on_gelato=GelatoImpact("medium", "medium", ("Balanced solids; adds water & sugars to base",)),
        ))

    # 2) retort: dairy or low acid, only when ambient logistics are wanted
    if (dairy or (ph is not None and ph > low_acid_ph)) and prefs.ambient_preferred:
        adv.append(PreservationAdvice(
            method="retort",
            confidence=0.7,
            why=(
                "Dairy present; ambient requires commercial sterility" if dairy
                else f"Low-acid (pH > {low_acid_ph}) for ambient",
                "Ambient logistics requested",
            ),
            targets=AdviceTargets(brix_deg=brix, ph=ph, aw_max=0.97, particle_mm_max=10.0),
            packaging=("Retort pouch", "Cans", "Glass jar (retortable)"),
            storage="ambient",
            shelf_life_hint="Ambient; exact lethality to be validated by process authority",
            impact_on_gelato=GelatoImpact("low", "high", ("Potential Maillard/caramel notes; adjust color/flavor",)),
        ))

    # 3) frozen: always available, quality first
    frozen_why = ["Minimal thermal impact; best flavor retention", "Requires frozen logistics"]
    if prefs.clean_label:
        frozen_why.append("No preservatives needed")
    adv.append(PreservationAdvice(
        method="frozen",
        confidence=0.8,
        why=tuple(frozen_why),
        targets=AdviceTargets(brix_deg=brix, ph=ph),
        packaging=("Foodgrade pails", "Vacuum pouch + blast freeze"),
        storage="frozen",
        shelf_life_hint="Frozen; quality depends on ice crystal control",
        impact_on_gelato=GelatoImpact("high", "low", ("Adds water solids; plan PAC/SP balance",)),
    ))

    # 4) freeze dry: always available, powder form
    adv.append(PreservationAdvice(
        method="freeze_dry",
        confidence=0.8,
        why=("Zero added water to base", "Great for delicate aromatics"),
        targets=AdviceTargets(brix_deg=brix, ph=ph, aw_max=0.3),
        packaging=("FD jar with desiccant", "Foil pouch + nitrogen"),
        storage="ambient",
        shelf_life_hint="Ambient; protect from moisture uptake",
        impact_on_gelato=GelatoImpact("high", "low", ("Boosts TS without PAC; may need sucrose/dextrose adjustment",)),
    ))

    return sorted(adv, key=lambda a: a.confidence, reverse=True)
