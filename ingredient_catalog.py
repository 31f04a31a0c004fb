import logging
import math
import re
from dataclasses import dataclass, replace
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

import pandas as pd

from config import CONFIG

logger = logging.getLogger(__name__)

# ====================================================================

CATEGORIES = ("dairy", "sugar", "stabilizer", "fruit", "flavor", "fat", "other")
COMPOSITION_FIELDS = ("water_pct", "fat_pct", "sugars_pct", "msnf_pct", "other_solids_pct")


@dataclass(frozen=True)
class SugarSplit:
    """Glucose / fructose / sucrose shares of a fruit's sugar (any scale)."""
    glucose: float = 0.0
    fructose: float = 0.0
    sucrose: float = 0.0

    @property
    def total(self) -> float:
        return self.glucose + self.fructose + self.sucrose

    def normalized(self) -> "SugarSplit":
        total = self.total
        if total <= 0 or not math.isfinite(total):
            return SugarSplit()
        return SugarSplit(
            glucose=self.glucose * 100 / total,
            fructose=self.fructose * 100 / total,
            sucrose=self.sucrose * 100 / total,
        )


@dataclass(frozen=True)
class IngredientRecord:
    id: str
    name: str
    category: str
    water_pct: float = 0.0
    fat_pct: float = 0.0
    sugars_pct: float = 0.0
    msnf_pct: float = 0.0
    other_solids_pct: float = 0.0
    sp_coeff: Optional[float] = None     # sucrose = 1.00
    pac_coeff: Optional[float] = None    # sucrose = 100
    sugar_split: Optional[SugarSplit] = None
    lactose_pct: float = 0.0             # part of msnf_pct, dairy only
    de: Optional[float] = None
    cost_per_kg: Optional[float] = None
    notes: Tuple[str, ...] = ()

    def __post_init__(self):
        if self.category not in CATEGORIES:
            raise ValueError(f"Unknown ingredient category {self.category!r} for {self.id!r}")

    @property
    def composition_total(self) -> float:
        return sum(getattr(self, f) or 0.0 for f in COMPOSITION_FIELDS)

    @property
    def total_solids_pct(self) -> float:
        return (self.sugars_pct + self.fat_pct + self.msnf_pct + self.other_solids_pct)


@dataclass(frozen=True)
class RecipeLine:
    ingredient: IngredientRecord
    grams: float

    def __post_init__(self):
        if self.grams is None or not math.isfinite(self.grams) or self.grams < 0:
            raise ValueError(f"Invalid mass {self.grams!r} g for {self.ingredient.id!r}")

    def with_grams(self, grams: float) -> "RecipeLine":
        return replace(self, grams=grams)


def normalize_token(s: str) -> str:
    return s.strip().lower().replace(" ", "_")


def validate_ingredient(ing: IngredientRecord) -> List[str]:
    """Return data-quality warnings for a record. Never raises."""
    warnings = []
    if not ing.id or not ing.name:
        warnings.append("Missing ingredient name or ID")
    total = ing.composition_total
    if abs(total - 100) > CONFIG["composition_tolerance"]:
        warnings.append(f"{ing.name}: composition doesn't sum to 100% (currently {total:.1f}%)")
    if ing.lactose_pct > ing.msnf_pct + 1e-9:
        warnings.append(f"{ing.name}: lactose ({ing.lactose_pct}%) exceeds MSNF ({ing.msnf_pct}%)")
    if ing.sugar_split is not None and ing.category != "fruit":
        warnings.append(f"{ing.name}: sugar split is only used for fruit ingredients")
    return warnings


def classify_sugar_type(ing: IngredientRecord) -> str:
    """disaccharide / monosaccharide / polysaccharide / other."""
    name = ing.name.lower()
    if ing.id in ("sucrose", "lactose"):
        return "disaccharide"
    if ing.id in ("dextrose", "fructose") or "fructose" in name:
        return "monosaccharide"
    if ing.de is not None and ing.de < 50:
        return "polysaccharide"
    if "glucose" in name or "syrup" in name:
        return "polysaccharide"
    return "other"


def placeholder_ingredient(name: str) -> IngredientRecord:
    base = CONFIG["placeholder_composition"]
    return IngredientRecord(
        id=normalize_token(name),
        name=name,
        notes=("placeholder composition: ingredient not in catalog",),
        **base,
    )


# ---------------------------- seed data ----------------------------

DEFAULT_INGREDIENTS: List[IngredientRecord] = [
    IngredientRecord("sucrose", "Sucrose", "sugar", sugars_pct=100, sp_coeff=1.00, pac_coeff=100, cost_per_kg=45),
    IngredientRecord("dextrose", "Dextrose", "sugar", sugars_pct=100, sp_coeff=0.74, pac_coeff=190, cost_per_kg=55),
    IngredientRecord("fructose", "Fructose", "sugar", sugars_pct=100, sp_coeff=1.73, pac_coeff=190, cost_per_kg=90),
    IngredientRecord("invert_sugar", "Invert Sugar", "sugar", water_pct=25, sugars_pct=75,
                     sp_coeff=1.25, pac_coeff=190, cost_per_kg=70),
    IngredientRecord("glucose_de60", "Glucose Syrup DE60", "sugar", water_pct=20, sugars_pct=80,
                     de=60, sp_coeff=0.50, pac_coeff=118, cost_per_kg=38),
    IngredientRecord("lactose", "Lactose", "sugar", sugars_pct=100, cost_per_kg=85),
    IngredientRecord("milk_3", "Milk 3% fat", "dairy", water_pct=88.7, fat_pct=3, msnf_pct=8.5,
                     lactose_pct=4.8, cost_per_kg=25),
    IngredientRecord("whole_milk", "Whole Milk", "dairy", water_pct=87.4, fat_pct=3.7, msnf_pct=8.9,
                     lactose_pct=4.9, cost_per_kg=28),
    IngredientRecord("cream_25", "Cream 25% fat", "dairy", water_pct=68.2, fat_pct=25, msnf_pct=6.8,
                     lactose_pct=3.8, cost_per_kg=120),
    IngredientRecord("heavy_cream", "Heavy Cream", "dairy", water_pct=57.3, fat_pct=38, msnf_pct=4.7,
                     lactose_pct=2.8, cost_per_kg=180),
    IngredientRecord("smp", "Skim Milk Powder", "dairy", water_pct=3.5, fat_pct=1, msnf_pct=95.5,
                     lactose_pct=51, cost_per_kg=180),
    IngredientRecord("stabilizer", "Stabilizer Blend", "stabilizer", other_solids_pct=100, cost_per_kg=850),
    IngredientRecord("water", "Water", "other", water_pct=100, cost_per_kg=0),
    IngredientRecord("butter", "Unsalted Butter", "fat", water_pct=16, fat_pct=82, msnf_pct=2,
                     lactose_pct=1, cost_per_kg=520),
    IngredientRecord("egg_yolks", "Egg Yolks", "other", water_pct=50.4, fat_pct=31.9, other_solids_pct=17.7,
                     sp_coeff=0.1, pac_coeff=25, cost_per_kg=450),
    IngredientRecord("mango_alphonso", "Mango Alphonso Pulp", "fruit", water_pct=81.0, fat_pct=0.4,
                     sugars_pct=14.8, other_solids_pct=3.8,
                     sugar_split=SugarSplit(glucose=2.0, fructose=4.5, sucrose=8.3), cost_per_kg=160),
    IngredientRecord("strawberry", "Strawberry", "fruit", water_pct=91.0, fat_pct=0.3,
                     sugars_pct=4.9, other_solids_pct=3.8,
                     sugar_split=SugarSplit(glucose=2.0, fructose=2.4, sucrose=0.5), cost_per_kg=140),
    IngredientRecord("gulab_jamun_paste", "Gulab Jamun Paste", "flavor", water_pct=41.6, sugars_pct=42.52,
                     fat_pct=5.4, msnf_pct=8.1, other_solids_pct=2.38, sp_coeff=0.85, pac_coeff=125,
                     cost_per_kg=320),
    IngredientRecord("gulab_jamun", "Gulab Jamun (pieces)", "flavor", water_pct=30, sugars_pct=51.9,
                     fat_pct=6, msnf_pct=8, other_solids_pct=4.1, sp_coeff=0.90, pac_coeff=135,
                     cost_per_kg=280),
    IngredientRecord("rabri", "Rabri", "flavor", water_pct=53.6, sugars_pct=14.36, fat_pct=18,
                     msnf_pct=9.56, other_solids_pct=4.48, sp_coeff=0.75, pac_coeff=95, cost_per_kg=450),
    IngredientRecord("jalebi", "Jalebi", "flavor", water_pct=38.55, sugars_pct=34.55, fat_pct=6.36,
                     msnf_pct=2.36, other_solids_pct=18.18, sp_coeff=0.95, pac_coeff=145, cost_per_kg=350),
    IngredientRecord("cocoa_dp", "Cocoa Powder (Dutch)", "flavor", sugars_pct=0.5, fat_pct=23,
                     other_solids_pct=76.5, sp_coeff=0.1, pac_coeff=15, cost_per_kg=680),
    IngredientRecord("vanilla_extract", "Vanilla Extract", "flavor", water_pct=65, other_solids_pct=35,
                     sp_coeff=0.2, pac_coeff=30, cost_per_kg=3200),
]

NAME_ALIASES: Dict[str, str] = {
    "sugar": "sucrose",
    "table sugar": "sucrose",
    "white sugar": "sucrose",
    "dextrose monohydrate": "dextrose",
    "glucose": "glucose_de60",
    "corn syrup": "glucose_de60",
    "milk": "milk_3",
    "cream": "cream_25",
    "whipping cream": "cream_25",
    "nonfat dry milk": "smp",
    "egg yolk": "egg_yolks",
    "vanilla": "vanilla_extract",
    "mango": "mango_alphonso",
    "invert": "invert_sugar",
}


class IngredientCatalog:
    """In-memory lookup of ingredient records by id, name, alias or fuzzy match."""

    REQUIRED_COLUMNS = ["id", "name", "category", "water_pct", "fat_pct"]

    def __init__(self, records: Iterable[IngredientRecord], aliases: Optional[Mapping[str, str]] = None):
        self._by_id: Dict[str, IngredientRecord] = {}
        for rec in records:
            if rec.id in self._by_id:
                raise ValueError(f"Duplicate ingredient id {rec.id!r}")
            for w in validate_ingredient(rec):
                logger.warning("Ingredient data: %s", w)
            self._by_id[rec.id] = rec
        self._aliases = {a.lower(): target for a, target in (aliases or {}).items()}

    def __len__(self) -> int:
        return len(self._by_id)

    def __iter__(self):
        return iter(self._by_id.values())

    def __contains__(self, key: str) -> bool:
        return self.find(key) is not None

    def get(self, ingredient_id: str) -> Optional[IngredientRecord]:
        return self._by_id.get(ingredient_id)

    def by_name(self, name: str) -> Optional[IngredientRecord]:
        wanted = name.strip().lower()
        for rec in self._by_id.values():
            if rec.name.lower() == wanted:
                return rec
        return None

    def by_category(self, category: str) -> List[IngredientRecord]:
        return [rec for rec in self._by_id.values() if rec.category == category]

    def find(self, key: str) -> Optional[IngredientRecord]:
        """id → exact name → alias → fuzzy (substring either way, or token == id)."""
        if not key or not key.strip():
            return None
        rec = self.get(key) or self.by_name(key)
        if rec is not None:
            return rec
        alias = self._aliases.get(key.strip().lower())
        if alias is not None:
            rec = self.get(alias) or self.by_name(alias)
            if rec is not None:
                return rec
        lowered = key.strip().lower()
        token = normalize_token(key)
        for rec in self._by_id.values():
            rec_name = rec.name.lower()
            # whole words only; a longer key must end with the record name ("fresh heavy cream")
            if (rec.id == token
                    or re.search(rf"\b{re.escape(lowered)}\b", rec_name)
                    or re.search(rf"\b{re.escape(rec_name)}$", lowered)):
                logger.warning("Ingredient %r matched loosely to %r", key, rec.id)
                return rec
        return None

    def resolve(self, key: str) -> IngredientRecord:
        """Like find(), but never fails: unknown keys get the placeholder composition."""
        rec = self.find(key)
        if rec is None:
            logger.warning("Unknown ingredient %r: using placeholder composition", key)
            return placeholder_ingredient(key)
        return rec

    # ---- tabular views ----

    @classmethod
    def from_frame(cls, df: pd.DataFrame, aliases: Optional[Mapping[str, str]] = None) -> "IngredientCatalog":
        missing = [c for c in cls.REQUIRED_COLUMNS if c not in df.columns]
        if missing:
            raise ValueError(f"Ingredient table is missing columns: {missing}")
        df = df.copy()
        df["id"] = df["id"].astype(str).str.strip()
        df["category"] = df["category"].str.lower().str.strip()
        for c in COMPOSITION_FIELDS + ("lactose_pct",):
            if c not in df.columns:
                df[c] = 0.0
            df[c] = pd.to_numeric(df[c], errors="coerce").fillna(0)
        records = []
        for row in df.to_dict("records"):
            split = None
            if any(_present(row.get(k)) for k in ("glucose", "fructose", "sucrose")):
                split = SugarSplit(
                    glucose=_num(row.get("glucose")),
                    fructose=_num(row.get("fructose")),
                    sucrose=_num(row.get("sucrose")),
                )
            records.append(IngredientRecord(
                id=row["id"],
                name=str(row["name"]),
                category=row["category"],
                water_pct=row["water_pct"],
                fat_pct=row["fat_pct"],
                sugars_pct=row["sugars_pct"],
                msnf_pct=row["msnf_pct"],
                other_solids_pct=row["other_solids_pct"],
                sp_coeff=_optional(row.get("sp_coeff")),
                pac_coeff=_optional(row.get("pac_coeff")),
                sugar_split=split,
                lactose_pct=row["lactose_pct"],
                de=_optional(row.get("de")),
                cost_per_kg=_optional(row.get("cost_per_kg")),
            ))
        return cls(records, aliases=aliases)

    def to_frame(self) -> pd.DataFrame:
        rows = []
        for rec in self._by_id.values():
            split = rec.sugar_split
            rows.append({
                "id": rec.id, "name": rec.name, "category": rec.category,
                **{f: getattr(rec, f) for f in COMPOSITION_FIELDS},
                "sp_coeff": rec.sp_coeff, "pac_coeff": rec.pac_coeff,
                "lactose_pct": rec.lactose_pct, "de": rec.de, "cost_per_kg": rec.cost_per_kg,
                "glucose": split.glucose if split else None,
                "fructose": split.fructose if split else None,
                "sucrose": split.sucrose if split else None,
            })
        return pd.DataFrame(rows)


def _present(v) -> bool:
    return v is not None and not pd.isna(v)


def _num(v) -> float:
    return float(v) if _present(v) else 0.0


def _optional(v) -> Optional[float]:
    return float(v) if _present(v) else None


_DEFAULT_CATALOG: Optional[IngredientCatalog] = None


def default_catalog() -> IngredientCatalog:
    global _DEFAULT_CATALOG
    if _DEFAULT_CATALOG is None:
        _DEFAULT_CATALOG = IngredientCatalog(DEFAULT_INGREDIENTS, aliases=NAME_ALIASES)
    return _DEFAULT_CATALOG


def lines_from_mapping(recipe: Mapping[str, float],
                       catalog: Optional[IngredientCatalog] = None) -> List[RecipeLine]:
    """{ingredient name or id: grams} → recipe lines; unknown names get the placeholder."""
    if catalog is None:
        catalog = default_catalog()
    lines = []
    for key, grams in recipe.items():
        g = float(grams or 0)
        lines.append(RecipeLine(catalog.resolve(key), g))
    return lines
