import pytest

from ingredient_catalog import RecipeLine, default_catalog
from recipe_metrics import Metrics


@pytest.fixture
def catalog():
    return default_catalog()


@pytest.fixture
def white_base_lines(catalog):
    """Classic Italian white base: milk, cream, sugar, SMP, stabilizer (1000 g)."""
    return [
        RecipeLine(catalog.get("milk_3"), 580),
        RecipeLine(catalog.get("cream_25"), 200),
        RecipeLine(catalog.get("sucrose"), 170),
        RecipeLine(catalog.get("smp"), 45),
        RecipeLine(catalog.get("stabilizer"), 5),
    ]


def make_metrics(ts=0.0, sugars=0.0, fat=0.0, msnf=0.0, sp=0.0, pac=0.0, total_g=1000.0, **extra):
    """Metrics with the given headline values and zero everywhere else."""
    fields = dict(
        input_total_g=total_g, evaporated_water_g=0.0, total_g=total_g,
        water_g=0.0, sugars_g=0.0, fat_g=0.0, msnf_g=0.0, other_g=0.0,
        water_pct=0.0, sugars_pct=sugars, fat_pct=fat, msnf_pct=msnf, other_pct=0.0,
        ts_add_g=0.0, ts_mass_g=0.0, ts_add_pct=ts, ts_mass_pct=ts,
        sp=sp, pac=pac,
    )
    fields.update(extra)
    return Metrics(**fields)


@pytest.fixture
def metrics_factory():
    return make_metrics
