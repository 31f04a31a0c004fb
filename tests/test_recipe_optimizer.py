import pulp
import pytest

from ingredient_catalog import RecipeLine
from recipe_metrics import compute_metrics
from recipe_optimizer import (
    check_targets, format_recipe, optimize, solve_targets_lp, target_errors, weighted_error,
)

requires_cbc = pytest.mark.skipif(not pulp.PULP_CBC_CMD(msg=False).available(),
                                  reason="CBC solver not available")


@pytest.fixture
def seed_lines(catalog):
    return [
        RecipeLine(catalog.get("milk_3"), 600),
        RecipeLine(catalog.get("cream_25"), 250),
        RecipeLine(catalog.get("sucrose"), 150),
        RecipeLine(catalog.get("smp"), 30),
    ]


def grams(result):
    return {l.ingredient.id: l.grams for l in result.lines}


def test_converges_on_reachable_targets(seed_lines):
    result = optimize(seed_lines, {"fat": 8.5, "sugars": 17.0})
    assert result.converged
    assert result.metrics.fat_pct == pytest.approx(8.5, abs=0.15)
    assert result.metrics.sugars_pct == pytest.approx(17.0, abs=0.15)
    assert sum(grams(result).values()) == pytest.approx(1030)
    assert all(g >= 0 for g in grams(result).values())
    assert "Balanced recipe" in format_recipe(result)


def test_iteration_cap_counts_metric_calls(seed_lines):
    result = optimize(seed_lines, {"fat": 8.5, "sugars": 17.0}, max_iterations=1)
    assert result.iterations == 1
    assert not result.converged
    assert grams(result) == {"milk_3": 600, "cream_25": 250, "sucrose": 150, "smp": 30}
    assert "Best-effort recipe" in format_recipe(result)


def test_iterations_never_exceed_cap(seed_lines):
    result = optimize(seed_lines, {"fat": 14.0, "sugars": 25.0, "msnf": 12.0, "pac": 40.0}, max_iterations=7)
    assert result.iterations <= 7
    assert len(result.history) == result.iterations


def test_best_recipe_is_returned(seed_lines):
    result = optimize(seed_lines, {"fat": 8.5, "sugars": 17.0, "pac": 30.0}, max_iterations=15)
    errors = [h["error"] for h in result.history]
    assert result.error == min(errors)
    assert result.error <= errors[0]
    assert result.error == pytest.approx(weighted_error(target_errors(result.metrics, result.targets)))


def test_seed_already_on_target(seed_lines):
    m = compute_metrics(seed_lines)
    result = optimize(seed_lines, {"fat": m.fat_pct, "sp": m.sp})
    assert result.converged
    assert result.iterations == 1
    assert grams(result)["cream_25"] == 250


def test_no_targets_is_trivially_converged(seed_lines):
    result = optimize(seed_lines, {"fat": None})
    assert result.converged
    assert result.targets == {}


def test_fixed_lines_keep_their_mass(seed_lines):
    result = optimize(seed_lines, {"fat": 8.5, "sugars": 17.0}, fixed=["smp"])
    assert grams(result)["smp"] == 30
    assert result.error < weighted_error(target_errors(compute_metrics(seed_lines), result.targets))


def test_evaporation_is_part_of_the_model(seed_lines):
    result = optimize(seed_lines, {"fat": 9.0}, evaporation_pct=15)
    assert result.metrics.evaporated_water_g > 0
    assert result.converged
    assert result.metrics.fat_pct == pytest.approx(9.0, abs=0.15)


def test_history_frame(seed_lines):
    result = optimize(seed_lines, {"fat": 8.5}, max_iterations=5)
    df = result.history_frame()
    assert len(df) == result.iterations
    assert {"iteration", "error", "step_scale", "fat"} <= set(df.columns)


@pytest.mark.parametrize("kwargs", [
    {"targets": {"overrun": 30}},
    {"targets": {"fat": 8}, "max_iterations": 0},
    {"targets": {"fat": 8}, "step_scale": 0},
    {"targets": {"fat": 8}, "warm_start": "newton"},
])
def test_invalid_arguments(seed_lines, kwargs):
    with pytest.raises(ValueError):
        optimize(seed_lines, **kwargs)


def test_check_targets_drops_none():
    assert check_targets({"fat": None, "sp": 18}) == {"sp": 18.0}


@requires_cbc
def test_lp_rebalance_hits_linear_target(catalog):
    lines = [RecipeLine(catalog.get("milk_3"), 800), RecipeLine(catalog.get("cream_25"), 200)]
    masses = solve_targets_lp(lines, {"fat": 10.0})
    assert masses is not None
    assert sum(masses) == pytest.approx(1000, abs=1e-4)
    # 0.03 * milk + 0.25 * cream = 100 g fat
    assert masses[1] == pytest.approx(318.18, abs=0.05)


@requires_cbc
def test_lp_warm_start(seed_lines):
    result = optimize(seed_lines, {"fat": 8.5, "sugars": 17.0}, warm_start="lp")
    assert result.converged
    assert result.iterations <= 3


def test_format_recipe_reports_cost(catalog):
    lines = [RecipeLine(catalog.get("milk_3"), 800), RecipeLine(catalog.get("sucrose"), 200)]
    result = optimize(lines, {"sugars": 20.0})
    text = format_recipe(result)
    # 800 g at 25/kg + 200 g at 45/kg
    assert "Cost 29.00 per batch (29.00 per kg)" in text
    assert "no price" not in text
