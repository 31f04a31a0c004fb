import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

import numpy as np
import pandas as pd
import pulp

from config import CONFIG
from ingredient_catalog import RecipeLine
from recipe_metrics import Metrics, compute_metrics, recipe_cost, sugar_intensity

logger = logging.getLogger(__name__)

# ====================================================================

TARGET_FIELDS = ("total_solids", "sugars", "fat", "msnf", "sp", "pac")
WARM_STARTS = (None, "lp")


@dataclass
class OptimizationResult:
    lines: List[RecipeLine]
    metrics: Metrics
    converged: bool
    iterations: int          # calls into compute_metrics
    error: float             # weighted sum of squared target errors
    targets: Dict[str, float] = field(default_factory=dict)
    history: List[Dict[str, float]] = field(default_factory=list)

    def history_frame(self) -> pd.DataFrame:
        return pd.DataFrame(self.history)


def check_targets(targets: Mapping[str, Optional[float]]) -> Dict[str, float]:
    unknown = [k for k in targets if k not in TARGET_FIELDS]
    if unknown:
        raise ValueError(f"Unknown target fields: {unknown} (expected any of {list(TARGET_FIELDS)})")
    return {k: float(v) for k, v in targets.items() if v is not None}


def target_errors(metrics: Metrics, targets: Mapping[str, float]) -> Dict[str, float]:
    """Signed error per target: positive means the recipe is below target."""
    return {k: t - metrics.field_value(k) for k, t in targets.items()}


def weighted_error(errors: Mapping[str, float]) -> float:
    weights = CONFIG["field_weights"]
    return sum(weights.get(k, 1.0) * e * e for k, e in errors.items())


def line_intensities(lines: Sequence[RecipeLine]) -> List[Dict[str, float]]:
    """Value each target field would take if a line's ingredient were the whole mix."""
    out = []
    for line in lines:
        ing = line.ingredient
        sp, pac = sugar_intensity(ing)
        out.append({
            "total_solids": ing.total_solids_pct,
            "sugars": ing.sugars_pct,
            "fat": ing.fat_pct,
            "msnf": ing.msnf_pct,
            "sp": sp,
            "pac": pac,
            "water": ing.water_pct,
        })
    return out


def _with_masses(lines: Sequence[RecipeLine], masses: Sequence[float]) -> List[RecipeLine]:
    return [l.with_grams(float(m)) for l, m in zip(lines, masses)]


def propose_step(masses: List[float],
                 metrics: Metrics,
                 errors: Mapping[str, float],
                 intensities: Sequence[Mapping[str, float]],
                 movable: Sequence[int],
                 step_scale: float,
                 total_g: Optional[float],
                 evaporation_pct: float = 0.0) -> List[float]:
    """
    One damped least-squares move. Adding dm grams of line i shifts field f by
    about (intensity_if - value_f * retained_i) / total * dm, where retained_i is
    the share of the line left after evaporation, so lines whose composition sits
    far from the current value on an erroring field get the largest moves.
    """
    current_total = sum(masses)
    if current_total <= 0 or metrics.total_g <= 0 or not movable or not errors:
        return list(masses)

    evap = max(0.0, min(100.0, evaporation_pct or 0.0)) / 100
    retained = [1 - evap * it["water"] / 100 for it in intensities]

    names = list(errors)
    weights = CONFIG["field_weights"]
    J = np.array([[(intensities[i][f] - metrics.field_value(f) * retained[i]) / metrics.total_g
                   for i in movable]
                  for f in names])
    W = np.diag([weights.get(f, 1.0) for f in names])
    e = np.array([errors[f] for f in names])

    JtW = J.T @ W
    A = JtW @ J
    damping = 1e-3 * float(np.mean(np.diag(A))) if A.size else 0.0
    A = A + max(damping, 1e-12) * np.eye(len(movable))
    delta = np.linalg.solve(A, JtW @ e) * step_scale

    cap = CONFIG["max_step_share"] * current_total
    biggest = float(np.max(np.abs(delta))) if delta.size else 0.0
    if biggest > cap:
        delta *= cap / biggest

    new = list(masses)
    for k, i in enumerate(movable):
        new[i] = max(0.0, masses[i] + float(delta[k]))

    # percentages and SP/PAC are scale invariant: keep the batch size
    if total_g is not None:
        s = sum(new)
        if s > 0:
            new = [m * total_g / s for m in new]
    return new


def solve_targets_lp(lines: Sequence[RecipeLine],
                     targets: Mapping[str, float],
                     evaporation_pct: float = 0.0,
                     fixed: Iterable[str] = ()) -> Optional[List[float]]:
    """
    Linear rebalance: for a fixed batch composition every target is linear in the
    masses once multiplied by the post-evaporation total, so minimise the weighted
    absolute deviation with CBC. Returns the masses, or None if not solved.
    """
    targets = check_targets(targets)
    masses0 = [l.grams for l in lines]
    seed_total = sum(masses0)
    if seed_total <= 0 or not targets:
        return None

    fixed_ids = set(fixed)
    intensities = line_intensities(lines)
    evap = max(0.0, min(100.0, evaporation_pct or 0.0)) / 100
    weights = CONFIG["field_weights"]

    model = pulp.LpProblem("FormulationRebalance", pulp.LpMinimize)

    # ---- Decision vars ----
    m = {}
    for i, line in enumerate(lines):
        if line.ingredient.id in fixed_ids:
            m[i] = pulp.LpVariable(f"m_{i}", lowBound=masses0[i], upBound=masses0[i])
        else:
            m[i] = pulp.LpVariable(f"m_{i}", lowBound=0)
    move = {i: pulp.LpVariable(f"move_{i}", lowBound=0) for i in m}
    dev = {f: pulp.LpVariable(f"dev_{f}", lowBound=0) for f in targets}

    # ---- Batch size ----
    if not fixed_ids:
        model += pulp.lpSum(m.values()) == seed_total

    # ---- Target deviations ----
    final_total = pulp.lpSum(m[i] * (1 - evap * lines[i].ingredient.water_pct / 100) for i in m)
    for f, t in targets.items():
        expr = (pulp.lpSum(m[i] * intensities[i][f] for i in m) - t * final_total) / seed_total
        model += expr <= dev[f]
        model += -expr <= dev[f]

    # ---- Stay close to the seed ----
    for i in m:
        model += m[i] - masses0[i] <= move[i]
        model += masses0[i] - m[i] <= move[i]

    stay = CONFIG["lp_stay_close_weight"] / seed_total
    model += (pulp.lpSum(weights.get(f, 1.0) * dev[f] for f in dev)
              + stay * pulp.lpSum(move.values()))

    # ---- Solve ----
    try:
        status = model.solve(pulp.PULP_CBC_CMD(msg=CONFIG["verbose_solver"]))
    except pulp.PulpSolverError as e:
        logger.warning("LP rebalance failed: %s", e)
        return None
    if pulp.LpStatus[status] != "Optimal":
        logger.warning("LP rebalance not optimal: %s", pulp.LpStatus[status])
        return None
    return [max(0.0, pulp.value(m[i]) or 0.0) for i in range(len(lines))]


def optimize(seed_lines: Iterable[RecipeLine],
             targets: Mapping[str, Optional[float]],
             max_iterations: Optional[int] = None,
             step_scale: Optional[float] = None,
             evaporation_pct: float = 0.0,
             fixed: Iterable[str] = (),
             warm_start: Optional[str] = None) -> OptimizationResult:
    """
    Bounded, deterministic local search toward a sparse set of targets.

    Every iteration costs exactly one compute_metrics call and max_iterations caps
    those calls. A move that does not lower the weighted error is rejected and the
    step is halved; the best recipe seen is returned whether or not it converged.
    `fixed` holds ingredient ids whose masses must not change.
    """
    targets = check_targets(targets)
    max_iterations = CONFIG["max_iterations"] if max_iterations is None else int(max_iterations)
    if max_iterations < 1:
        raise ValueError(f"max_iterations must be >= 1, got {max_iterations}")
    step = CONFIG["step_scale"] if step_scale is None else float(step_scale)
    if not step > 0:
        raise ValueError(f"step_scale must be > 0, got {step_scale}")
    if warm_start not in WARM_STARTS:
        raise ValueError(f"Unknown warm start {warm_start!r}")

    lines = list(seed_lines)
    masses = [float(l.grams) for l in lines]
    fixed_ids = set(fixed)
    movable = [i for i, l in enumerate(lines) if l.ingredient.id not in fixed_ids]
    keep_total = sum(masses) if not fixed_ids else None
    intensities = line_intensities(lines)
    threshold = CONFIG["convergence_threshold"]
    history: List[Dict[str, float]] = []
    calls = 0

    def evaluate(ms):
        nonlocal calls
        calls += 1
        m = compute_metrics(_with_masses(lines, ms), evaporation_pct)
        err = weighted_error(target_errors(m, targets))
        history.append({"iteration": calls, "error": err, "step_scale": step,
                        **{k: m.field_value(k) for k in targets}})
        return m, err

    best_masses = masses
    best_metrics, best_err = evaluate(best_masses)

    pending = []
    if warm_start == "lp" and calls < max_iterations:
        lp_masses = solve_targets_lp(lines, targets, evaporation_pct, fixed_ids)
        if lp_masses is not None:
            pending.append(lp_masses)

    while best_err > threshold and calls < max_iterations and step >= CONFIG["min_step_scale"]:
        from_lp = bool(pending)
        if from_lp:
            trial = pending.pop(0)
        else:
            errors = target_errors(best_metrics, targets)
            trial = propose_step(best_masses, best_metrics, errors, intensities, movable, step,
                                 keep_total, evaporation_pct)
        if trial == best_masses:
            step *= 0.5
            continue
        m, err = evaluate(trial)
        if err < best_err:
            best_masses, best_metrics, best_err = trial, m, err
        elif not from_lp:
            step *= 0.5

    converged = best_err <= threshold
    if not converged:
        logger.info("Optimizer stopped after %d evaluations without converging (error %.4f)", calls, best_err)
    return OptimizationResult(
        lines=_with_masses(lines, best_masses),
        metrics=best_metrics,
        converged=converged,
        iterations=calls,
        error=best_err,
        targets=dict(targets),
        history=history,
    )


def format_recipe(result: OptimizationResult) -> str:
    head = "✅ Balanced recipe" if result.converged else "⚠️ Best-effort recipe (targets not all reached)"
    parts = [head]
    total = sum(l.grams for l in result.lines)
    for line in result.lines:
        share = line.grams / total * 100 if total > 0 else 0.0
        parts.append(f"{line.ingredient.name:<24}: {line.grams:8.1f} g  ({share:4.1f}%)")
    m = result.metrics
    parts.append(f"TS {m.ts_add_pct:.1f}%  Fat {m.fat_pct:.1f}%  Sugars {m.sugars_pct:.1f}%  "
                 f"MSNF {m.msnf_pct:.1f}%  SP {m.sp:.1f}  PAC {m.pac:.1f}")
    for k, t in result.targets.items():
        parts.append(f"  {k:<12} target {t:6.2f}  got {m.field_value(k):6.2f}")
    cost = recipe_cost(result.lines)
    parts.append(f"Cost {cost.total:.2f} per batch ({cost.per_kg:.2f} per kg)")
    if cost.unpriced:
        parts.append(f"  no price for: {', '.join(cost.unpriced)}")
    return "\n".join(parts)
