# ========================== CONFIGURATION ==========================

CONFIG = {
    # --- Metrics calculator ---
    "evaporation_limits": (0.0, 100.0),   # % of water that may be boiled off
    "composition_tolerance": 1.0,         # ±1 point around 100% before warning
    "ts_discrepancy_ratio": 0.005,        # additive vs mass-balance TS, share of total mass

    # Used when a recipe names an ingredient the catalog does not know.
    # Milk-like on purpose: the recipe still computes, just less accurately.
    "placeholder_composition": {
        "category": "other",
        "water_pct": 88.0,
        "fat_pct": 3.0,
        "sugars_pct": 5.0,
        "msnf_pct": 0.0,
        "other_solids_pct": 0.0,
        "sp_coeff": 0.5,
        "pac_coeff": 50.0,
    },

    # --- Optimizer ---
    "max_iterations": 200,
    "step_scale": 0.5,
    "min_step_scale": 1e-4,
    "convergence_threshold": 0.01,   # weighted sum of squared errors
    "max_step_share": 0.25,          # max mass moved per line per step, share of batch
    "field_weights": {
        "total_solids": 1.0,
        "sugars": 1.0,
        "fat": 1.0,
        "msnf": 1.0,
        "sp": 0.5,
        "pac": 0.5,
    },
    "lp_stay_close_weight": 0.01,    # pulls the LP solution toward the seed recipe
    "verbose_solver": False,         # True = show CBC logs in console

    # --- Target bands per archetype (closed ranges) ---
    "target_bands": {
        "white_base": {
            "total_solids": (32.0, 37.0),
            "fat": (6.0, 9.0),
            "sugars": (16.0, 19.0),
            "msnf": (9.0, 11.5),
            "sp": (16.0, 19.0),
            "pac": (22.0, 26.0),
            "stabilizer": (0.2, 0.6),
        },
        "finished_gelato": {
            "total_solids": (36.0, 42.0),
            "fat": (7.0, 12.0),
            "sugars": (18.0, 22.0),
            "msnf": (7.0, 10.0),
            "sp": (18.0, 22.0),
            "pac": (25.0, 29.0),
        },
        "fruit_gelato": {
            "total_solids": (30.0, 36.0),
            "fat": (3.0, 6.0),
            "sugars": (22.0, 26.0),
            "msnf": (4.0, 7.0),
            "sp": (20.0, 24.0),
            "pac": (26.0, 30.0),
            "fruit": (15.0, 30.0),
        },
        "sorbet": {
            "total_solids": (30.0, 34.0),
            "fat": (0.0, 1.0),
            "sugars": (26.0, 30.0),
            "msnf": (0.0, 1.0),
            "sp": (24.0, 30.0),
            "pac": (28.0, 33.0),
            "fruit": (25.0, 50.0),
        },
    },
    "near_band_ratio": 0.05,   # "near" = within 5% of band width outside the edge

    # --- Corrective suggestions ---
    # (verb, ingredient, grams per point of gap per kg of batch)
    "corrections": {
        "total_solids": {"low": ("add", "skim milk powder", 10.0), "high": ("add", "water", 30.0)},
        "fat": {"low": ("add", "heavy cream", 26.0), "high": ("swap", "cream for milk", 45.0)},
        "sugars": {"low": ("add", "sucrose", 10.0), "high": ("reduce", "sucrose", 10.0)},
        "msnf": {"low": ("add", "skim milk powder", 11.0), "high": ("reduce", "skim milk powder", 11.0)},
        "sp": {"low": ("add", "sucrose", 10.0), "high": ("swap", "sucrose for dextrose", 38.0)},
        "pac": {"low": ("swap", "sucrose for dextrose", 11.0), "high": ("swap", "dextrose for sucrose", 11.0)},
        "stabilizer": {"low": ("add", "stabilizer blend", 10.0), "high": ("reduce", "stabilizer blend", 10.0)},
        "fruit": {"low": ("add", "fruit", 10.0), "high": ("reduce", "fruit", 10.0)},
    },

    # --- Preservation advisor ---
    "low_acid_ph": 4.6,
    "hot_fill_min_brix": 55.0,
    "hot_fill_max_particle_mm": 5.0,
    "dairy_msnf_threshold": 1.0,
    "default_particulate_mm": 2.0,
    "freeze_dry_residual_water_pct": 3.0,
}
# ===================================================================
