import logging

import pytest

from ingredient_catalog import RecipeLine
from paste_advisor import (
    ADVISORY_NOTICE, LabSpecs, PasteComponent, PasteFormula, PreservationPreferences, advise,
    estimate_water_activity, is_dairy,
)
from recipe_metrics import compute_metrics


def methods(advice):
    return [a.method for a in advice]


@pytest.fixture
def strawberry_jam():
    return PasteFormula("Strawberry Jam", "fruit", sugars_pct=60, water_pct=38, other_solids_pct=2,
                        lab=LabSpecs(brix_deg=62, ph=3.4))


@pytest.fixture
def rabri_paste():
    return PasteFormula("Rabri Paste", "dairy", water_pct=50, sugars_pct=20, fat_pct=18, msnf_pct=10,
                        other_solids_pct=2, lab=LabSpecs(brix_deg=35, ph=6.4))


@pytest.fixture
def mango_paste(catalog):
    return PasteFormula.from_components("Mango Sucrose Paste", "fruit", [
        PasteComponent.from_ingredient(catalog.get("mango_alphonso"), 600),
        PasteComponent.from_ingredient(catalog.get("sucrose"), 400),
    ], lab=LabSpecs(brix_deg=58, ph=3.9))


def test_high_acid_fruit_gets_hot_fill(strawberry_jam):
    advice = advise(strawberry_jam)
    assert methods(advice) == ["frozen", "freeze_dry", "hot_fill"]
    hot = advice[-1]
    assert hot.storage == "ambient"
    assert hot.targets.brix_deg == 62
    assert hot.targets.ph == 3.4
    assert hot.targets.aw_max == 0.85
    assert "Particulates ok" in hot.why


def test_confidence_order_is_stable(strawberry_jam):
    confidences = [a.confidence for a in advise(strawberry_jam)]
    assert confidences == sorted(confidences, reverse=True)


def test_dairy_needs_retort_only_for_ambient(rabri_paste):
    assert "retort" not in methods(advise(rabri_paste))

    advice = advise(rabri_paste, PreservationPreferences(ambient_preferred=True))
    assert methods(advice) == ["frozen", "freeze_dry", "retort"]
    retort = advice[-1]
    assert retort.why[0].startswith("Dairy present")
    assert "hot_fill" not in methods(advice)


def test_low_acid_non_dairy_retort():
    paste = PasteFormula("Pistachio Paste", "nut", water_pct=5, fat_pct=45, other_solids_pct=50,
                         lab=LabSpecs(ph=6.2))
    advice = advise(paste, PreservationPreferences(ambient_preferred=True))
    retort = next(a for a in advice if a.method == "retort")
    assert retort.why[0] == "Low-acid (pH > 4.6) for ambient"


@pytest.mark.parametrize("lab, prefs", [
    (LabSpecs(brix_deg=62, ph=None), None),                              # pH unknown
    (LabSpecs(brix_deg=50, ph=3.4), None),                               # not enough sugar
    (LabSpecs(brix_deg=62, ph=4.8), None),                               # low acid
    (LabSpecs(brix_deg=62, ph=3.4), PreservationPreferences(particulate_mm=8)),
])
def test_hot_fill_rejected(lab, prefs):
    paste = PasteFormula("Jam", "fruit", sugars_pct=60, water_pct=40, lab=lab)
    assert "hot_fill" not in methods(advise(paste, prefs))


def test_particulates_at_the_ceiling_are_ok(strawberry_jam):
    advice = advise(strawberry_jam, PreservationPreferences(particulate_mm=5))
    hot = next(a for a in advice if a.method == "hot_fill")
    assert "Particulates ok" in hot.why
    assert not any("borderline" in w for w in hot.why)


def test_msnf_makes_a_paste_dairy():
    paste = PasteFormula("Kulfi Fruit", "fruit", msnf_pct=4, sugars_pct=60, water_pct=36,
                         lab=LabSpecs(brix_deg=62, ph=3.6))
    assert is_dairy(paste)
    assert "hot_fill" not in methods(advise(paste))


def test_clean_label_notes(strawberry_jam):
    advice = advise(strawberry_jam, PreservationPreferences(clean_label=True))
    frozen = next(a for a in advice if a.method == "frozen")
    assert "No preservatives needed" in frozen.why


def test_every_advice_is_advisory(rabri_paste):
    for a in advise(rabri_paste, PreservationPreferences(ambient_preferred=True)):
        assert a.requires_process_validation
        assert a.notice == ADVISORY_NOTICE


@pytest.mark.parametrize("lab, expected", [
    (LabSpecs(brix_deg=40), 0.82),
    (LabSpecs(brix_deg=70), 0.75),      # floor
    (LabSpecs(brix_deg=40, aw_est=0.9), 0.9),
    (LabSpecs(), None),
])
def test_estimate_water_activity(lab, expected):
    aw = estimate_water_activity(lab)
    if expected is None:
        assert aw is None
    else:
        assert aw == pytest.approx(expected)


def test_from_components(mango_paste):
    assert mango_paste.batch_size_g == 1000
    assert mango_paste.sugars_pct == pytest.approx(48.88)
    assert mango_paste.water_pct == pytest.approx(48.6)
    split = mango_paste.sugar_split
    assert split.total == pytest.approx(100)
    assert split.glucose == pytest.approx(12 / 488.8 * 100)
    assert split.sucrose == pytest.approx(449.8 / 488.8 * 100)


def test_paste_as_ingredient_keeps_sugar_profile(catalog, mango_paste):
    ing = mango_paste.to_ingredient()
    assert ing.id == "mango_sucrose_paste"
    assert ing.category == "fruit"
    assert ing.composition_total == pytest.approx(100)

    as_paste = compute_metrics([RecipeLine(ing, 1000)])
    as_parts = compute_metrics([
        RecipeLine(catalog.get("mango_alphonso"), 600),
        RecipeLine(catalog.get("sucrose"), 400),
    ])
    assert as_paste.sp == pytest.approx(as_parts.sp)
    assert as_paste.pac == pytest.approx(as_parts.pac)


def test_confection_paste_becomes_flavor():
    paste = PasteFormula("Jalebi Crumble", "confection", water_pct=40, sugars_pct=60)
    assert paste.to_ingredient().category == "flavor"
    assert paste.to_ingredient().sugar_split is None


def test_freeze_dried_ingredient(mango_paste):
    fd = mango_paste.freeze_dried_ingredient()
    assert fd.id == "mango_sucrose_paste_fd"
    assert fd.water_pct == 3.0
    assert fd.composition_total == pytest.approx(100)
    assert fd.sugars_pct / fd.fat_pct == pytest.approx(mango_paste.sugars_pct / mango_paste.fat_pct)

    drier = mango_paste.freeze_dried_ingredient(residual_water_pct=1.0)
    assert drier.sugars_pct > fd.sugars_pct


def test_freeze_drying_water_only(caplog):
    paste = PasteFormula("Rose Water", "mixed", water_pct=100)
    with caplog.at_level(logging.WARNING):
        fd = paste.freeze_dried_ingredient()
    assert fd.total_solids_pct == 0
    assert "no solids" in caplog.text


def test_unknown_paste_category():
    with pytest.raises(ValueError):
        PasteFormula("Mystery", "vegetable")


def test_allergens_travel_with_the_paste(catalog):
    paste = PasteFormula.from_components("Pistachio Kulfi Paste", "nut", [
        PasteComponent.from_ingredient(catalog.get("rabri"), 700),
        PasteComponent("Pistachio", 300, water_pct=4, fat_pct=45, other_solids_pct=51),
    ], allergens=("milk", "nuts"))
    assert paste.allergens == ("milk", "nuts")
    assert paste.to_ingredient().notes == ("allergens: milk, nuts",)
    assert "allergens: milk, nuts" in paste.freeze_dried_ingredient().notes


def test_unknown_allergen():
    with pytest.raises(ValueError):
        PasteFormula("Mystery", "nut", allergens=("soy",))


def test_acidity_noted_for_hot_fill():
    paste = PasteFormula("Raspberry Jam", "fruit", sugars_pct=60, water_pct=38, other_solids_pct=2,
                         lab=LabSpecs(brix_deg=63, ph=3.2), acidity_citric_pct=0.8)
    hot = next(a for a in advise(paste) if a.method == "hot_fill")
    assert "Acidity 0.80% as citric" in hot.why
