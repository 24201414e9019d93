"""
Tests for the fibre classification rules:
- per-observation derivation (disintegrates + morphology)
- clearing of stale results when a classifying property changes
- the aggregate final result for a sample
"""

import pytest

from fibreid.classifier import (
    ANALYSIS_INCOMPLETE,
    NO_FIBRE_DETECTED,
    aggregate_result,
    classify,
    classify_fibre,
    derive_result,
    update_fibre,
)
from fibreid.fibre import Disintegration, FibreObservation, Morphology


def fibre(morphology=None, disintegrates=None, result="", name="Fibre A") -> FibreObservation:
    return FibreObservation(name=name, morphology=morphology, disintegrates=disintegrates, result=result)


@pytest.mark.parametrize(
    "morphology, expected",
    [
        (Morphology.CURLY, "Organic fibres detected"),
        (Morphology.STRAIGHT, "SMF detected"),
        (None, ""),
    ],
)
def test_derive_result_for_disintegrating_fibres(morphology, expected):
    assert derive_result(fibre(morphology, Disintegration.YES)) == expected


@pytest.mark.parametrize("morphology", [Morphology.CURLY, Morphology.STRAIGHT, None])
def test_non_disintegrating_fibres_are_never_auto_classified(morphology):
    assert derive_result(fibre(morphology, Disintegration.NO)) == ""


def test_update_to_disintegrates_yes_derives_result():
    f = fibre(Morphology.CURLY)
    f = update_fibre(f, "disintegrates", "yes")
    assert f.result == "Organic fibres detected"

    f = update_fibre(f, "morphology", "straight")
    assert f.result == "SMF detected"


def test_switching_to_disintegrates_no_clears_auto_result():
    f = fibre(Morphology.STRAIGHT, Disintegration.YES, "SMF detected")
    f = update_fibre(f, "disintegrates", Disintegration.NO)
    assert f.result == ""


def test_manual_result_survives_optical_edits_but_not_classifying_edits():
    f = fibre(Morphology.CURLY, Disintegration.NO)
    f = update_fibre(f, "result", "Chrysotile Asbestos")
    f = update_fibre(f, "colour", "White")
    assert f.result == "Chrysotile Asbestos"
    assert f.colour == "White"

    f = update_fibre(f, "morphology", "straight")
    assert f.result == ""


def test_clearing_morphology_leaves_result_empty():
    f = fibre(Morphology.CURLY, Disintegration.YES, "Organic fibres detected")
    f = update_fibre(f, "morphology", "")
    assert f.morphology is None
    assert f.result == ""


def test_update_returns_a_new_observation():
    original = fibre(Morphology.CURLY)
    updated = update_fibre(original, "disintegrates", "yes")
    assert original.result == ""
    assert updated is not original


def test_manual_result_rejected_on_disintegrating_fibre():
    f = fibre(Morphology.CURLY, Disintegration.YES, "Organic fibres detected")
    with pytest.raises(ValueError):
        update_fibre(f, "result", "Chrysotile Asbestos")
    assert f.result == "Organic fibres detected"


def test_manual_result_rejected_when_disintegration_unset():
    with pytest.raises(ValueError):
        update_fibre(fibre(Morphology.STRAIGHT), "result", "SMF")


@pytest.mark.parametrize("value", ["SMF detected", "Organic fibres detected", "Talc"])
def test_non_disintegrating_fibre_only_takes_manual_results(value):
    with pytest.raises(ValueError):
        update_fibre(fibre(Morphology.CURLY, Disintegration.NO), "result", value)


def test_clearing_result_keeps_derived_value_for_disintegrating_fibre():
    f = fibre(Morphology.STRAIGHT, Disintegration.YES, "SMF detected")
    assert update_fibre(f, "result", "").result == "SMF detected"

    g = fibre(Morphology.STRAIGHT, Disintegration.NO, "Amosite Asbestos")
    assert update_fibre(g, "result", None).result == ""


def test_update_rejects_unknown_field():
    with pytest.raises(ValueError):
        update_fibre(fibre(), "name", "Fibre Z")


def test_classify_fibre_normalises_loaded_state():
    # auto string on a non-disintegrating fibre is dropped
    assert classify_fibre(fibre(Morphology.CURLY, Disintegration.NO, "Organic fibres detected")).result == ""
    # manual choice is kept
    assert classify_fibre(fibre(Morphology.CURLY, Disintegration.NO, "Organic Fibre")).result == "Organic Fibre"
    # disintegrating fibre always takes the derived result
    assert classify_fibre(fibre(Morphology.CURLY, Disintegration.YES, "SMF detected")).result == (
        "Organic fibres detected"
    )
    # nothing recorded yet
    assert classify_fibre(fibre(result="SMF")).result == ""


def test_aggregate_of_no_fibres():
    assert aggregate_result([]) == NO_FIBRE_DETECTED == "No fibre Detected"


def test_aggregate_when_every_result_is_empty():
    fibres = [fibre(name="Fibre A"), fibre(Morphology.CURLY, Disintegration.NO, name="Fibre B")]
    assert aggregate_result(fibres) == ANALYSIS_INCOMPLETE == "Analysis Incomplete"


def test_aggregate_deduplicates_in_first_occurrence_order():
    fibres = [
        fibre(Morphology.STRAIGHT, Disintegration.YES, "SMF detected", name="Fibre A"),
        fibre(Morphology.STRAIGHT, Disintegration.YES, "SMF detected", name="Fibre B"),
        fibre(Morphology.CURLY, Disintegration.YES, "Organic fibres detected", name="Fibre C"),
    ]
    assert aggregate_result(fibres) == "SMF detected, Organic fibres detected"


def test_aggregate_ignores_incomplete_fibres_among_complete_ones():
    fibres = [
        fibre(name="Fibre A"),
        fibre(Morphology.CURLY, Disintegration.NO, "Amosite Asbestos", name="Fibre B"),
    ]
    assert aggregate_result(fibres) == "Amosite Asbestos"


def test_classify_returns_per_fibre_results_and_aggregate():
    fibres = [
        fibre(Morphology.CURLY, Disintegration.YES, name="Fibre A"),
        fibre(Morphology.STRAIGHT, Disintegration.NO, "Crocidolite Asbestos", name="Fibre B"),
        fibre(None, Disintegration.YES, name="Fibre C"),
    ]
    results, final = classify(fibres)
    assert results == ["Organic fibres detected", "Crocidolite Asbestos", ""]
    assert final == "Organic fibres detected, Crocidolite Asbestos"


def test_classify_does_not_cap_the_list():
    fibres = [fibre(Morphology.CURLY, Disintegration.YES, name=f"Fibre {i}") for i in range(6)]
    results, final = classify(fibres)
    assert len(results) == 6
    assert final == "Organic fibres detected"
