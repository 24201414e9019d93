"""
Fibre-type classification rules.

Two pure rules drive the result shown on a fibre ID report:

  - per observation: a disintegrating fibre is classified from its
    morphology (curly -> organic, straight -> SMF); a non-disintegrating
    fibre is never auto-classified, the analyst picks its result.
  - per sample: the distinct observation results, in first-seen order,
    joined with ", ".

Nothing here enforces the 4-fibre cap; see SampleAnalysis.add_fibre.
"""

import dataclasses
import typing

from .fibre import (
    MANUAL_RESULTS,
    OPTICAL_FIELDS,
    ORGANIC_FIBRES_DETECTED,
    SMF_DETECTED,
    Disintegration,
    FibreObservation,
    Morphology,
)

NO_FIBRE_DETECTED = "No fibre Detected"
ANALYSIS_INCOMPLETE = "Analysis Incomplete"

# Changing either of these invalidates whatever result was there before
TRIGGER_FIELDS = ("morphology", "disintegrates")
EDITABLE_FIELDS = TRIGGER_FIELDS + OPTICAL_FIELDS + ("result",)


def derive_result(fibre: FibreObservation) -> str:
    """Auto result for the observation, or "" when the rules do not decide one."""
    if fibre.disintegrates is not Disintegration.YES:
        return ""
    if fibre.morphology is Morphology.CURLY:
        return ORGANIC_FIBRES_DETECTED
    if fibre.morphology is Morphology.STRAIGHT:
        return SMF_DETECTED
    return ""


def update_fibre(fibre: FibreObservation, field: str, value: typing.Any) -> FibreObservation:
    """
    Set one field and re-run the per-observation rule.

    Returns a new observation. When `field` is morphology or disintegrates the
    previous result is dropped before re-deriving, so a stale auto or manual
    result never outlives the properties it was based on. Edits to optical
    properties keep the current result.

    A result can only be set by hand on a non-disintegrating fibre, and only
    to one of MANUAL_RESULTS; anything else raises ValueError.
    """
    if field not in EDITABLE_FIELDS:
        raise ValueError(f"Field {field!r} cannot be edited on a fibre")

    if field == "morphology" and not isinstance(value, Morphology):
        value = Morphology.from_label(value)
    elif field == "disintegrates" and not isinstance(value, Disintegration):
        value = Disintegration.from_label(value)
    elif field in OPTICAL_FIELDS or field == "result":
        value = "" if value is None else str(value).strip()

    if field == "result" and value:
        if value not in MANUAL_RESULTS:
            raise ValueError(f"{value!r} is not a manual fibre result")
        if fibre.disintegrates is not Disintegration.NO:
            raise ValueError(f"{fibre.name}: a result is only chosen by hand for non-disintegrating fibres")

    updated = dataclasses.replace(fibre, **{field: value})
    if field in TRIGGER_FIELDS:
        updated = dataclasses.replace(updated, result=derive_result(updated))
    elif field == "result":
        updated = classify_fibre(updated)
    return updated


def classify_fibre(fibre: FibreObservation) -> FibreObservation:
    """
    Bring a loaded observation in line with the rules:
      - disintegrates yes -> the derived result (possibly "")
      - disintegrates no  -> keep a manual choice, drop an auto string
      - unset             -> ""
    """
    if fibre.disintegrates is Disintegration.YES:
        result = derive_result(fibre)
    elif fibre.disintegrates is Disintegration.NO:
        result = fibre.result if fibre.result in MANUAL_RESULTS else ""
    else:
        result = ""
    if result == fibre.result:
        return fibre
    return dataclasses.replace(fibre, result=result)


def aggregate_result(fibres: typing.Sequence[FibreObservation]) -> str:
    """Final sample result from its observations."""
    if not fibres:
        return NO_FIBRE_DETECTED

    # dict keeps first-occurrence order
    distinct = dict.fromkeys(f.result for f in fibres if f.result)
    if not distinct:
        return ANALYSIS_INCOMPLETE
    return ", ".join(distinct)


def classify(
    fibres: typing.Sequence[FibreObservation],
) -> typing.Tuple[typing.List[str], str]:
    """Per-observation results (after normalisation) and the aggregate result."""
    classified = [classify_fibre(f) for f in fibres]
    return [f.result for f in classified], aggregate_result(classified)
