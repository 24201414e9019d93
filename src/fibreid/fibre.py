"""
Fibre observation domain model.

Defines the FibreObservation dataclass for a single fibre examined under
polarised-light microscopy, the enumerations for its two classifying
properties, and the fixed result vocabularies.
"""

import dataclasses
from dataclasses import dataclass
from enum import Enum
from typing import Optional

# Results the classifier derives on its own (disintegrating fibres)
ORGANIC_FIBRES_DETECTED = "Organic fibres detected"
SMF_DETECTED = "SMF detected"
AUTO_RESULTS = (ORGANIC_FIBRES_DETECTED, SMF_DETECTED)

# Results the analyst picks by hand (non-disintegrating fibres).
# "Organic Fibre" and "Organic fibres detected" both stay as written; reports match exact strings.
MANUAL_RESULTS = (
    "Chrysotile Asbestos",
    "Amosite Asbestos",
    "Crocidolite Asbestos",
    "Organic Fibre",
    "SMF",
)

ALLOWED_RESULTS = frozenset(AUTO_RESULTS + MANUAL_RESULTS)

# Optical properties recorded for non-disintegrating fibres; free text, never interpreted
OPTICAL_FIELDS = (
    "ri_liquid",
    "colour",
    "pleochrism",
    "birefringence",
    "extinction",
    "sign_of_elongation",
    "fibre_parallel",
    "fibre_perpendicular",
)

MAX_FIBRES_PER_SAMPLE = 4


class Morphology(Enum):
    """Shape of the fibre under the microscope."""
    STRAIGHT = "straight"
    CURLY = "curly"

    @classmethod
    def from_label(cls, label: Optional[str]) -> Optional["Morphology"]:
        """
        Convert a worksheet/UI label into the enum.
        Empty labels mean "not recorded yet" and map to None.
        """
        if label is None:
            return None
        key = str(label).strip().lower()
        if not key:
            return None
        try:
            return cls(key)
        except ValueError:
            raise ValueError(f"Unknown morphology label: {label!r}")


class Disintegration(Enum):
    """Whether the fibre disintegrates on ashing/acid treatment."""
    YES = "yes"
    NO = "no"

    @classmethod
    def from_label(cls, label: Optional[str]) -> Optional["Disintegration"]:
        """
        Convert a label into the enum. Accepts yes/no plus the usual
        y/n, true/false, 1/0 spellings; empty means unset.
        """
        if label is None:
            return None
        if isinstance(label, bool):
            return cls.YES if label else cls.NO
        key = str(label).strip().lower()
        if not key:
            return None
        mapping = {
            "yes": cls.YES,
            "y": cls.YES,
            "true": cls.YES,
            "1": cls.YES,
            "no": cls.NO,
            "n": cls.NO,
            "false": cls.NO,
            "0": cls.NO,
        }
        try:
            return mapping[key]
        except KeyError:
            raise ValueError(f"Unknown disintegration label: {label!r}")


@dataclass(frozen=True)
class FibreObservation:
    """
    Represents one fibre observed during a sample analysis.

    Attributes:
        name: Position label, "Fibre A" through "Fibre D".
        morphology: Straight or curly; None until recorded.
        disintegrates: Yes or no; None until recorded.
        ri_liquid ... fibre_perpendicular: Descriptive optical properties.
        result: Empty, auto-derived, or a manual choice from MANUAL_RESULTS.
    """

    name: str
    morphology: Optional[Morphology] = None
    disintegrates: Optional[Disintegration] = None
    ri_liquid: str = ""
    colour: str = ""
    pleochrism: str = ""
    birefringence: str = ""
    extinction: str = ""
    sign_of_elongation: str = ""
    fibre_parallel: str = ""
    fibre_perpendicular: str = ""
    result: str = ""

    def __post_init__(self):
        if not isinstance(self.name, str) or not self.name.strip():
            raise ValueError("Fibre name must be a nonempty string")

        if self.morphology is not None and not isinstance(self.morphology, Morphology):
            raise ValueError(f"Invalid morphology: {self.morphology!r}")

        if self.disintegrates is not None and not isinstance(self.disintegrates, Disintegration):
            raise ValueError(f"Invalid disintegration: {self.disintegrates!r}")

        for attr in OPTICAL_FIELDS:
            if not isinstance(getattr(self, attr), str):
                raise ValueError(f"{attr} must be a string, got {getattr(self, attr)!r}")

        if self.result and self.result not in ALLOWED_RESULTS:
            raise ValueError(f"Unknown fibre result: {self.result!r}")

    def to_record(self) -> dict:
        """Serialize using the server's camelCase field names."""
        return {
            "name": self.name,
            "morphology": self.morphology.value if self.morphology else "",
            "disintegrates": self.disintegrates.value if self.disintegrates else "",
            "riLiquid": self.ri_liquid,
            "colour": self.colour,
            "pleochrism": self.pleochrism,
            "birefringence": self.birefringence,
            "extinction": self.extinction,
            "signOfElongation": self.sign_of_elongation,
            "fibreParallel": self.fibre_parallel,
            "fibrePerpendicular": self.fibre_perpendicular,
            "result": self.result,
        }

    @classmethod
    def from_record(cls, record: dict) -> "FibreObservation":
        """Inverse of to_record; missing keys fall back to defaults."""
        return cls(
            name=str(record.get("name") or ""),
            morphology=Morphology.from_label(record.get("morphology")),
            disintegrates=Disintegration.from_label(record.get("disintegrates")),
            ri_liquid=str(record.get("riLiquid") or ""),
            colour=str(record.get("colour") or ""),
            pleochrism=str(record.get("pleochrism") or ""),
            birefringence=str(record.get("birefringence") or ""),
            extinction=str(record.get("extinction") or ""),
            sign_of_elongation=str(record.get("signOfElongation") or ""),
            fibre_parallel=str(record.get("fibreParallel") or ""),
            fibre_perpendicular=str(record.get("fibrePerpendicular") or ""),
            result=str(record.get("result") or ""),
        )


def fibre_name(index: int) -> str:
    """Label for the fibre at a 0-based position: 0 -> 'Fibre A'."""
    if index < 0:
        raise ValueError(f"Fibre index must be non-negative, got {index}")
    return f"Fibre {chr(ord('A') + index)}"


# Reference optical properties for the three regulated asbestos types
ASBESTOS_PRESETS = {
    "Chrysotile": {
        "morphology": Morphology.CURLY,
        "disintegrates": Disintegration.NO,
        "ri_liquid": "1.55",
        "colour": "White",
        "pleochrism": "None",
        "birefringence": "low",
        "extinction": "complete",
        "sign_of_elongation": "Length-slow",
        "fibre_parallel": "Blue",
        "fibre_perpendicular": "Magenta",
        "result": "Chrysotile Asbestos",
    },
    "Amosite": {
        "morphology": Morphology.STRAIGHT,
        "disintegrates": Disintegration.NO,
        "ri_liquid": "1.67",
        "colour": "Brown",
        "pleochrism": "Low",
        "birefringence": "moderate",
        "extinction": "complete",
        "sign_of_elongation": "Length-slow",
        "fibre_parallel": "Magenta",
        "fibre_perpendicular": "Yellow",
        "result": "Amosite Asbestos",
    },
    "Crocidolite": {
        "morphology": Morphology.STRAIGHT,
        "disintegrates": Disintegration.NO,
        "ri_liquid": "1.70",
        "colour": "Blue",
        "pleochrism": "Low",
        "birefringence": "low",
        "extinction": "complete",
        "sign_of_elongation": "Length-fast",
        "fibre_parallel": "Blue",
        "fibre_perpendicular": "Blue",
        "result": "Crocidolite Asbestos",
    },
}


def apply_preset(fibre: FibreObservation, preset: str) -> FibreObservation:
    """Return a copy of `fibre` with every property filled from an asbestos preset."""
    try:
        values = ASBESTOS_PRESETS[preset]
    except KeyError:
        raise ValueError(f"Unknown asbestos preset: {preset!r}")
    return dataclasses.replace(fibre, **values)
