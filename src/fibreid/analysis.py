"""
Sample analysis domain model.

Defines the SampleAnalysis dataclass: the record an analyst fills in for one
sample at the fibre ID bench, holding up to four fibre observations and the
sample-level details that go on the report.
"""

import logging
import typing
from dataclasses import dataclass, field

from . import classifier
from .fibre import (
    MAX_FIBRES_PER_SAMPLE,
    FibreObservation,
    apply_preset,
    fibre_name,
)

logger = logging.getLogger(__name__)

DEFAULT_MICROSCOPE = "LD-PLM-1"
NO_ASBESTOS_DETECTED = "No asbestos detected"

_ALLOWED_SAMPLE_TYPES = {"mass", "dimensions"}
_ALLOWED_YES_NO = {"yes", "no"}

# trace count bucket -> template for the final result ("" means no asbestos)
TRACE_COUNT_RESULTS = {
    "< 5 unequivocal": "",
    "5-19 unequivocal": "Trace {content} detected",
    "20+ unequivocal <100 visible": "Trace {content} detected",
    "100+ visible": "{content} detected",
}


class FibreLimitError(ValueError):
    """Raised when a fifth fibre is added to a sample analysis."""


@dataclass
class SampleDimensions:
    x: str = ""
    y: str = ""
    z: str = ""

    def any_filled(self) -> bool:
        return any(v.strip() for v in (self.x, self.y, self.z))


@dataclass
class SampleAnalysis:
    """
    Represents the fibre ID analysis of a single sample.

    Attributes:
        sample_reference: Identifier of the sample (worksheet index).
        sample_description: Free-text description, required to save.
        analyst: Who performed the analysis, required to save.
        microscope: Microscope used; reported as "N/A" if no fibres were found.
        sample_type: "mass" or "dimensions".
        sample_mass: Recorded mass when sample_type is "mass".
        sample_dimensions: x/y/z when sample_type is "dimensions".
        ashing: "yes" or "no".
        crucible_no: Crucible number when ashing.
        fibres: Observations, at most MAX_FIBRES_PER_SAMPLE.
        no_fibres_detected: Analyst override, empties the fibre list on save.
        trace_asbestos: "yes" or "no".
        trace_asbestos_content: Asbestos type found in trace analysis.
        trace_count: Count bucket from TRACE_COUNT_RESULTS.
        comments: Optional free text.
    """

    sample_reference: str
    sample_description: str = ""
    analyst: str = ""
    microscope: str = DEFAULT_MICROSCOPE
    sample_type: str = "mass"
    sample_mass: str = ""
    sample_dimensions: SampleDimensions = field(default_factory=SampleDimensions)
    ashing: str = "no"
    crucible_no: str = ""
    fibres: typing.List[FibreObservation] = field(default_factory=list)
    no_fibres_detected: bool = False
    trace_asbestos: str = "no"
    trace_asbestos_content: str = ""
    trace_count: str = ""
    comments: str = ""

    def __post_init__(self):
        if not isinstance(self.sample_reference, str) or not self.sample_reference.strip():
            raise ValueError("sample_reference must be a nonempty string")

        if self.sample_type not in _ALLOWED_SAMPLE_TYPES:
            raise ValueError(f"Invalid sample_type: {self.sample_type!r}")

        for attr in ("ashing", "trace_asbestos"):
            if getattr(self, attr) not in _ALLOWED_YES_NO:
                raise ValueError(f"{attr} must be 'yes' or 'no', got {getattr(self, attr)!r}")

        if len(self.fibres) > MAX_FIBRES_PER_SAMPLE:
            raise FibreLimitError(
                f"Sample {self.sample_reference!r} has {len(self.fibres)} fibres; "
                f"at most {MAX_FIBRES_PER_SAMPLE} are allowed"
            )

    # -----------------
    # Fibre bookkeeping
    # -----------------

    def add_fibre(self) -> FibreObservation:
        """Append a blank observation named after its position."""
        if len(self.fibres) >= MAX_FIBRES_PER_SAMPLE:
            raise FibreLimitError(
                f"Sample {self.sample_reference!r} already has {MAX_FIBRES_PER_SAMPLE} fibres"
            )
        fibre = FibreObservation(name=fibre_name(len(self.fibres)))
        self.fibres.append(fibre)
        logger.debug("Added %s to sample %s", fibre.name, self.sample_reference)
        return fibre

    def _index_of(self, name: str) -> int:
        for i, fibre in enumerate(self.fibres):
            if fibre.name == name:
                return i
        raise KeyError(f"No fibre named {name!r} in sample {self.sample_reference!r}")

    def remove_fibre(self, name: str) -> None:
        del self.fibres[self._index_of(name)]

    def update_fibre(self, name: str, field_name: str, value: typing.Any) -> FibreObservation:
        i = self._index_of(name)
        self.fibres[i] = classifier.update_fibre(self.fibres[i], field_name, value)
        return self.fibres[i]

    def apply_preset(self, name: str, preset: str) -> FibreObservation:
        i = self._index_of(name)
        self.fibres[i] = apply_preset(self.fibres[i], preset)
        return self.fibres[i]

    # -------
    # Results
    # -------

    def _trace_result(self) -> typing.Optional[str]:
        if self.trace_asbestos != "yes" or not self.trace_count or not self.trace_asbestos_content:
            return None
        template = TRACE_COUNT_RESULTS.get(self.trace_count)
        if template is None:
            return None
        if not template:
            return NO_ASBESTOS_DETECTED
        return template.format(content=self.trace_asbestos_content)

    @property
    def final_result(self) -> str:
        """Report-facing result: trace override, then no-fibre override, then the fibre aggregate."""
        trace = self._trace_result()
        if trace is not None:
            return trace
        if self.no_fibres_detected:
            return NO_ASBESTOS_DETECTED
        return classifier.aggregate_result(self.fibres)

    def is_mass_dimensions_valid(self) -> bool:
        if self.sample_type == "mass":
            return bool(self.sample_mass.strip())
        return self.sample_dimensions.any_filled()

    def is_complete(self) -> bool:
        if not self.sample_description.strip():
            return False
        if not self.is_mass_dimensions_valid():
            return False
        if self.no_fibres_detected:
            return True
        return bool(self.fibres) and all(f.result.strip() for f in self.fibres)

    def validate(self) -> typing.List[str]:
        """Problems that block saving this analysis; empty when it can be saved."""
        problems: typing.List[str] = []
        if not self.sample_description.strip():
            problems.append("Sample Description is required")
        if not self.analyst.strip():
            problems.append("Analyst is required")
        if not self.is_mass_dimensions_valid():
            label = "Sample Mass" if self.sample_type == "mass" else "Sample Dimensions"
            problems.append(f"{label} is required")
        return problems

    # -------------
    # Serialization
    # -------------

    def to_record(self) -> dict:
        """Payload for the server's analysisData document."""
        is_trace = self.trace_asbestos == "yes"
        dimensions = self.sample_dimensions
        return {
            "sampleReference": self.sample_reference,
            "microscope": "N/A" if self.no_fibres_detected else self.microscope,
            "sampleDescription": self.sample_description,
            "sampleType": self.sample_type,
            "sampleMass": self.sample_mass if self.sample_type == "mass" else None,
            "sampleDimensions": (
                {"x": dimensions.x, "y": dimensions.y, "z": dimensions.z}
                if self.sample_type == "dimensions"
                else None
            ),
            "ashing": self.ashing,
            "crucibleNo": self.crucible_no if self.ashing == "yes" else None,
            "fibres": [] if self.no_fibres_detected else [f.to_record() for f in self.fibres],
            "noFibreDetected": self.no_fibres_detected,
            "finalResult": self.final_result,
            "traceAsbestos": self.trace_asbestos,
            "traceAsbestosContent": self.trace_asbestos_content if is_trace else None,
            "traceCount": self.trace_count if is_trace else None,
            "comments": self.comments or None,
            "analysedBy": self.analyst or None,
            "isAnalysed": self.is_complete(),
        }

    @classmethod
    def from_record(cls, record: dict, sample_reference: typing.Optional[str] = None) -> "SampleAnalysis":
        """
        Rebuild an analysis from a to_record() payload. Fibre results are
        re-run through the classifier so loaded data obeys the current rules.
        """
        reference = sample_reference or record.get("sampleReference") or ""
        dimensions = record.get("sampleDimensions") or {}
        fibres = [classifier.classify_fibre(FibreObservation.from_record(f)) for f in record.get("fibres") or []]
        microscope = record.get("microscope") or DEFAULT_MICROSCOPE
        no_fibres = record.get("noFibreDetected")
        if no_fibres is None:
            # records written before the flag existed only carry the "N/A" microscope
            no_fibres = microscope == "N/A"
        return cls(
            sample_reference=str(reference),
            sample_description=record.get("sampleDescription") or "",
            analyst=record.get("analysedBy") or "",
            microscope=DEFAULT_MICROSCOPE if no_fibres and microscope == "N/A" else microscope,
            sample_type=record.get("sampleType") or "mass",
            sample_mass=str(record.get("sampleMass") or ""),
            sample_dimensions=SampleDimensions(
                x=str(dimensions.get("x") or ""),
                y=str(dimensions.get("y") or ""),
                z=str(dimensions.get("z") or ""),
            ),
            ashing=record.get("ashing") or "no",
            crucible_no=record.get("crucibleNo") or "",
            fibres=fibres,
            no_fibres_detected=bool(no_fibres),
            trace_asbestos=record.get("traceAsbestos") or "no",
            trace_asbestos_content=record.get("traceAsbestosContent") or "",
            trace_count=record.get("traceCount") or "",
            comments=record.get("comments") or "",
        )
