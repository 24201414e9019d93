import abc
import logging
import typing

from collections import defaultdict
from dataclasses import dataclass

import pandas as pd
from stairval.notepad import Notepad

from . import classifier
from .analysis import SampleAnalysis, SampleDimensions
from .fibre import (
    ALLOWED_RESULTS,
    AUTO_RESULTS,
    MAX_FIBRES_PER_SAMPLE,
    OPTICAL_FIELDS,
    Disintegration,
    FibreObservation,
    Morphology,
    fibre_name,
)

logger = logging.getLogger(__name__)

# Minimal columns (after renaming) to recognise each sheet type
FIBRE_KEY_COLUMNS = {"morphology", "disintegrates"}
SAMPLE_KEY_COLUMNS = {"sample_description"}

# Friendly aliases → reduces friction while keeping behavior explicit
KNOWN_SHEET_ALIASES: dict[str, set[str]] = {"samples": {"samples", "sample", "analyses", "analysis"},
                                            "fibres": {"fibres", "fibers", "fibre", "fiber", "observations"}}

SAMPLE_ID_COLUMN = "sample_reference"


@dataclass
class TypedTables:
    """
    Explicit, typed access to workbook sheets.
    Any field can be `None`, meaning that the sheet was not provided.
    """
    samples: pd.DataFrame | None
    fibres: pd.DataFrame | None


class TableMapper(metaclass=abc.ABCMeta):
    @abc.abstractmethod
    def apply_mapping(
            self, tables: dict[str, pd.DataFrame], notepad: Notepad
    ) -> typing.Sequence[SampleAnalysis]:
        # return fully-assembled, classified analyses, not intermediate parts.
        raise NotImplementedError


class DefaultMapper(TableMapper):
    def __init__(self, strict_results: bool = False):
        """
        - False: worksheet results that disagree with the rules are logged as WARNINGS
        - True : the same disagreements are logged as ERRORS
        In both cases the rule-derived result is kept.
        """
        self.strict_results = strict_results
        self.stats: dict[str, int] = {"samples": 0, "fibres": 0, "skipped_fibres": 0}

    def apply_mapping(
            self, tables: dict[str, pd.DataFrame], notepad: Notepad
    ) -> list[SampleAnalysis]:
        """
        Process:
        1) choose/validate input tables
        2) map sample rows and fibre rows to domain records
        3) attach fibres to their samples, enforcing the per-sample cap
        4) return the analyses in worksheet order
        """
        self.stats = {"samples": 0, "fibres": 0, "skipped_fibres": 0}
        typed_tables = self._choose_named_tables(tables, notepad)
        samples = self._map_samples_table(typed_tables.samples, notepad)
        fibres_by_sample = self._map_fibres_table(typed_tables.fibres, notepad)

        analyses = self._attach_fibres(samples, fibres_by_sample, notepad)
        self.stats["samples"] = len(analyses)
        self.stats["fibres"] = sum(len(a.fibres) for a in analyses)
        logger.info("Mapped %d fibres across %d samples", self.stats["fibres"], self.stats["samples"])
        return analyses

    def _prepare_sheet(self, df: pd.DataFrame) -> pd.DataFrame:
        """Bring the index (sample reference) into a named column."""
        working = df.reset_index()
        original = working.columns[0]
        if original == SAMPLE_ID_COLUMN:
            return working
        return working.rename(columns={original: SAMPLE_ID_COLUMN})

    @staticmethod
    def _cell_str(value: typing.Any) -> str:
        """
        Worksheet cell → clean string:
        - None/NaN/empty → ""
        - whole floats lose their ".0" (pandas turns 12 into 12.0 when a column has blanks)
        - everything else is str() and stripped
        """
        if value is None:
            return ""
        if not isinstance(value, str) and pd.isna(value):
            return ""
        if isinstance(value, float) and value.is_integer():
            return str(int(value))
        return str(value).strip()

    @staticmethod
    def _to_bool(value: typing.Any) -> bool:
        """
        Robust boolean parsing:
        - True for: 1, '1', 'true', 't', 'yes', 'y' (case-insensitive)
        - False for: 0, '0', 'false', 'f', 'no', 'n', '', None, NaN
        - Fallback: Python truthiness on other values (rare)
        """
        if isinstance(value, bool):
            return value
        if value is None or (not isinstance(value, str) and pd.isna(value)):
            return False
        s = str(value).strip().lower()
        if s in {"1", "1.0", "true", "t", "yes", "y"}:
            return True
        if s in {"0", "0.0", "false", "f", "no", "n", ""}:
            return False
        return bool(value)

    @staticmethod
    def _yes_no(value: typing.Any) -> str:
        return "yes" if DefaultMapper._to_bool(value) else "no"

    @staticmethod
    def parse_sample_row(row: pd.Series, sheet_name: str, notepad: Notepad) -> SampleAnalysis | None:
        """
        Parse a single sample row into a SampleAnalysis without fibres.
        Returns None if validation fails for this row.
        """
        cell = DefaultMapper._cell_str
        sample_type = cell(row.get("sample_type")).lower() or "mass"
        try:
            return SampleAnalysis(
                sample_reference=cell(row.get(SAMPLE_ID_COLUMN)),
                sample_description=cell(row.get("sample_description")),
                analyst=cell(row.get("analyst")),
                microscope=cell(row.get("microscope")) or "LD-PLM-1",
                sample_type=sample_type,
                sample_mass=cell(row.get("sample_mass")),
                sample_dimensions=SampleDimensions(
                    x=cell(row.get("dimension_x")),
                    y=cell(row.get("dimension_y")),
                    z=cell(row.get("dimension_z")),
                ),
                ashing=DefaultMapper._yes_no(row.get("ashing")),
                crucible_no=cell(row.get("crucible_no")),
                no_fibres_detected=DefaultMapper._to_bool(row.get("no_fibres_detected")),
                trace_asbestos=DefaultMapper._yes_no(row.get("trace_asbestos")),
                trace_asbestos_content=cell(row.get("trace_asbestos_content")),
                trace_count=cell(row.get("trace_count")),
                comments=cell(row.get("comments")),
            )
        except (ValueError, TypeError) as e:
            notepad.add_error(f"Sheet {sheet_name!r}: {e}")
            return None

    @staticmethod
    def parse_fibre_row(
            row: pd.Series, name: str, sheet_name: str, notepad: Notepad, strict: bool = False
    ) -> FibreObservation | None:
        """
        Parse a single fibre row into a classified FibreObservation.
        Returns None if the row cannot be parsed.

        A result typed into the worksheet is kept only where the rules allow a
        manual choice; everywhere else the derived result replaces it and the
        disagreement is reported.
        """
        cell = DefaultMapper._cell_str
        sample_ref = cell(row.get(SAMPLE_ID_COLUMN))
        where = f"Sheet {sheet_name!r}, sample {sample_ref!r}, {name}"

        try:
            morphology = Morphology.from_label(cell(row.get("morphology")))
            disintegrates = Disintegration.from_label(cell(row.get("disintegrates")))
        except ValueError as e:
            notepad.add_error(f"{where}: {e}")
            return None

        raw_result = cell(row.get("result"))
        if raw_result and raw_result not in ALLOWED_RESULTS:
            notepad.add_error(f"{where}: unknown result {raw_result!r}")
            return None

        try:
            fibre = FibreObservation(
                name=name,
                morphology=morphology,
                disintegrates=disintegrates,
                result=raw_result,
                **{attr: cell(row.get(attr)) for attr in OPTICAL_FIELDS},
            )
        except (ValueError, TypeError) as e:
            notepad.add_error(f"{where}: {e}")
            return None

        classified = classifier.classify_fibre(fibre)
        if raw_result and classified.result != raw_result:
            if disintegrates is Disintegration.YES:
                derived = classified.result or "(incomplete)"
                msg = f"{where}: result {raw_result!r} disagrees with derived {derived!r}"
            elif disintegrates is Disintegration.NO and raw_result in AUTO_RESULTS:
                msg = f"{where}: automatic result {raw_result!r} cleared for a non-disintegrating fibre"
            else:
                msg = f"{where}: result {raw_result!r} ignored, disintegration not recorded"
            (notepad.add_error if strict else notepad.add_warning)(msg)

        return classified

    def _choose_named_tables(self, tables: dict[str, pd.DataFrame], notepad: Notepad) -> TypedTables:
        """
        Prefer explicit sheet names (plus common aliases).
        """

        def by_alias(kind: str) -> pd.DataFrame | None:
            aliases = KNOWN_SHEET_ALIASES[kind]
            for sheet_name, df in tables.items():
                if sheet_name.strip().casefold() in aliases:
                    return df
            return None

        selected = TypedTables(
            samples=by_alias("samples"),
            fibres=by_alias("fibres"),
        )

        # Hard-minimum: the fibre observations must exist
        if selected.fibres is None:
            notepad.add_error("Missing required sheet: 'fibres'.")

        return selected

    # Table-level wrapper mappers
    def _map_samples_table(self, df: pd.DataFrame | None, notepad: Notepad) -> list[SampleAnalysis]:
        """
        Sheet-level wrapper for sample rows:
          - normalize index to 'sample_reference'
          - reject duplicate references (first one wins)
          - delegate row conversion to parse_sample_row
        """
        if df is None:
            return []
        working = self._prepare_sheet(df)

        records: list[SampleAnalysis] = []
        seen: set[str] = set()
        for _, row in working.iterrows():
            record = self.parse_sample_row(row, "samples", notepad)
            if record is None:
                continue
            if record.sample_reference in seen:
                notepad.add_error(f"Sheet 'samples': duplicate sample reference {record.sample_reference!r}")
                continue
            seen.add(record.sample_reference)
            records.append(record)
        return records

    def _map_fibres_table(self, df: pd.DataFrame | None, notepad: Notepad) -> dict[str, list[FibreObservation]]:
        """
        Sheet-level wrapper for fibre rows:
          - normalize index to 'sample_reference'
          - require the classifying columns
          - name unnamed fibres by their position within the sample
          - delegate row conversion to parse_fibre_row
        """
        grouped: dict[str, list[FibreObservation]] = defaultdict(list)
        if df is None:
            return grouped
        working = self._prepare_sheet(df)

        missing = sorted(FIBRE_KEY_COLUMNS - set(working.columns))
        if missing:
            notepad.add_error(f"Sheet 'fibres': missing required columns: {missing}")
            return grouped

        position: dict[str, int] = defaultdict(int)
        for _, row in working.iterrows():
            sample_ref = self._cell_str(row.get(SAMPLE_ID_COLUMN))
            if not sample_ref:
                notepad.add_error("Sheet 'fibres': row without a sample reference")
                continue
            name = self._cell_str(row.get("name")) or fibre_name(position[sample_ref])
            position[sample_ref] += 1

            fibre = self.parse_fibre_row(row, name, "fibres", notepad, self.strict_results)
            if fibre is not None:
                grouped[sample_ref].append(fibre)
        return grouped

    def _attach_fibres(
            self,
            samples: list[SampleAnalysis],
            fibres_by_sample: dict[str, list[FibreObservation]],
            notepad: Notepad,
    ) -> list[SampleAnalysis]:
        """
        Give every sample its fibres. Samples only present on the fibres sheet
        get a bare analysis; anything past the per-sample cap is dropped.
        """
        by_reference = {s.sample_reference: s for s in samples}
        ordered = list(samples)
        for sample_ref, fibres in fibres_by_sample.items():
            analysis = by_reference.get(sample_ref)
            if analysis is None:
                notepad.add_warning(f"Sheet 'fibres': sample {sample_ref!r} is not listed on the samples sheet")
                analysis = SampleAnalysis(sample_reference=sample_ref)
                by_reference[sample_ref] = analysis
                ordered.append(analysis)

            if len(fibres) > MAX_FIBRES_PER_SAMPLE:
                dropped = fibres[MAX_FIBRES_PER_SAMPLE:]
                notepad.add_error(
                    f"Sheet 'fibres': sample {sample_ref!r} has {len(fibres)} fibres; "
                    f"at most {MAX_FIBRES_PER_SAMPLE} are allowed, dropping "
                    + ", ".join(f.name for f in dropped)
                )
                self.stats["skipped_fibres"] += len(dropped)
                fibres = fibres[:MAX_FIBRES_PER_SAMPLE]

            analysis.fibres = list(fibres)
        return ordered
