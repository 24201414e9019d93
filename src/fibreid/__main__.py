"""
Command‑line interface for the fibreid toolkit.
Reads fibre ID bench workbooks, classifies every fibre observation,
writes one analysis record per sample and pushes records to the server.
"""

import click
import json
import logging
import pandas as pd
import pathlib
import sys
import typing

from collections import namedtuple
from datetime import datetime
from stairval.notepad import create_notepad

from . import classifier
from .analysis import SampleAnalysis
from .fibre import MAX_FIBRES_PER_SAMPLE, Disintegration, FibreObservation, Morphology
from .lims_client import LIMSClientError, update_item_analysis
from .loader import load_sheets_as_tables
from .mapper import DefaultMapper

AuditEntry = namedtuple("AuditEntry", ["step", "sheet", "message", "level"])

logger = logging.getLogger(__name__)


def _configure_logging(verbose_logging: bool, log_file_path: typing.Optional[str]) -> None:
    handlers: list[logging.Handler] = []
    if log_file_path:
        handlers.append(logging.FileHandler(log_file_path, mode="a", encoding="utf-8"))
    if verbose_logging:
        handlers.append(logging.StreamHandler(sys.stderr))
    if handlers:
        logging.basicConfig(
            level=logging.DEBUG if verbose_logging else logging.INFO,
            format="%(asctime)s %(levelname)s %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
            handlers=handlers,
            force=True,
        )


@click.group()
@click.option("--verbose-logging", is_flag=True, help="Also emit debug logs to stderr")
@click.option(
    "--log-file-path",
    type=click.Path(dir_okay=False, writable=True),
    help="Append timestamped logs to this file",
)
def main(verbose_logging: bool, log_file_path: typing.Optional[str]):
    """fibreid: fibre identification results for the asbestos lab bench."""
    _configure_logging(verbose_logging, log_file_path)


@main.command(name="classify-excel")
@click.option(
    "-e",
    "--excel-path",
    "excel_file",
    required=True,
    type=click.Path(exists=True, dir_okay=False),
    help="path to the Excel workbook",
)
@click.option(
    "-o",
    "--output-dir",
    "output_dir",
    type=click.Path(file_okay=False),
    help="where to write analysis JSON (default: ./fibreid_output/<timestamp>/analyses)",
)
@click.option(
    "--strict-results/--no-strict-results",
    default=False,
    envvar="FIBREID_STRICT_RESULTS",
    help="Treat worksheet results that disagree with the rules as errors (default: warn).",
)
@click.option("--verbose", is_flag=True, help="Show the workbook audit before mapping")
def classify_excel(excel_file: str, output_dir: typing.Optional[str], strict_results: bool, verbose: bool):
    """
    Read the 'samples' and 'fibres' sheets, classify every fibre,
    derive each sample's final result and write one JSON record per sample.
    """
    # 1) Read all sheets into DataFrames
    tables = _read_sheets(excel_file)

    # optionally audit preprocessing
    if verbose:
        for entry in preprocess(tables):
            indent = "              "
            line = f"{entry.step:20} {entry.sheet:15} {entry.message}"
            # color by level
            if entry.level == "error":
                colored = click.style(line, fg="red")
            elif entry.level in ("warn", "warning"):
                colored = click.style(line, fg="yellow")
            else:
                colored = click.style(line, fg="cyan")
            click.echo(indent + colored)
        click.echo("")  # a blank line before mapping output

    # 2) Apply mapping to get classified analyses and collect issues
    notepad = create_notepad("fibreid")
    mapper = DefaultMapper(strict_results=strict_results)
    analyses = mapper.apply_mapping(tables, notepad)

    # 3) Report any errors or warnings
    _report_issues(notepad)

    # 4) Prepare output directory and write one record per sample
    analysis_output_dir = _prepare_output_dir(output_dir)
    _write_analyses(analyses, analysis_output_dir)

    # 5) Final summary
    click.echo(f"Wrote {len(analyses)} analysis files to {analysis_output_dir}")
    click.echo(f"Classified {mapper.stats['fibres']} fibres across {mapper.stats['samples']} samples")
    if mapper.stats["skipped_fibres"]:
        click.echo(f"Skipped {mapper.stats['skipped_fibres']} fibres over the {MAX_FIBRES_PER_SAMPLE}-per-sample limit")


@main.command(name="audit-excel")
@click.option(
    "-e",
    "--excel-path",
    "excel_file",
    required=True,
    type=click.Path(exists=True, dir_okay=False),
    help="path to the Excel workbook",
)
@click.option("-r", "--raw", is_flag=True, help="Emit the audit as JSON instead of a table")
def audit_excel(excel_file: str, raw: bool):
    """
    Audit a workbook without writing anything: header counts, sheet
    classification, fibre counts per sample and unreadable labels.
    """
    entries = preprocess(_read_sheets(excel_file))
    if raw:
        click.echo(json.dumps([entry._asdict() for entry in entries], indent=2))
        return

    rows = [("SHEET", "STEP", "LEVEL", "MESSAGE")] + [
        (e.sheet, e.step, e.level.upper(), e.message) for e in entries
    ]
    widths = [max(len(str(r[i])) for r in rows) for i in range(3)]
    for row in rows:
        click.echo("  ".join(str(c).ljust(w) for c, w in zip(row, widths)) + "  " + str(row[3]))


@main.command(name="classify-fibre")
@click.option(
    "--morphology",
    type=click.Choice([m.value for m in Morphology], case_sensitive=False),
    default=None,
    help="straight or curly (omit if not yet recorded)",
)
@click.option(
    "--disintegrates",
    type=click.Choice([d.value for d in Disintegration], case_sensitive=False),
    default=None,
    help="yes or no (omit if not yet recorded)",
)
def classify_fibre(morphology: typing.Optional[str], disintegrates: typing.Optional[str]):
    """Print the result the rules give a single fibre."""
    fibre = FibreObservation(
        name="Fibre A",
        morphology=Morphology.from_label(morphology),
        disintegrates=Disintegration.from_label(disintegrates),
    )
    result = classifier.derive_result(fibre)
    if result:
        click.echo(result)
    elif fibre.disintegrates is Disintegration.NO:
        click.echo("(manual selection required)")
    else:
        click.echo("(incomplete)")


@main.command(name="upload")
@click.option(
    "-d",
    "--data-path",
    "data_dir",
    required=True,
    type=click.Path(exists=True, file_okay=False),
    help="directory of analysis JSON written by classify-excel",
)
@click.option("--assessment", "assessment_id", required=True, help="server id of the assessment job")
@click.option(
    "--items",
    "items_file",
    type=click.Path(exists=True, dir_okay=False),
    help="JSON object mapping sample reference → server item id (default: the sample reference)",
)
@click.option(
    "--require-complete/--allow-incomplete",
    default=False,
    help="Skip records that are not fully analysed",
)
def upload(data_dir: str, assessment_id: str, items_file: typing.Optional[str], require_complete: bool):
    """
    PUT every analysis record in a directory to the laboratory management server.
    """
    item_ids: dict[str, str] = {}
    if items_file:
        with open(items_file, encoding="utf-8") as fh:
            item_ids = {str(k): str(v) for k, v in json.load(fh).items()}

    failures = 0
    uploaded = 0
    for path in sorted(pathlib.Path(data_dir).glob("*.json")):
        reference = path.stem
        try:
            with open(path, encoding="utf-8") as fh:
                record = json.load(fh)
            if not isinstance(record, dict):
                raise ValueError("expected a JSON object")
            reference = str(record.get("sampleReference") or path.stem)
            problems = SampleAnalysis.from_record(record, reference).validate()
        except ValueError as e:
            # json.JSONDecodeError and FibreLimitError are both ValueErrors
            logger.error("Cannot read analysis record %s: %s", path, e)
            click.echo(f"- {reference}: not uploaded ({e})", err=True)
            failures += 1
            continue

        if problems:
            click.echo(f"- {reference}: not uploaded ({'; '.join(problems)})", err=True)
            failures += 1
            continue
        if require_complete and not record.get("isAnalysed"):
            click.echo(f"- {reference}: skipped, analysis incomplete")
            continue

        try:
            update_item_analysis(assessment_id, item_ids.get(reference, reference), record)
        except LIMSClientError as e:
            logger.error("Upload of %s failed: %s", reference, e)
            click.echo(f"- {reference}: upload failed ({e})", err=True)
            failures += 1
            continue
        uploaded += 1

    click.echo(f"Uploaded {uploaded} analysis records")
    if failures:
        click.echo(f"{failures} records failed", err=True)
        sys.exit(1)


def _read_sheets(excel_file: str) -> dict[str, pd.DataFrame]:
    # read each worksheet into a DataFrame
    try:
        return load_sheets_as_tables(excel_file)
    except (ValueError, OSError) as e:
        logger.error("Failed to read %r: %s", excel_file, e)
        click.echo(f"Error: cannot read workbook {excel_file}: {e}", err=True)
        sys.exit(1)


def _report_issues(notepad):
    # if there were errors, show them
    if notepad.has_errors(include_subsections=True):
        click.echo("Errors found in mapping:")
        for err in notepad.errors():
            click.echo(f"- {err}")
    # show any warnings but keep going
    if notepad.has_warnings(include_subsections=True):
        click.echo("Warnings found in mapping:")
        for w in notepad.warnings():
            click.echo(f"- {w}")


def _prepare_output_dir(output_dir: typing.Optional[str] = None) -> pathlib.Path:
    if output_dir:
        analysis_output_dir = pathlib.Path(output_dir)
    else:
        # use YYYY-MM-DD_HH-MM-SS for human-readable timestamps
        timestamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
        analysis_output_dir = pathlib.Path.cwd() / "fibreid_output" / timestamp / "analyses"
    analysis_output_dir.mkdir(parents=True, exist_ok=True)
    return analysis_output_dir


def _safe_filename(reference: str) -> str:
    return "".join(c if c.isalnum() or c in "-_." else "_" for c in reference)


def _write_analyses(analyses: typing.Sequence[SampleAnalysis], analysis_output_dir: pathlib.Path):
    used: set[str] = set()
    for analysis in analyses:
        stem = base = _safe_filename(analysis.sample_reference)
        suffix = 2
        while stem.casefold() in used:
            stem = f"{base}-{suffix}"
            suffix += 1
        if stem != base:
            logger.warning("File name %s.json already used; writing %r as %s.json",
                           base, analysis.sample_reference, stem)
            click.echo(f"Sample {analysis.sample_reference!r} written to {stem}.json ({base}.json is taken)")
        used.add(stem.casefold())

        output_path = analysis_output_dir / f"{stem}.json"
        with open(output_path, "w", encoding="utf-8") as out_f:
            json.dump(analysis.to_record(), out_f, indent=2)
        logger.debug("Wrote %s (%s)", output_path, analysis.final_result)


def preprocess(tables: dict[str, pd.DataFrame]) -> list[AuditEntry]:
    """
    Run lightweight audits on each sheet:
      - header normalization
      - sheet classification
      - fibres per sample against the limit
      - unreadable morphology / disintegration labels
    """
    from .mapper import FIBRE_KEY_COLUMNS, SAMPLE_KEY_COLUMNS

    entries: list[AuditEntry] = []

    # Step 1: header counts
    for name, df in tables.items():
        entries.append(AuditEntry(
            step="normalize-headers",
            sheet=name,
            message=f"{len(df.columns)} cols",
            level="info",
        ))

    # Step 2: classify
    for name, df in tables.items():
        cols = set(df.columns)
        kind = "fibres" if FIBRE_KEY_COLUMNS.issubset(cols) else "samples" if SAMPLE_KEY_COLUMNS.issubset(cols) else "skip"
        entries.append(AuditEntry(
            step="classify-sheet",
            sheet=name,
            message=f"{kind} ({len(df)} rows)",
            level="info",
        ))

    # Step 3 & 4: fibre sheets only
    for name, df in tables.items():
        if not FIBRE_KEY_COLUMNS.issubset(set(df.columns)):
            continue
        counts = df.index.astype(str).value_counts()
        for sample_ref, count in counts.items():
            if count > MAX_FIBRES_PER_SAMPLE:
                entries.append(AuditEntry(
                    step="fibre-count",
                    sheet=name,
                    message=f"sample {sample_ref} has {count} fibres (max {MAX_FIBRES_PER_SAMPLE})",
                    level="error",
                ))
        for column, enum in (("morphology", Morphology), ("disintegrates", Disintegration)):
            for value in df[column].dropna().unique():
                try:
                    enum.from_label(DefaultMapper._cell_str(value))
                except ValueError:
                    entries.append(AuditEntry(
                        step="label-check",
                        sheet=name,
                        message=f"unknown {column} {value!r}",
                        level="warning",
                    ))
    return entries


if __name__ == "__main__":
    main()
