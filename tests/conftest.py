import pandas as pd
import pytest


def _samples_frame() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "Sample Description": ["Fibre cement sheet", "Vinyl floor tile", "Pipe lagging"],
            "Analyst": ["J. Smith", "J. Smith", "A. Lee"],
            "Sample Type": ["mass", "dimensions", "mass"],
            "Mass (g)": [1.25, None, 0.8],
            "X": [None, "10", None],
            "Ashing": ["no", "yes", "no"],
            "Crucible No": [None, 7, None],
            "No Fibres": [0, 0, 1],
        },
        index=pd.Index(["LD-001", "LD-002", "LD-003"], name="Sample Reference"),
    )


def _fibres_frame() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "Morphology": ["straight", "curly", "curly", "straight"],
            "Disintegrates": ["yes", "yes", "no", None],
            "RI (liquid)": [None, None, "1.55", None],
            "Colour": [None, None, "White", None],
            "Result": [None, None, "Chrysotile Asbestos", None],
        },
        index=pd.Index(["LD-001", "LD-001", "LD-002", "LD-002"], name="Sample Reference"),
    )


@pytest.fixture
def make_workbook(tmp_path):
    """
    Factory writing a workbook to tmp_path. Pass DataFrames by sheet name;
    the defaults give a small bench workbook with 'samples' and 'fibres'.
    """

    def _make(sheets: dict[str, pd.DataFrame] | None = None, filename: str = "bench.xlsx") -> str:
        if sheets is None:
            sheets = {"samples": _samples_frame(), "fibres": _fibres_frame()}
        path = tmp_path / filename
        with pd.ExcelWriter(path, engine="openpyxl") as writer:
            for sheet_name, df in sheets.items():
                df.to_excel(writer, sheet_name=sheet_name)
        return str(path)

    return _make


@pytest.fixture
def bench_workbook(make_workbook) -> str:
    return make_workbook()
