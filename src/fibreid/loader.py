import pandas as pd

# Bench worksheet headings → dataclass fields
RENAME_MAP = {
    # sample columns
    "sample": "sample_reference",
    "sample_ref": "sample_reference",
    "description": "sample_description",
    "mass": "sample_mass",
    "type": "sample_type",
    "crucible": "crucible_no",
    "crucible_number": "crucible_no",
    "x": "dimension_x",
    "y": "dimension_y",
    "z": "dimension_z",
    "no_fibres": "no_fibres_detected",
    "no_fibre_detected": "no_fibres_detected",
    "trace": "trace_asbestos",
    "trace_content": "trace_asbestos_content",
    # fibre columns
    "fibre": "name",
    "fibre_name": "name",
    "disintegration": "disintegrates",
    "disintegrated": "disintegrates",
    "ri": "ri_liquid",
    "color": "colour",
    "pleochroism": "pleochrism",
    "sign_of_elong": "sign_of_elongation",
    "elongation": "sign_of_elongation",
    "parallel": "fibre_parallel",
    "perpendicular": "fibre_perpendicular",
}


def normalize_headers(df: pd.DataFrame) -> pd.DataFrame:
    """
    Normalize worksheet headers to snake_case lowercase and apply RENAME_MAP.
    """
    df = df.copy()
    df.columns = (
        df.columns.astype(str)
        .str.strip()
        .str.replace(r"\s*\(.*?\)", "", regex=True)  # drop any "(mg)" style units
        .str.replace(r"[\s\-]+", "_", regex=True)  # spaces/dashes → underscore
        .str.replace(":", "", regex=False)  # drop colons
        .str.lower()
    )
    return df.rename(
        columns={orig: target for orig, target in RENAME_MAP.items() if orig in df.columns}
    )


def load_sheets_as_tables(workbook_path: str) -> dict[str, pd.DataFrame]:
    """
    Read each worksheet into a DataFrame:
      - first row = header
      - first column = index (the sample reference)
      - normalize all headers via normalize_headers
    """
    excel = pd.ExcelFile(workbook_path, engine="openpyxl")
    tables: dict[str, pd.DataFrame] = {}

    for sheet_name in excel.sheet_names:
        df = pd.read_excel(
            excel, sheet_name=sheet_name, header=0, index_col=0, engine="openpyxl"
        )
        tables[sheet_name] = normalize_headers(df)

    return tables
