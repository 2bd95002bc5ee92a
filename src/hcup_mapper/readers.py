"""
Readers for CCSR mapping files and HCUP Summary Trend Tables.

Mapping files are distributed as ZIP archives holding a CSV (and sometimes an
Excel workbook); users also keep them unpacked in a directory or as a single
CSV/Excel file. Every cell is read as a string so ICD codes such as '001.0'
keep their leading zeros.
"""

import io
import re
import zipfile
from pathlib import Path
from typing import List, Optional, Sequence, Union
import logging

import pandas as pd

from .columns import ROLE_PATTERNS, find_column, infer_family
from .table import MappingTable
from .utils import normalize_codes
from .versions import Family, find_version_token, parse_family

logger = logging.getLogger(__name__)

# latin1 decodes any byte, so it must come last
CSV_ENCODINGS = ("utf-8", "cp1252", "latin1")

CSV_SUFFIXES = (".csv",)
EXCEL_SUFFIXES = (".xlsx", ".xls")

FAMILY_FILE_PATTERNS = {
    Family.DIAGNOSIS: r'dx|diagnosis',
    Family.PROCEDURE: r'pr|procedure',
}

METADATA_SHEET_PATTERNS = [
    r'data.*use.*agreement',
    r'disclaimer',
    r'read.*me',
    r'instructions',
    r'notes',
    r'metadata',
    r'end.*of.*content',
]

PREFERRED_SHEET = "National"


def clean_column_names(names: Sequence) -> List[str]:
    """
    Normalize column names to lower snake case.

    Whitespace runs become '_', characters outside [A-Za-z0-9_] are dropped,
    repeated underscores collapse and leading/trailing ones are trimmed.
    Duplicates after cleaning get a numeric suffix.

    Examples:
        >>> clean_column_names(["ICD-10-CM CODE", "Default CCSR CATEGORY IP"])
        ['icd10cm_code', 'default_ccsr_category_ip']
    """
    cleaned = []
    seen = {}
    for name in names:
        value = re.sub(r'\s+', '_', str(name))
        value = re.sub(r'[^A-Za-z0-9_]', '', value)
        value = value.lower()
        value = re.sub(r'_+', '_', value).strip('_')
        if value in seen:
            seen[value] += 1
            value = f"{value}_{seen[value]}"
        else:
            seen[value] = 1
        cleaned.append(value)
    return cleaned


def select_mapping_file(
    files: Sequence[str],
    family: Optional[Union[str, Family]] = None
) -> str:
    """Pick the file for a family by name (dx|diagnosis, pr|procedure), else the first."""
    if not files:
        raise FileNotFoundError("No candidate mapping files")
    if len(files) == 1 or family is None:
        return files[0]
    pattern = FAMILY_FILE_PATTERNS[parse_family(family)]
    for name in files:
        if re.search(pattern, Path(name).name, flags=re.IGNORECASE):
            return name
    return files[0]


def _read_csv_bytes(data: bytes, label: str) -> pd.DataFrame:
    for encoding in CSV_ENCODINGS:
        try:
            return pd.read_csv(
                io.BytesIO(data),
                dtype=str,
                keep_default_na=False,
                na_values=[""],
                encoding=encoding,
            )
        except UnicodeDecodeError:
            logger.debug(f"Could not decode {label} as {encoding}")
    raise ValueError(
        f"Failed to read CSV file {label}. Tried encodings: {', '.join(CSV_ENCODINGS)}"
    )


def _read_excel_bytes(data: bytes, label: str) -> pd.DataFrame:
    logger.debug(f"Reading first sheet of {label}")
    return pd.read_excel(io.BytesIO(data), sheet_name=0, dtype=str)


def _pick(
    names: Sequence[str],
    family: Optional[Union[str, Family]],
    where: str
) -> str:
    csv_files = [n for n in names if n.lower().endswith(CSV_SUFFIXES)]
    excel_files = [n for n in names if n.lower().endswith(EXCEL_SUFFIXES)]
    if csv_files:
        return select_mapping_file(sorted(csv_files), family)
    if excel_files:
        return select_mapping_file(sorted(excel_files), family)
    raise FileNotFoundError(f"No CSV or Excel files found in {where}")


def _read_bytes(data: bytes, name: str) -> pd.DataFrame:
    if name.lower().endswith(CSV_SUFFIXES):
        return _read_csv_bytes(data, name)
    if name.lower().endswith(EXCEL_SUFFIXES):
        return _read_excel_bytes(data, name)
    raise ValueError(
        f"Unsupported file format: {name}. Expected ZIP, CSV, Excel, or directory."
    )


def read_mapping_file(
    file_path: Union[str, Path],
    family: Optional[Union[str, Family]] = None,
    clean_names: bool = True
) -> MappingTable:
    """
    Read a CCSR mapping file into a MappingTable.

    Args:
        file_path: ZIP archive, directory, CSV or Excel file
        family: 'diagnosis'/'dx' or 'procedure'/'pr'; inferred from the
            column names when None
        clean_names: Apply clean_column_names to the header

    Returns:
        MappingTable tagged with family, version (when the file name carries
        one) and source path

    Raises:
        FileNotFoundError: if the path does not exist or holds no data file
        ValueError: for unsupported formats or undecodable CSV files
    """
    path = Path(file_path)
    if not path.exists():
        raise FileNotFoundError(f"File or directory not found: {path}")

    fam = parse_family(family) if family is not None else None

    if path.is_dir():
        files = [str(p) for p in path.rglob("*") if p.is_file()]
        target = _pick(files, fam, f"directory {path}")
        df = _read_bytes(Path(target).read_bytes(), target)
        source = target
    elif zipfile.is_zipfile(path):
        with zipfile.ZipFile(path) as archive:
            members = [i.filename for i in archive.infolist() if not i.is_dir()]
            target = _pick(members, fam, f"ZIP archive {path.name}")
            data = archive.read(target)
        df = _read_bytes(data, target)
        source = f"{path}!{target}"
    else:
        df = _read_bytes(path.read_bytes(), path.name)
        source = str(path)

    if clean_names:
        df.columns = clean_column_names(df.columns)

    if fam is None:
        fam = infer_family(df)

    code_column = find_column([str(c) for c in df.columns], ROLE_PATTERNS["code"][fam])
    if code_column is not None:
        df[code_column] = normalize_codes(df[code_column])
    else:
        logger.warning(f"No ICD-10 code column recognized in {source}")

    version = find_version_token(path.name)
    if version is not None:
        version = version.with_family(fam)

    logger.info(f"Loaded {len(df)} {fam.value} mapping rows from {Path(source).name}")
    return MappingTable(df, family=fam, version=version, source=source)


def is_metadata_sheet(name: str) -> bool:
    return any(re.search(p, str(name), flags=re.IGNORECASE) for p in METADATA_SHEET_PATTERNS)


def select_data_sheet(
    sheet_names: Sequence[str],
    sheet: Optional[Union[str, int]] = None
) -> str:
    """
    Choose the data sheet of a trend-table workbook.

    Args:
        sheet_names: All sheet names in workbook order
        sheet: Sheet name or 1-based index; auto-selected when None

    Returns:
        Selected sheet name

    Raises:
        ValueError: if the requested sheet does not exist
    """
    names = [str(s) for s in sheet_names]
    if not names:
        raise ValueError("Workbook has no sheets")

    if sheet is not None:
        if isinstance(sheet, bool):
            raise ValueError("`sheet` must be a sheet name or a 1-based sheet index")
        if isinstance(sheet, int):
            if sheet < 1 or sheet > len(names):
                raise ValueError(
                    f"Sheet index {sheet} out of range. Available sheets: {len(names)}"
                )
            return names[sheet - 1]
        if str(sheet) not in names:
            raise ValueError(
                f"Sheet '{sheet}' not found. Available sheets: {', '.join(names)}"
            )
        return str(sheet)

    data_sheets = [s for s in names if not is_metadata_sheet(s)]
    if PREFERRED_SHEET in data_sheets:
        return PREFERRED_SHEET
    if data_sheets:
        return data_sheets[0]

    logger.warning(f"Could not identify data sheet. Using first sheet: {names[0]}")
    return names[0]


def _looks_like_metadata(df: pd.DataFrame) -> bool:
    """Few rows, mostly long text cells."""
    if len(df) >= 5 or df.shape[1] == 0 or len(df) == 0:
        return False
    shares = []
    for column in df.columns:
        values = df[column]
        if values.dtype == object:
            long_text = values.dropna().astype(str).str.len() > 50
            shares.append(long_text.sum() / len(values))
        else:
            shares.append(0.0)
    return sum(shares) / len(shares) > 0.5


def _check_workbook(file_path: Union[str, Path]) -> Path:
    path = Path(file_path)
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")
    if not path.name.lower().endswith(EXCEL_SUFFIXES):
        raise ValueError("File must be an Excel file (.xlsx or .xls)")
    return path


def list_trend_table_sheets(file_path: Union[str, Path]) -> List[str]:
    """Sheet names of a trend-table workbook, in workbook order."""
    with pd.ExcelFile(_check_workbook(file_path)) as workbook:
        return [str(s) for s in workbook.sheet_names]


def read_trend_table(
    file_path: Union[str, Path],
    sheet: Optional[Union[str, int]] = None,
    clean_names: bool = True
) -> pd.DataFrame:
    """
    Read one sheet of an HCUP Summary Trend Table workbook.

    Args:
        file_path: Path to an .xlsx/.xls workbook
        sheet: Sheet name or 1-based index; defaults to 'National' or the
            first non-metadata sheet
        clean_names: Apply clean_column_names to the header

    Returns:
        DataFrame of the selected sheet
    """
    path = _check_workbook(file_path)

    with pd.ExcelFile(path) as workbook:
        sheet_names = list(workbook.sheet_names)
        selected = select_data_sheet(sheet_names, sheet)
        logger.info(f"Reading sheet: {selected}")
        df = pd.read_excel(workbook, sheet_name=selected)

    if _looks_like_metadata(df):
        data_sheets = [s for s in sheet_names if not is_metadata_sheet(s)]
        logger.warning(
            f"The selected sheet appears to be a metadata/disclaimer sheet. "
            f"Available data sheets: {', '.join(data_sheets)}"
        )

    if clean_names:
        df.columns = clean_column_names(df.columns)
    return df
