"""
Column-role inference for CCSR mapping tables.

Mapping tables arrive with whatever headers HCUP (or the user) gave them,
so the code, category, default and description columns are located by
ordered pattern tables. Each role has an ordered list of ColumnPattern
matchers per family; the first pattern that matches any column wins, and
within a pattern the first column in table order wins.
"""

import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Set, Union
import logging

import pandas as pd

from .exceptions import ColumnNotFound
from .versions import Family, parse_family

logger = logging.getLogger(__name__)

# Number of non-null codes inspected when guessing the family from values
FAMILY_SAMPLE_SIZE = 100

_DESCRIPTIVE = r'desc|label|name'


@dataclass(frozen=True)
class ColumnPattern:
    """A case-insensitive regex over column names with an optional exclusion."""

    pattern: str
    exclude: Optional[str] = None

    def matches(self, column: str) -> bool:
        name = str(column).lower()
        if not re.search(self.pattern, name):
            return False
        if self.exclude and re.search(self.exclude, name):
            return False
        return True


def _patterns(*patterns: str, exclude: Optional[str] = None) -> List[ColumnPattern]:
    return [ColumnPattern(p, exclude) for p in patterns]


_CATEGORY_COMMON = _patterns(
    r'ccsr.*category', r'ccsr.*code', r'^ccsr$', r'category',
    exclude=rf'default|{_DESCRIPTIVE}'
)

_DESCRIPTION_COMMON = _patterns(
    r'ccsr.*description', r'description', r'label', r'name', r'desc'
)

# role -> family -> ordered matchers
ROLE_PATTERNS: Dict[str, Dict[Family, List[ColumnPattern]]] = {
    "code": {
        Family.DIAGNOSIS: _patterns(
            r'icd.*10.*cm', r'icd.*10', r'diagnosis.*code', r'^code$', r'^dx$',
            exclude=_DESCRIPTIVE
        ),
        Family.PROCEDURE: _patterns(
            r'icd.*10.*pcs', r'icd.*10', r'procedure.*code', r'^code$', r'^pr$',
            exclude=_DESCRIPTIVE
        ),
    },
    "category": {
        Family.DIAGNOSIS: _CATEGORY_COMMON,
        Family.PROCEDURE: _patterns(
            r'^prccsr$', r'prccsr', exclude=_DESCRIPTIVE
        ) + _CATEGORY_COMMON,
    },
    "default": {
        Family.DIAGNOSIS: _patterns(
            r'default.*ccsr', r'default.*category', r'default',
            exclude=_DESCRIPTIVE
        ),
        Family.PROCEDURE: [],
    },
    "description": {
        Family.DIAGNOSIS: _DESCRIPTION_COMMON,
        Family.PROCEDURE: _DESCRIPTION_COMMON,
    },
}

FAMILY_INDICATORS: Dict[Family, List[str]] = {
    Family.DIAGNOSIS: [r'dxccsr', r'diagnosis', r'icd.*10.*cm', r'dx.*ccsr'],
    Family.PROCEDURE: [r'prccsr', r'procedure', r'icd.*10.*pcs', r'pr.*ccsr'],
}

_CODE_GUESS = r'icd|code|dx|pr'


@dataclass(frozen=True)
class ColumnRoles:
    """Concrete column names for each logical role of one mapping table."""

    family: Family
    code: str
    category: str
    default: Optional[str] = None
    description: Optional[str] = None

    @property
    def has_default(self) -> bool:
        return self.default is not None

    @property
    def has_description(self) -> bool:
        return self.description is not None


def _columns_of(table: Union[pd.DataFrame, Sequence[str]]) -> List[str]:
    if isinstance(table, pd.DataFrame):
        return [str(c) for c in table.columns]
    return [str(c) for c in table]


def find_column(
    columns: Sequence[str],
    patterns: Iterable[ColumnPattern],
    claimed: Optional[Set[str]] = None
) -> Optional[str]:
    """
    First column matched by the first successful pattern.

    Args:
        columns: Column names in table order
        patterns: Ordered matchers
        claimed: Columns already assigned to another role (skipped)

    Returns:
        Column name or None
    """
    claimed = claimed or set()
    for pattern in patterns:
        for column in columns:
            if column in claimed:
                continue
            if pattern.matches(column):
                return column
    return None


def paired_description(columns: Sequence[str], column: str) -> Optional[str]:
    """
    Description column that belongs to one category column, if present.

    Cleaned HCUP headers pair 'ccsr_category_1' with
    'ccsr_category_1_description' and 'default_ccsr_category_ip' with
    'default_ccsr_category_description_ip'.
    """
    candidates = [f"{column}_description"]
    stem, sep, suffix = column.rpartition("_")
    if sep and stem:
        candidates.append(f"{stem}_description_{suffix}")
    for candidate in candidates:
        if candidate in columns:
            return candidate
    return None


def infer_family(table: pd.DataFrame) -> Family:
    """
    Guess whether a mapping table holds diagnosis or procedure codes.

    Column names are checked for family indicators first. Failing that, up to
    100 non-null values of the best-guess code column are inspected: a
    period means diagnosis (dotted ICD-10-CM codes), a leading digit means
    procedure. Otherwise diagnosis is assumed and a warning is logged.
    """
    columns = _columns_of(table)
    lowered = [c.lower() for c in columns]

    for family in (Family.DIAGNOSIS, Family.PROCEDURE):
        for pattern in FAMILY_INDICATORS[family]:
            if any(re.search(pattern, c) for c in lowered):
                logger.debug(f"Inferred {family.value} family from column names")
                return family

    code_col = next(
        (c for c in columns if re.search(_CODE_GUESS, c.lower())),
        None
    )
    if code_col is not None and isinstance(table, pd.DataFrame):
        sample = table[code_col].dropna().astype(str).head(FAMILY_SAMPLE_SIZE)
        if len(sample) > 0:
            if sample.str.contains(".", regex=False).any():
                return Family.DIAGNOSIS
            if sample.str.match(r'^\s*[0-9]').any():
                return Family.PROCEDURE

    logger.warning(
        "Could not infer CCSR type from mapping data, defaulting to 'diagnosis'"
    )
    return Family.DIAGNOSIS


def infer_columns(
    table: Union[pd.DataFrame, Sequence[str]],
    family: Optional[Union[str, Family]] = None,
    want_default: bool = True
) -> ColumnRoles:
    """
    Resolve the code, category, default and description columns.

    Args:
        table: Mapping table (or just its column names when family is given)
        family: 'diagnosis'/'dx' or 'procedure'/'pr'; inferred when None
        want_default: Look for a default-category column (diagnosis only)

    Returns:
        ColumnRoles

    Raises:
        ColumnNotFound: if the code or category column cannot be identified
    """
    if family is None:
        if not isinstance(table, pd.DataFrame):
            raise ValueError("Family must be given when only column names are passed")
        fam = infer_family(table)
    else:
        fam = parse_family(family)

    columns = _columns_of(table)
    claimed: Set[str] = set()

    code = find_column(columns, ROLE_PATTERNS["code"][fam], claimed)
    if code is None:
        raise ColumnNotFound(
            "code",
            f"Could not identify ICD-10 code column in mapping data. "
            f"Available columns: {columns}",
            available=columns,
        )
    claimed.add(code)

    category = find_column(columns, ROLE_PATTERNS["category"][fam], claimed)
    if category is None:
        raise ColumnNotFound(
            "category",
            f"Could not identify CCSR category column in mapping data. "
            f"Available columns: {columns}",
            available=columns,
        )
    claimed.add(category)

    default = None
    if want_default:
        default = find_column(columns, ROLE_PATTERNS["default"][fam], claimed)
        if default is not None:
            claimed.add(default)

    description = paired_description(columns, category)
    if description is None:
        description = find_column(columns, ROLE_PATTERNS["description"][fam], claimed)

    roles = ColumnRoles(
        family=fam,
        code=code,
        category=category,
        default=default,
        description=description,
    )
    logger.debug(f"Column roles: {roles}")
    return roles
