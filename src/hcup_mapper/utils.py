"""
Utility functions for code handling.
"""

import re
from typing import Any

import numpy as np
import pandas as pd

_SURROUNDING_QUOTES = re.compile(r'^[\'"]+|[\'"]+$')

_TRUTHY = {"true", "t", "yes", "y", "1", "1.0"}
_FALSY = {"false", "f", "no", "n", "0", "0.0"}


def normalize_code(value: Any) -> Any:
    """
    Normalize a single ICD code without ever treating it as a number.

    Surrounding whitespace and quote characters are removed; internal
    characters and leading zeros are kept exactly. Nulls and codes that are
    empty after stripping become NaN.

    Examples:
        >>> normalize_code(' "001.0" ')
        '001.0'
        >>> normalize_code("E11.9 ")
        'E11.9'
    """
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return np.nan
    code = str(value).strip()
    code = _SURROUNDING_QUOTES.sub("", code).strip()
    return code if code else np.nan


def normalize_codes(codes: pd.Series) -> pd.Series:
    """Vectorized normalize_code; returns an object Series with the same index."""
    return codes.map(normalize_code).astype(object)


def is_flag_column(values: pd.Series) -> bool:
    """
    True when every non-null value reads as a boolean flag.

    Default columns come in two shapes: flags (True/False, Y/N, 1/0) marking
    the default row, or the default category value itself (the HCUP layout).
    """
    non_null = values.dropna()
    if non_null.empty:
        return False
    if pd.api.types.is_bool_dtype(non_null):
        return True
    tokens = set(non_null.map(lambda v: str(v).strip().lower()))
    return tokens <= (_TRUTHY | _FALSY)


def is_truthy(value: Any) -> bool:
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return False
    if isinstance(value, (bool, np.bool_)):
        return bool(value)
    return str(value).strip().lower() in _TRUTHY
