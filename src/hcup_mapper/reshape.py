"""
Long-to-wide reshaping of mapped codes.

A joined (long) table has one row per (record, category). to_wide collapses
it to one row per record with numbered category slots:

    code   category          code   category_1  category_2
    E11.9  END002     ->     E11.9  END002      END003
    E11.9  END003            I10    CIR007      NaN
    I10    CIR007
"""

from typing import List, Optional
import logging

import numpy as np
import pandas as pd

from .exceptions import ColumnNotFound, OutputColumnConflict

logger = logging.getLogger(__name__)

_MISSING = object()


def _hashable(key: tuple):
    # Rows holding lists or dicts are keyed by their repr
    try:
        hash(key)
    except TypeError:
        return repr(key)
    return key


def _group_ids(frame: pd.DataFrame, keys: List[str]) -> np.ndarray:
    """Group number per row, numbered in order of first appearance; nulls group together."""
    key_frame = frame[keys].astype(object)
    key_frame = key_frame.where(key_frame.notna(), _MISSING)
    ids = {}
    return np.array([
        ids.setdefault(_hashable(key), len(ids))
        for key in key_frame.itertuples(index=False, name=None)
    ], dtype=np.int64)


def slot_columns(prefix: str, count: int) -> List[str]:
    return [f"{prefix}_{i}" for i in range(1, count + 1)]


def to_wide(
    joined: pd.DataFrame,
    code_column: str,
    category_column: str,
    description_column: Optional[str] = None,
    keep_description: bool = False,
    prefix: Optional[str] = None,
    group_column: Optional[str] = None
) -> pd.DataFrame:
    """
    Pivot a long mapping result into numbered category slots.

    Rows are grouped by every column except the category (and description)
    column, or by group_column alone when given. Within a group, non-null
    categories get ordinals 1..k in row order; the output has slots
    {prefix}_1 .. {prefix}_kmax where kmax is the largest k observed (at
    least 1). Groups with fewer categories are padded with nulls.

    Descriptions vary per category and are dropped, unless keep_description
    is set, in which case the group's first description is kept.

    Args:
        joined: Long-format table
        code_column: User code column (must be present)
        category_column: Column being pivoted
        description_column: Optional per-category description column
        keep_description: Keep one description per group
        prefix: Slot name prefix, defaults to category_column
        group_column: Column identifying the source record of each row

    Returns:
        Wide-format DataFrame, groups in order of first appearance

    Raises:
        ColumnNotFound: code or category column missing
        OutputColumnConflict: a carried column is named like a slot
    """
    if code_column not in joined.columns:
        raise ColumnNotFound(
            "user_code", f"Column '{code_column}' not found in joined data"
        )
    if category_column not in joined.columns:
        raise ColumnNotFound(
            "category", f"Column '{category_column}' not found in joined data"
        )

    prefix = prefix or category_column
    has_description = (
        description_column is not None and description_column in joined.columns
    )
    pivoted = [category_column] + ([description_column] if has_description else [])
    keys = [c for c in joined.columns if c not in pivoted]
    carried = keys + ([description_column] if has_description and keep_description else [])
    if group_column is not None and group_column in keys:
        keys = [group_column]

    work = joined.reset_index(drop=True)
    if work.empty:
        empty = work[carried].copy()
        for name in slot_columns(prefix, 1):
            empty[name] = pd.Series(dtype=object)
        return empty

    # Bookkeeping lives outside the user's columns
    groups = _group_ids(work, keys)
    has_category = work[category_column].notna().to_numpy()
    matched = pd.DataFrame({
        "group": groups[has_category],
        "category": work[category_column].to_numpy()[has_category],
    })
    matched["slot"] = matched.groupby("group", sort=False).cumcount() + 1
    k_max = max(1, int(matched["slot"].max())) if len(matched) else 1

    names = slot_columns(prefix, k_max)
    clashes = [name for name in names if name in carried]
    if clashes:
        raise OutputColumnConflict(
            f"Columns {clashes} would be overwritten by category slots"
        )

    first = ~pd.Series(groups).duplicated().to_numpy()
    base = work.loc[first, carried].copy()
    base.index = groups[first]

    if len(matched):
        pivot = matched.pivot(index="group", columns="slot", values="category")
    else:
        pivot = pd.DataFrame(index=base.index)

    for slot, name in enumerate(names, start=1):
        if slot in pivot.columns:
            base[name] = pivot[slot].reindex(base.index).astype(object)
        else:
            base[name] = np.nan

    logger.debug(f"Reshaped {len(work)} rows into {len(base)} rows with {k_max} slots")
    return base.reset_index(drop=True)
