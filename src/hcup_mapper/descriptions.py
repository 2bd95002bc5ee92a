"""
CCSR category descriptions.
"""

from typing import Iterable, List, Optional, Tuple, Union
import logging

import pandas as pd

from .columns import ROLE_PATTERNS, find_column, infer_family
from .table import MappingTable, as_mapping_table
from .utils import normalize_codes
from .versions import Family

logger = logging.getLogger(__name__)


def _description_pairs(
    frame: pd.DataFrame,
    family: Family,
    category: Optional[str],
    description: Optional[str]
) -> List[Tuple[str, str]]:
    """
    (category column, description column) pairs to harvest.

    HCUP files carry one description column per category column, named
    '<category>_description' once names are cleaned (ccsr_category_1
    and ccsr_category_1_description); those pairs come first,
    then the inferred pair.
    """
    columns = [str(c) for c in frame.columns]
    pairs = [
        (c, f"{c}_description")
        for c in columns
        if f"{c}_description" in columns
        and any(p.matches(c) for p in ROLE_PATTERNS["category"][family])
    ]
    paired = {cat for cat, _ in pairs}
    if category is not None and description is not None and category not in paired:
        pairs.append((category, description))
    return pairs


def get_category_descriptions(
    category_codes: Union[str, Iterable[str]],
    mapping: Union[MappingTable, pd.DataFrame],
    family: Optional[Union[str, Family]] = None
) -> pd.DataFrame:
    """
    Look up descriptions for CCSR category codes.

    Args:
        category_codes: One code or an iterable of codes (e.g. 'END002')
        mapping: Mapping table holding category and description columns
        family: 'diagnosis' or 'procedure'; taken from the table or inferred

    Returns:
        DataFrame with columns 'category_code' and 'description', one row
        per input code in input order; unknown codes get a null description

    Raises:
        ValueError: if no codes are given or the table has no description column
    """
    if isinstance(category_codes, str):
        category_codes = [category_codes]
    codes = list(category_codes)
    if not codes:
        raise ValueError("`category_codes` must be a non-empty list of codes")

    table = as_mapping_table(mapping, family)
    frame = table.frame
    fam = table.family or infer_family(frame)
    columns = [str(c) for c in frame.columns]
    category = find_column(columns, ROLE_PATTERNS["category"][fam])
    description = find_column(
        columns, ROLE_PATTERNS["description"][fam], claimed={category}
    )

    pairs = _description_pairs(frame, fam, category, description)
    if not pairs:
        raise ValueError("Could not find description column in mapping data")

    lookup = pd.concat(
        [
            pd.DataFrame({
                "category_code": normalize_codes(frame[cat]).values,
                "description": normalize_codes(frame[desc]).values,
            })
            for cat, desc in pairs
        ],
        ignore_index=True,
    )
    lookup = lookup[lookup["category_code"].notna()]
    lookup = lookup.sort_values(
        "description", key=lambda s: s.isna(), kind="mergesort"
    ).drop_duplicates("category_code", keep="first")

    result = pd.DataFrame({"category_code": normalize_codes(pd.Series(codes, dtype=object))})
    result = result.merge(lookup, how="left", on="category_code", sort=False)

    unmatched = result.loc[result["description"].isna(), "category_code"]
    if len(unmatched) > 0:
        logger.warning(
            f"No description found for {len(unmatched)} code(s): "
            f"{', '.join(str(c) for c in unmatched)}"
        )
    return result
