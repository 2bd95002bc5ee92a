"""
Core CodeMapper for mapping ICD-10 codes to CCSR categories.

Supports:
- Diagnosis (DXCCSR) and procedure (PRCCSR) mapping tables
- Cross-classification (one code, many categories) in long or wide form
- Default-category narrowing for diagnosis tables
"""

import re
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, List, Optional, Union
import logging

import pandas as pd

from .columns import ColumnRoles, infer_columns, infer_family, paired_description
from .exceptions import (
    ColumnNotFound,
    InvalidMapping,
    InvalidOutputFormat,
    OutputColumnConflict,
)
from .reshape import to_wide
from .table import MappingTable, as_mapping_table
from .utils import is_flag_column, is_truthy, normalize_codes
from .versions import Family, parse_family

logger = logging.getLogger(__name__)

OUTPUT_FORMATS = ("long", "wide")

# Internal bookkeeping columns, removed before results are returned
_RECORD = "__hcup_record__"
_ENTRY = "__hcup_entry__"
_KEY = "__hcup_code__"


@dataclass
class MapOptions:
    """
    Options for map_codes.

    Args:
        output_format: 'long' (one row per code/category pair) or 'wide'
        family: 'diagnosis'/'dx' or 'procedure'/'pr'; inferred when None
        default_only: Keep only the default category (diagnosis only)
        keep_all_columns: Keep every input column, else only code/category/description
        category_name: Output name of the category column (and wide slot prefix)
        description_name: Output name of the description column
        keep_wide_description: Keep the first matched description in wide form
    """

    output_format: str = "long"
    family: Optional[Union[str, Family]] = None
    default_only: bool = False
    keep_all_columns: bool = True
    category_name: str = "category"
    description_name: str = "description"
    keep_wide_description: bool = False


def _build_options(options: Optional[MapOptions], overrides: Dict[str, Any]) -> MapOptions:
    opts = options or MapOptions()
    known = {f.name for f in fields(MapOptions)}
    unknown = set(overrides) - known
    if unknown:
        raise TypeError(f"Unknown mapping options: {sorted(unknown)}")
    if overrides:
        opts = replace(opts, **overrides)

    fmt = str(opts.output_format).strip().lower()
    if fmt not in OUTPUT_FORMATS:
        raise InvalidOutputFormat(
            f"`output_format` must be one of {list(OUTPUT_FORMATS)}, got '{opts.output_format}'"
        )
    if opts.category_name == opts.description_name:
        raise InvalidMapping("Category and description output names must differ")
    return replace(opts, output_format=fmt)


def _as_records(records: Any, code_column: str) -> pd.DataFrame:
    if isinstance(records, pd.DataFrame):
        return records.copy()
    if isinstance(records, (list, tuple)):
        if len(records) == 0:
            return pd.DataFrame({code_column: pd.Series(dtype=object)})
        return pd.DataFrame(list(records))
    raise TypeError(
        f"`records` must be a data frame or a list of dicts, got {type(records).__name__}"
    )


def _narrow_to_defaults(
    entries: pd.DataFrame,
    roles: ColumnRoles,
    default_description: Optional[str] = None
) -> pd.DataFrame:
    """
    Keep one default row per code.

    Flag-valued default columns keep rows whose flag is truthy. Value-valued
    default columns (HCUP layout) keep rows with a default and use that value
    as the category, with its paired description when there is one. If a
    code still has several rows, the first one wins.
    """
    defaults = entries[roles.default]
    if is_flag_column(defaults):
        narrowed = entries[defaults.map(is_truthy).astype(bool)].copy()
    else:
        narrowed = entries[defaults.notna()].copy()
        narrowed[roles.category] = narrowed[roles.default]
        if roles.has_description and default_description is not None:
            narrowed[roles.description] = narrowed[default_description]

    repeated = narrowed.duplicated(subset=[roles.code], keep="first")
    if repeated.any():
        n_codes = narrowed.loc[repeated, roles.code].nunique()
        logger.warning(
            f"{n_codes} codes have more than one default category; "
            f"keeping the first occurrence"
        )
    return narrowed[~repeated]


class CodeMapper:
    """
    Maps a table of ICD-10 codes to CCSR categories.

    Usage:
        # From a downloaded HCUP archive
        mapper = CodeMapper.from_file("DXCCSR-v2026-1.zip")

        # From an in-memory table
        mapper = CodeMapper.from_dataframe(mapping_df, family="diagnosis")

        # Long format: one row per code/category pair
        long_df = mapper.map(records, "icd10")

        # Wide format: category_1..category_k per record
        wide_df = mapper.map(records, "icd10", output_format="wide")
    """

    def __init__(
        self,
        mapping: Union[MappingTable, pd.DataFrame],
        family: Optional[Union[str, Family]] = None,
        name: Optional[str] = None
    ):
        """
        Initialize CodeMapper with a mapping table.

        Args:
            mapping: MappingTable or DataFrame of mapping rows
            family: Overrides the table's family tag
            name: Name of this mapper, used in logs
        """
        self.table = as_mapping_table(mapping, family)
        self.name = name or (
            f"CCSR-{self.table.family.short.upper()}" if self.table.family else "CCSR"
        )
        self._stats = {
            "total_entries": len(self.table),
            "records": 0,
            "matched": 0,
            "unmatched": 0,
        }
        logger.info(f"Initialized {self.name} mapper with {len(self.table)} entries")

    @classmethod
    def from_dataframe(
        cls,
        df: pd.DataFrame,
        family: Optional[Union[str, Family]] = None,
        name: Optional[str] = None
    ) -> "CodeMapper":
        return cls(MappingTable(df, family=parse_family(family) if family else None), name=name)

    @classmethod
    def from_file(
        cls,
        file_path: Union[str, Path],
        family: Optional[Union[str, Family]] = None,
        name: Optional[str] = None,
        clean_names: bool = True
    ) -> "CodeMapper":
        """
        Load mapper from a ZIP archive, directory, CSV or Excel file.

        Args:
            file_path: Path to the mapping file
            family: 'diagnosis' or 'procedure'; inferred when None
            name: Name of this mapper
            clean_names: Clean column names while reading

        Returns:
            CodeMapper instance
        """
        from .readers import read_mapping_file

        table = read_mapping_file(file_path, family=family, clean_names=clean_names)
        return cls(table, name=name or Path(file_path).stem)

    @property
    def family(self) -> Optional[Family]:
        return self.table.family

    def roles(self, family: Optional[Union[str, Family]] = None, want_default: bool = True) -> ColumnRoles:
        fam = family or self.table.family
        return infer_columns(self.table.frame, fam, want_default=want_default)

    def map(
        self,
        records: Union[pd.DataFrame, List[Dict[str, Any]]],
        code_column: str,
        options: Optional[MapOptions] = None,
        **kwargs
    ) -> pd.DataFrame:
        """
        Map codes in records to CCSR categories.

        Args:
            records: DataFrame (or list of dicts) holding the codes
            code_column: Name of the code column in records
            options: MapOptions; keyword arguments override its fields

        Returns:
            Long or wide DataFrame; attrs carry 'output_format' and 'family'

        Raises:
            ColumnNotFound: code_column missing from records, or a mandatory
                mapping column cannot be identified
            OutputColumnConflict: a records column is named like a result
                column (category, description or, in wide format, a
                numbered category slot)
            InvalidOutputFormat: output_format is not 'long' or 'wide'
        """
        opts = _build_options(options, kwargs)
        df = _as_records(records, code_column)

        if code_column not in df.columns:
            raise ColumnNotFound(
                "user_code",
                f"Column '{code_column}' not found in `records`",
                available=[str(c) for c in df.columns],
            )

        mapping = self.table.frame
        if opts.family is not None:
            fam = parse_family(opts.family)
        elif self.table.family is not None:
            fam = self.table.family
        else:
            fam = infer_family(mapping)

        roles = infer_columns(mapping, fam, want_default=opts.default_only)

        wide = (
            opts.output_format == "wide"
            and not opts.default_only
            and fam is Family.DIAGNOSIS
        )

        outputs = [opts.category_name]
        if roles.has_description:
            outputs.append(opts.description_name)
        collisions = [c for c in outputs if c in df.columns]
        if wide:
            slot = re.compile(rf"^{re.escape(opts.category_name)}_\d+$")
            collisions.extend(
                c for c in df.columns if isinstance(c, str) and slot.match(c)
            )
        if collisions:
            raise OutputColumnConflict(
                f"Columns {collisions} in `records` would be overwritten by the "
                f"mapping result; rename them or choose a different category_name"
            )

        entries = self._prepare_entries(mapping, roles, opts)

        df[code_column] = normalize_codes(df[code_column])
        df[_RECORD] = range(len(df))

        joined = df.merge(
            entries, how="left", left_on=code_column, right_on=_KEY, sort=False
        )
        joined = joined.sort_values(
            [_RECORD, _ENTRY], kind="mergesort", na_position="last"
        )

        n_unmatched = int(joined[_ENTRY].isna().sum())
        n_records = len(df)
        joined = joined.drop(columns=[_KEY, _ENTRY]).reset_index(drop=True)

        output_format = "long"
        if wide:
            joined = to_wide(
                joined,
                code_column,
                opts.category_name,
                description_column=opts.description_name if roles.has_description else None,
                keep_description=opts.keep_wide_description,
                prefix=opts.category_name,
                group_column=_RECORD,
            )
            output_format = "wide"
        elif opts.output_format == "wide":
            logger.info(
                "Wide format applies to diagnosis mappings without default_only; "
                "returning long format"
            )

        result = joined.drop(columns=[_RECORD])

        if not opts.keep_all_columns:
            result = result[self._projection(result, code_column, opts, output_format)]

        result = result.reset_index(drop=True)
        result.attrs["output_format"] = output_format
        result.attrs["family"] = fam.value

        if n_unmatched > 0:
            logger.warning(
                f"{n_unmatched} of {n_records} input codes had no CCSR match"
            )

        self._stats["records"] += n_records
        self._stats["matched"] += n_records - n_unmatched
        self._stats["unmatched"] += n_unmatched

        logger.info(
            f"Mapped {n_records} records to {len(result)} {output_format} rows "
            f"({fam.value})"
        )
        return result

    def _prepare_entries(
        self,
        mapping: pd.DataFrame,
        roles: ColumnRoles,
        opts: MapOptions
    ) -> pd.DataFrame:
        """Normalized mapping rows renamed to output names, in file order."""
        narrowing = (
            opts.default_only
            and roles.family is Family.DIAGNOSIS
            and roles.has_default
        )
        if opts.default_only and not narrowing:
            if roles.family is not Family.DIAGNOSIS:
                logger.warning(
                    "Default categories only exist for diagnosis mappings; "
                    "returning all categories"
                )
            else:
                logger.warning(
                    "No default category column found in mapping data; "
                    "returning all categories"
                )

        columns = [roles.code, roles.category]
        if roles.has_description:
            columns.append(roles.description)
        default_description = None
        if narrowing:
            columns.append(roles.default)
            default_description = paired_description(
                [str(c) for c in mapping.columns], roles.default
            )
            if default_description is not None:
                columns.append(default_description)

        entries = mapping[list(dict.fromkeys(columns))].copy()
        for column in entries.columns:
            entries[column] = normalize_codes(entries[column])
        entries = entries[entries[roles.code].notna()]

        if narrowing:
            entries = _narrow_to_defaults(entries, roles, default_description)

        prepared = pd.DataFrame({
            _KEY: entries[roles.code].values,
            opts.category_name: entries[roles.category].values,
        })
        if roles.has_description:
            prepared[opts.description_name] = entries[roles.description].values
        prepared[_ENTRY] = range(len(prepared))
        return prepared

    @staticmethod
    def _projection(
        result: pd.DataFrame,
        code_column: str,
        opts: MapOptions,
        output_format: str
    ) -> List[str]:
        if output_format == "wide":
            slot = re.compile(rf"^{re.escape(opts.category_name)}_\d+$")
            categories = [c for c in result.columns if slot.match(str(c))]
        else:
            categories = [opts.category_name]
        keep = [code_column] + categories
        if opts.description_name in result.columns:
            keep.append(opts.description_name)
        return keep

    def get_stats(self) -> Dict[str, Any]:
        """Get mapper usage statistics"""
        stats = self._stats.copy()
        if stats["records"] > 0:
            stats["match_rate"] = stats["matched"] / stats["records"]
        else:
            stats["match_rate"] = 0.0
        return stats

    def reset_stats(self):
        """Reset usage statistics"""
        self._stats["records"] = 0
        self._stats["matched"] = 0
        self._stats["unmatched"] = 0

    def __len__(self) -> int:
        return len(self.table)

    def __repr__(self) -> str:
        family = self.table.family.value if self.table.family else "unknown"
        version = self.table.version.canonical if self.table.version else "unknown"
        return (
            f"CodeMapper(name='{self.name}', family='{family}', "
            f"version='{version}', entries={len(self.table)})"
        )


def map_codes(
    records: Union[pd.DataFrame, List[Dict[str, Any]]],
    code_column: str,
    mapping: Union[MappingTable, pd.DataFrame],
    options: Optional[MapOptions] = None,
    **kwargs
) -> pd.DataFrame:
    """
    Map ICD-10 codes to CCSR categories.

    Example:
        >>> records = pd.DataFrame({"patient_id": [1, 2], "icd10": ["E11.9", "I10"]})
        >>> result = map_codes(records, "icd10", mapping, output_format="wide")

    Args:
        records: DataFrame (or list of dicts) holding the codes
        code_column: Name of the code column in records
        mapping: MappingTable or DataFrame
        options: MapOptions; keyword arguments override its fields

    Returns:
        Mapped DataFrame (see CodeMapper.map)
    """
    if not isinstance(mapping, (MappingTable, pd.DataFrame)):
        raise InvalidMapping(
            f"`mapping` must be a data frame or MappingTable, got {type(mapping).__name__}"
        )
    return CodeMapper(mapping).map(records, code_column, options, **kwargs)
