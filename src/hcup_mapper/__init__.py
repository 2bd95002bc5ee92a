"""
HCUP Mapper

Version resolution and code mapping for the AHRQ HCUP Clinical
Classifications Software Refined (CCSR):
- DXCCSR (ICD-10-CM diagnosis codes)
- PRCCSR (ICD-10-PCS procedure codes)

Data source: HCUP (Healthcare Cost and Utilization Project)
https://hcup-us.ahrq.gov/toolssoftware/ccsr/ccs_refined.jsp
"""

from .columns import ColumnRoles, infer_columns, infer_family
from .descriptions import get_category_descriptions
from .downloader import download_mapping
from .exceptions import (
    CatalogUnreachable,
    ColumnNotFound,
    HCUPMapperError,
    InvalidFamily,
    InvalidMapping,
    InvalidOutputFormat,
    InvalidVersionFormat,
    NoVersionFound,
    OutputColumnConflict,
    ResolutionCancelled,
    ChangeLogNotFound,
)
from .mapper import CodeMapper, MapOptions, map_codes
from .changelog import download_changelog, read_changelog, resolve_changelog_url
from .readers import list_trend_table_sheets, read_mapping_file, read_trend_table
from .reshape import to_wide
from .resolver import VersionResolver, resolve_version
from .table import MappingTable
from .trend_tables import download_trend_table, list_trend_tables
from .versions import Family, VersionTag, parse_version

__version__ = "0.1.0"

__all__ = [
    "CodeMapper",
    "MapOptions",
    "MappingTable",
    "map_codes",
    "to_wide",
    "infer_columns",
    "infer_family",
    "ColumnRoles",
    "VersionResolver",
    "resolve_version",
    "download_mapping",
    "read_mapping_file",
    "read_trend_table",
    "list_trend_table_sheets",
    "list_trend_tables",
    "download_trend_table",
    "resolve_changelog_url",
    "download_changelog",
    "read_changelog",
    "get_category_descriptions",
    "Family",
    "VersionTag",
    "parse_version",
    "HCUPMapperError",
    "InvalidFamily",
    "InvalidVersionFormat",
    "CatalogUnreachable",
    "NoVersionFound",
    "ResolutionCancelled",
    "ColumnNotFound",
    "InvalidMapping",
    "InvalidOutputFormat",
    "OutputColumnConflict",
    "ChangeLogNotFound",
]
