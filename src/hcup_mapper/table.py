"""
MappingTable: a CCSR mapping DataFrame tagged with its family and version.
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional, Union

import pandas as pd

from .exceptions import InvalidMapping
from .versions import Family, VersionTag, parse_family


@dataclass(frozen=True, eq=False)
class MappingTable:
    """
    Ordered mapping entries plus where they came from.

    Args:
        frame: Mapping rows in file order
        family: diagnosis/procedure if known
        version: Release the rows were read from, if known
        source: File or URL the rows were read from
    """

    frame: pd.DataFrame
    family: Optional[Family] = None
    version: Optional[VersionTag] = None
    source: Optional[str] = None

    def __post_init__(self):
        if not isinstance(self.frame, pd.DataFrame):
            raise InvalidMapping("`mapping` must be a data frame")
        if self.family is not None and not isinstance(self.family, Family):
            object.__setattr__(self, "family", parse_family(self.family))

    def __len__(self) -> int:
        return len(self.frame)

    @property
    def columns(self):
        return self.frame.columns

    @classmethod
    def from_records(
        cls,
        rows: Iterable[Dict[str, Any]],
        family: Optional[Union[str, Family]] = None
    ) -> "MappingTable":
        fam = parse_family(family) if family is not None else None
        return cls(pd.DataFrame(list(rows)), family=fam)


def as_mapping_table(
    mapping: Any,
    family: Optional[Union[str, Family]] = None
) -> MappingTable:
    """
    Coerce a DataFrame or MappingTable into a MappingTable.

    An explicit family overrides the table's own tag.

    Raises:
        InvalidMapping: for anything else
    """
    fam = parse_family(family) if family is not None else None
    if isinstance(mapping, MappingTable):
        if fam is None or fam is mapping.family:
            return mapping
        return MappingTable(mapping.frame, fam, mapping.version, mapping.source)
    if isinstance(mapping, pd.DataFrame):
        return MappingTable(mapping, family=fam)
    raise InvalidMapping(
        f"`mapping` must be a data frame or MappingTable, got {type(mapping).__name__}"
    )
