"""
Version tags, families and the CCSR artifact naming grammar.

CCSR releases are identified as year + minor, written either with a dot
("v2026.1", the canonical form) or a hyphen ("v2026-1", used in file names).
Artifact file names look like:

- DXCCSR-v2026-1.zip   (diagnosis, 2026 and later: hyphen after prefix)
- DXCCSR_v2025-1.zip   (diagnosis, 2025 and earlier: underscore)
- PRCCSR_v2026-1.zip   (procedure, always underscore)
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, List, Optional, Union

from .exceptions import InvalidFamily, InvalidVersionFormat

# Strict form accepted from callers: v2026.1 or v2026-1
_VERSION_RE = re.compile(r'^v(?P<year>\d{4})[-.](?P<minor>\d+)$')

# Loose form for scanning file names and page text
VERSION_TOKEN_RE = re.compile(r'v(\d{4})[-.](\d+)', flags=re.IGNORECASE)

LATEST = "latest"

# First year in which DXCCSR artifact names use a hyphen after the prefix
DIAGNOSIS_HYPHEN_ERA = 2026


class Family(str, Enum):
    """The two parallel CCSR classification schemes."""

    DIAGNOSIS = "diagnosis"
    PROCEDURE = "procedure"

    @property
    def prefix(self) -> str:
        """Artifact file prefix (DXCCSR / PRCCSR)."""
        return "DXCCSR" if self is Family.DIAGNOSIS else "PRCCSR"

    @property
    def short(self) -> str:
        return "dx" if self is Family.DIAGNOSIS else "pr"


FAMILY_ALIASES = {
    "diagnosis": Family.DIAGNOSIS,
    "dx": Family.DIAGNOSIS,
    "procedure": Family.PROCEDURE,
    "pr": Family.PROCEDURE,
}


def parse_family(value: Union[str, Family]) -> Family:
    """
    Normalize a family name.

    Examples:
        >>> parse_family("DX")
        <Family.DIAGNOSIS: 'diagnosis'>

    Raises:
        InvalidFamily: if value is not diagnosis/dx or procedure/pr
    """
    if isinstance(value, Family):
        return value
    key = str(value).strip().lower()
    if key not in FAMILY_ALIASES:
        raise InvalidFamily(
            f"`type` must be one of: 'diagnosis'/'dx' or 'procedure'/'pr', got '{value}'"
        )
    return FAMILY_ALIASES[key]


@dataclass(frozen=True, order=True)
class VersionTag:
    """
    A CCSR release identifier.

    Ordering compares (year, minor) as integers, so v2025.10 > v2025.2 and
    any 2026 release outranks every 2025 release. Family is carried along
    but does not take part in comparisons.
    """

    year: int
    minor: int
    family: Optional[Family] = field(default=None, compare=False)

    def __str__(self) -> str:
        return self.canonical

    @property
    def canonical(self) -> str:
        return f"v{self.year}.{self.minor}"

    @property
    def url_form(self) -> str:
        return f"v{self.year}-{self.minor}"

    @property
    def compact(self) -> str:
        """Form used in change log file names (v2026.1 -> v20261)."""
        return f"v{self.year}{self.minor}"

    def with_family(self, family: Union[str, Family, None]) -> "VersionTag":
        fam = parse_family(family) if family is not None else None
        return VersionTag(self.year, self.minor, fam)


def parse_version(
    value: Union[str, VersionTag],
    family: Union[str, Family, None] = None
) -> VersionTag:
    """
    Parse an explicit version string.

    Args:
        value: 'vYYYY.N' or 'vYYYY-N'
        family: Optional family to attach to the tag

    Returns:
        VersionTag

    Raises:
        InvalidVersionFormat: if the string does not match either form
    """
    if isinstance(value, VersionTag):
        return value.with_family(family) if family is not None else value

    match = _VERSION_RE.match(str(value).strip())
    if not match:
        raise InvalidVersionFormat(
            "`version` must be in format 'vYYYY.N' or 'vYYYY-N' "
            f"(e.g., 'v2026.1' or 'v2026-1'), got '{value}'"
        )
    fam = parse_family(family) if family is not None else None
    return VersionTag(int(match.group("year")), int(match.group("minor")), fam)


def is_version_string(value: str) -> bool:
    return bool(_VERSION_RE.match(str(value).strip()))


def find_version_token(text: str) -> Optional[VersionTag]:
    """Return the first version token embedded in text (e.g. a file name)."""
    match = VERSION_TOKEN_RE.search(text or "")
    if not match:
        return None
    return VersionTag(int(match.group(1)), int(match.group(2)))


def latest_of(versions: Iterable[VersionTag]) -> Optional[VersionTag]:
    """Newest tag by (year, minor), or None for an empty input."""
    versions = list(versions)
    if not versions:
        return None
    return max(versions)


def sort_newest_first(versions: Iterable[VersionTag]) -> List[VersionTag]:
    """Deduplicate and sort tags newest first."""
    unique = {(v.year, v.minor): v for v in versions}
    return sorted(unique.values(), reverse=True)


def uses_hyphen_separator(family: Union[str, Family], year: int) -> bool:
    """Era rule: DXCCSR switched from '_' to '-' after the prefix in 2026."""
    return parse_family(family) is Family.DIAGNOSIS and year >= DIAGNOSIS_HYPHEN_ERA


def artifact_name(
    family: Union[str, Family],
    tag: VersionTag,
    separator: Optional[str] = None
) -> str:
    """
    Build the remote artifact file name for a release.

    Year and minor are always joined by a hyphen; the separator between the
    prefix and the version follows the family's era rule unless given.

    Examples:
        >>> artifact_name("diagnosis", VersionTag(2026, 1))
        'DXCCSR-v2026-1.zip'
        >>> artifact_name("diagnosis", VersionTag(2025, 1))
        'DXCCSR_v2025-1.zip'
        >>> artifact_name("procedure", VersionTag(2026, 1))
        'PRCCSR_v2026-1.zip'
    """
    fam = parse_family(family)
    if separator is None:
        separator = "-" if uses_hyphen_separator(fam, tag.year) else "_"
    return f"{fam.prefix}{separator}{tag.url_form}.zip"


def alternate_artifact_name(family: Union[str, Family], tag: VersionTag) -> Optional[str]:
    """
    The other-separator spelling for diagnosis artifacts, None for procedures.

    Used as a retry when the era rule guess is wrong for a given release.
    """
    fam = parse_family(family)
    if fam is not Family.DIAGNOSIS:
        return None
    primary = "-" if uses_hyphen_separator(fam, tag.year) else "_"
    other = "_" if primary == "-" else "-"
    return artifact_name(fam, tag, separator=other)
