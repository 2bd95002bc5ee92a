"""
Discovery of previously downloaded CCSR archives.

Downloaded archives keep their HCUP file names (e.g. DXCCSR-v2026-1.zip), so
family and version are recovered from the name alone. Selection never
prompts: an ambiguous choice is returned as MultipleCandidates for the
caller to resolve.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple, Union
import logging

from .versions import (
    LATEST,
    Family,
    VersionTag,
    find_version_token,
    parse_family,
    parse_version,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CachedArtifact:
    """A cached archive and what its file name says about it."""

    path: Path
    family: Optional[Family]
    version: Optional[VersionTag]
    name: str

    @property
    def label(self) -> str:
        family = self.family.value if self.family else "unknown"
        version = self.version.canonical if self.version else "unknown"
        return f"{self.name} ({family}, {version})"


@dataclass(frozen=True)
class MultipleCandidates:
    """Returned instead of a path when more than one artifact fits."""

    candidates: Tuple[CachedArtifact, ...]

    def __len__(self) -> int:
        return len(self.candidates)

    @property
    def paths(self) -> List[Path]:
        return [c.path for c in self.candidates]


def classify_artifact(path: Union[str, Path]) -> CachedArtifact:
    path = Path(path)
    upper = path.name.upper()
    if "DXCCSR" in upper:
        family = Family.DIAGNOSIS
    elif "PRCCSR" in upper:
        family = Family.PROCEDURE
    else:
        family = None
    version = find_version_token(path.name)
    if version is not None and family is not None:
        version = version.with_family(family)
    return CachedArtifact(path=path, family=family, version=version, name=path.name)


def list_cached_artifacts(
    directory: Union[str, Path],
    family: Optional[Union[str, Family]] = None
) -> List[CachedArtifact]:
    """
    List cached *.zip artifacts in a directory, sorted by file name.

    Args:
        directory: Cache directory (missing directories yield no artifacts)
        family: Keep only artifacts of this family

    Returns:
        List of CachedArtifact
    """
    directory = Path(directory)
    if not directory.is_dir():
        return []

    fam = parse_family(family) if family is not None else None
    artifacts = []
    for path in sorted(directory.iterdir()):
        if not path.is_file() or path.suffix.lower() != ".zip":
            continue
        artifact = classify_artifact(path)
        if fam is not None and artifact.family is not fam:
            continue
        artifacts.append(artifact)

    logger.debug(f"Found {len(artifacts)} cached artifacts in {directory}")
    return artifacts


def select_cached_artifact(
    artifacts: List[CachedArtifact],
    version: Union[str, VersionTag] = LATEST
) -> Union[Path, MultipleCandidates, None]:
    """
    Choose a cached artifact without prompting.

    For 'latest' the artifacts carrying the newest version are kept; for an
    explicit version the artifacts carrying that version.

    Returns:
        The path when exactly one artifact fits, MultipleCandidates when
        several do, None when none does
    """
    if not artifacts:
        return None

    if isinstance(version, str) and version.strip().lower() == LATEST:
        versioned = [a for a in artifacts if a.version is not None]
        if not versioned:
            matching = list(artifacts)
        else:
            newest = max(a.version for a in versioned)
            matching = [a for a in versioned if a.version == newest]
    else:
        wanted = parse_version(version)
        matching = [a for a in artifacts if a.version == wanted]

    if not matching:
        return None
    if len(matching) == 1:
        return matching[0].path
    return MultipleCandidates(tuple(matching))
