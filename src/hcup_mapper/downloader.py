"""
Download orchestration for CCSR mapping archives.

download_mapping ties the pieces together: resolve the requested version,
build the artifact URL from the naming grammar, reuse a cached archive when
one matches, otherwise fetch it (retrying the other separator for diagnosis
archives) and read it into a MappingTable.
"""

import tempfile
from pathlib import Path
from typing import Optional, Tuple, Union
import logging

from .artifacts import MultipleCandidates, list_cached_artifacts, select_cached_artifact
from .exceptions import CatalogUnreachable
from .probe import CatalogProbe
from .readers import read_mapping_file
from .resolver import VersionResolver, get_default_resolver
from .table import MappingTable
from .versions import (
    LATEST,
    Family,
    VersionTag,
    alternate_artifact_name,
    artifact_name,
    parse_family,
)

logger = logging.getLogger(__name__)


def artifact_url(base_url: str, name: str) -> str:
    return base_url.rstrip("/") + "/" + name


def fetch_artifact(
    probe: CatalogProbe,
    base_url: str,
    family: Family,
    tag: VersionTag,
    timeout: Optional[float] = None
) -> Tuple[str, bytes]:
    """
    Fetch an artifact by its era name, then by the alternate spelling.

    Returns:
        (file name actually fetched, archive bytes)

    Raises:
        CatalogUnreachable: if every spelling fails
    """
    name = artifact_name(family, tag)
    url = artifact_url(base_url, name)
    try:
        return name, probe.fetch_bytes(url, timeout=timeout)
    except CatalogUnreachable as first_error:
        alternate = alternate_artifact_name(family, tag)
        if alternate is None:
            raise
        alt_url = artifact_url(base_url, alternate)
        logger.info(f"Trying alternative URL pattern: {alt_url}")
        try:
            return alternate, probe.fetch_bytes(alt_url, timeout=timeout)
        except CatalogUnreachable as second_error:
            raise CatalogUnreachable(
                f"Failed to download file from both URL patterns. "
                f"Original error: {first_error}. Alternative error: {second_error}"
            ) from second_error


def find_cached_artifact(
    cache_dir: Union[str, Path],
    family: Family,
    tag: VersionTag
) -> Optional[Path]:
    """Cached archive for exactly this family and version, if any."""
    selected = select_cached_artifact(list_cached_artifacts(cache_dir, family), tag)
    if isinstance(selected, MultipleCandidates):
        logger.info(
            f"{len(selected)} cached files match {tag}; using {selected.paths[0].name}"
        )
        return selected.paths[0]
    return selected


def download_mapping(
    family: Union[str, Family] = "diagnosis",
    version: Union[str, VersionTag] = LATEST,
    resolver: Optional[VersionResolver] = None,
    probe: Optional[CatalogProbe] = None,
    cache_dir: Optional[Union[str, Path]] = None,
    use_cache: bool = True,
    clean_names: bool = True,
    force_refresh: bool = False
) -> MappingTable:
    """
    Download (or reuse) a CCSR mapping archive and read it.

    Args:
        family: 'diagnosis'/'dx' or 'procedure'/'pr'
        version: 'latest' or an explicit 'vYYYY.N' / 'vYYYY-N'
        resolver: VersionResolver (default resolver when None)
        probe: CatalogProbe for the download (resolver's probe when None)
        cache_dir: Directory for archives (settings cache path when None)
        use_cache: Reuse and store archives in cache_dir
        clean_names: Clean column names while reading
        force_refresh: Re-discover 'latest' even if a fresh result is cached

    Returns:
        MappingTable tagged with family and version

    Raises:
        InvalidFamily, InvalidVersionFormat: for bad arguments
        CatalogUnreachable: if the archive cannot be fetched
    """
    fam = parse_family(family)
    resolver = resolver or get_default_resolver()
    probe = probe or resolver.probe
    settings = resolver.settings

    tag = resolver.resolve(fam, version, force_refresh=force_refresh).with_family(fam)
    logger.info(f"Resolved {fam.value} version: {tag}")

    if use_cache:
        directory = Path(cache_dir) if cache_dir is not None else settings.cache_path
        directory.mkdir(parents=True, exist_ok=True)

        cached = find_cached_artifact(directory, fam, tag)
        if cached is not None:
            logger.info(f"Using cached file: {cached}")
            return _read(cached, fam, tag, clean_names)

        name, data = fetch_artifact(
            probe, settings.base_url, fam, tag, timeout=settings.download_timeout
        )
        target = directory / name
        target.write_bytes(data)
        logger.info(f"Download complete: {target}")
        return _read(target, fam, tag, clean_names)

    name, data = fetch_artifact(
        probe, settings.base_url, fam, tag, timeout=settings.download_timeout
    )
    with tempfile.TemporaryDirectory(prefix="hcup_mapper_") as tmp:
        target = Path(tmp) / name
        target.write_bytes(data)
        return _read(target, fam, tag, clean_names)


def _read(path: Path, family: Family, tag: VersionTag, clean_names: bool) -> MappingTable:
    table = read_mapping_file(path, family=family, clean_names=clean_names)
    return MappingTable(table.frame, family=family, version=tag, source=table.source)
