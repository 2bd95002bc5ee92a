"""
Change-log discovery for CCSR releases.

HCUP publishes a change log per release, usually as an Excel range file
(DXCCSR-ChangeLog-v20251-v20261.xlsx lists the changes from v2025.1 to
v2026.1), sometimes as a single-version Excel or PDF file. Links are looked
for on the catalog pages first, then candidate names are probed directly.
Found logs can be downloaded into the cache directory and, when they are
Excel workbooks, read into a DataFrame.
"""

import re
from pathlib import Path
from typing import Iterable, List, Optional, Union
from urllib.parse import urljoin
import logging

import pandas as pd
from bs4 import BeautifulSoup

from .config import ResolverSettings
from .exceptions import ChangeLogNotFound
from .probe import CatalogProbe
from .readers import clean_column_names, select_data_sheet
from .versions import Family, VersionTag, parse_family, parse_version

logger = logging.getLogger(__name__)

# First release year; no range log points before it
FIRST_RELEASE_YEAR = 2019


def previous_compact(tag: VersionTag) -> Optional[str]:
    """Compact form of the release a range change log starts from."""
    if tag.minor > 1:
        return f"v{tag.year}{tag.minor - 1}"
    if tag.year > FIRST_RELEASE_YEAR:
        return f"v{tag.year - 1}1"
    return None


def changelog_candidates(
    family: Union[str, Family],
    tag: Union[str, VersionTag]
) -> List[str]:
    """
    Candidate change-log file names for a release, most likely first.

    Examples:
        >>> changelog_candidates("dx", "v2026.1")[0]
        'DXCCSR-ChangeLog-v20251-v20261.xlsx'
    """
    fam = parse_family(family)
    tag = parse_version(tag, fam)
    prefix = fam.prefix
    compact = tag.compact
    url_form = tag.url_form

    names = []
    prev = previous_compact(tag)
    if prev is not None:
        names.append(f"{prefix}-ChangeLog-{prev}-{compact}.xlsx")
        names.append(f"{prefix}_ChangeLog_{prev}_{compact}.xlsx")
    names.extend([
        f"{prefix}-ChangeLog-{compact}.xlsx",
        f"{prefix}-ChangeLog-{url_form}.xlsx",
        f"{prefix}_ChangeLog_{compact}.xlsx",
        f"{prefix}_ChangeLog_{url_form}.xlsx",
        f"{prefix}-{url_form}_ChangeLog.pdf",
        f"{prefix}_{url_form}_ChangeLog.pdf",
        f"{prefix}-{url_form}-ChangeLog.pdf",
        f"{prefix}_{url_form}-ChangeLog.pdf",
    ])
    return names


def _version_rank(link: str, tag: VersionTag) -> Optional[int]:
    """0 when the link ends a range at the release, 1 for a mention, None otherwise."""
    name = link.rsplit("/", 1)[-1]
    if re.search(rf"-{tag.compact}\.(xlsx|pdf)$", name, flags=re.IGNORECASE):
        return 0
    if re.search(rf"{tag.compact}(?!\d)", name, flags=re.IGNORECASE):
        return 1
    if re.search(rf"{tag.url_form}(?!\d)", name, flags=re.IGNORECASE):
        return 1
    return None


def find_changelog_links(
    html: str,
    family: Union[str, Family],
    tag: Union[str, VersionTag],
    base_url: str = ""
) -> List[str]:
    """
    Change-log links on a catalog page that mention the release.

    Args:
        html: Page HTML
        family: Family whose prefix the file name must carry
        tag: Release to match (compact, or hyphenated, form)
        base_url: Used to make relative links absolute

    Returns:
        Absolute URLs, deduplicated; logs ending at the release come first
    """
    fam = parse_family(family)
    tag = parse_version(tag, fam)
    pattern = re.compile(
        rf".*{fam.prefix}.*change.*log.*\.(xlsx|pdf)", flags=re.IGNORECASE
    )

    soup = BeautifulSoup(html or "", "html.parser")
    found = {}
    for anchor in soup.find_all("a", href=True):
        href = anchor["href"].strip()
        if not pattern.match(href):
            continue
        rank = _version_rank(href, tag)
        if rank is None:
            continue
        url = urljoin(base_url, href) if base_url else href
        found.setdefault(url, rank)
    # Stable: logs ending at the release first, then page order
    return sorted(found, key=found.get)


def prefer_excel(urls: Iterable[str]) -> Optional[str]:
    urls = list(urls)
    for url in urls:
        if url.lower().endswith(".xlsx"):
            return url
    return urls[0] if urls else None


def resolve_changelog_url(
    probe: CatalogProbe,
    family: Union[str, Family],
    tag: Union[str, VersionTag],
    base_url: str = "https://hcup-us.ahrq.gov/toolssoftware/ccsr/",
    pages: Optional[Iterable[str]] = None
) -> Optional[str]:
    """
    Locate the change log for a release.

    Catalog pages are scanned until one yields matching links. Unless an
    Excel link was found, candidate names are then probed until one exists.
    Excel files win over PDFs.

    Returns:
        The change-log URL, or None when nothing is found
    """
    fam = parse_family(family)
    tag = parse_version(tag, fam)
    if pages is None:
        pages = [urljoin(base_url, "ccs_refined.jsp"), urljoin(base_url, "ccsr_archive.jsp")]

    urls: List[str] = []
    for page in pages:
        html = probe.fetch_text(page)
        if html is None:
            logger.debug(f"Could not fetch {page}")
            continue
        links = find_changelog_links(html, fam, tag, base_url=page)
        if links:
            logger.debug(f"Found {len(links)} change log links on {page}")
            urls.extend(u for u in links if u not in urls)
            break

    if not any(u.lower().endswith(".xlsx") for u in urls):
        for name in changelog_candidates(fam, tag):
            url = urljoin(base_url, name)
            if url in urls:
                continue
            if probe.exists(url):
                urls.append(url)
                break

    chosen = prefer_excel(urls)
    if chosen is None:
        logger.warning(f"Could not locate a change log for {fam.value} {tag}")
    else:
        logger.info(f"Change log for {fam.value} {tag}: {chosen}")
    return chosen


def download_changelog(
    probe: CatalogProbe,
    family: Union[str, Family],
    tag: Union[str, VersionTag],
    dest_dir: Optional[Union[str, Path]] = None,
    settings: Optional[ResolverSettings] = None,
    use_cache: bool = True
) -> Path:
    """
    Download the change log of a release.

    Args:
        probe: CatalogProbe used to locate and fetch the file
        family: 'diagnosis'/'dx' or 'procedure'/'pr'
        tag: Explicit release, e.g. 'v2026.1'
        dest_dir: Destination directory (settings cache path when None)
        settings: ResolverSettings for the base URL and timeout
        use_cache: Reuse a file already in dest_dir

    Returns:
        Path of the downloaded (or cached) file

    Raises:
        ChangeLogNotFound: if no change log is published for the release
        CatalogUnreachable: if the download fails
    """
    settings = settings or ResolverSettings()
    fam = parse_family(family)
    tag = parse_version(tag, fam)

    url = resolve_changelog_url(probe, fam, tag, base_url=settings.base_url)
    if url is None:
        raise ChangeLogNotFound(
            f"Could not locate a change log for {fam.value} {tag}. "
            f"Change logs may not be available for all versions; see "
            f"{urljoin(settings.base_url, 'ccsr_archive.jsp')}"
        )

    directory = Path(dest_dir) if dest_dir is not None else settings.cache_path
    directory.mkdir(parents=True, exist_ok=True)
    target = directory / url.rsplit("/", 1)[-1]
    if use_cache and target.exists():
        logger.info(f"Using cached change log: {target}")
        return target

    logger.info(f"Downloading change log: {url}")
    target.write_bytes(probe.fetch_bytes(url, timeout=settings.download_timeout))
    logger.info(f"Change log downloaded to: {target}")
    return target


def read_changelog(
    file_path: Union[str, Path],
    sheet: Optional[Union[str, int]] = None,
    clean_names: bool = False
) -> pd.DataFrame:
    """
    Read an Excel change log.

    Args:
        file_path: Path to a downloaded .xlsx change log
        sheet: Sheet name or 1-based index; the first sheet when None
        clean_names: Apply clean_column_names to the header

    Returns:
        DataFrame of the selected sheet

    Raises:
        FileNotFoundError: if the file does not exist
        ValueError: for PDF change logs or an unknown sheet
    """
    path = Path(file_path)
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")
    if not path.name.lower().endswith(".xlsx"):
        raise ValueError(
            f"Only Excel change logs can be read; {path.name} is not an .xlsx file. "
            f"Open it directly instead."
        )

    with pd.ExcelFile(path, engine="openpyxl") as workbook:
        sheet_names = [str(s) for s in workbook.sheet_names]
        if not sheet_names:
            raise ValueError(f"No sheets found in {path.name}")
        selected = sheet_names[0] if sheet is None else select_data_sheet(sheet_names, sheet)
        df = pd.read_excel(workbook, sheet_name=selected)

    if clean_names:
        df.columns = clean_column_names(df.columns)
    logger.info(
        f"Change log read successfully ({len(df)} rows, {len(df.columns)} columns)"
    )
    return df
