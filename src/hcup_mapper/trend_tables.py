"""
HCUP Summary Trend Tables.

The trend-table page links one workbook per table
(HCUP_SummaryTrendTables_T2a.xlsx, ...) plus, at times, a ZIP with all of
them. The listing is scraped from the page and cached for a day.
"""

import json
import re
from datetime import timedelta
from pathlib import Path
from typing import Optional, Union
from urllib.parse import urljoin
import logging

import pandas as pd
from bs4 import BeautifulSoup

from .cache import Cache
from .config import ResolverSettings
from .exceptions import CatalogUnreachable
from .probe import CatalogProbe

logger = logging.getLogger(__name__)

TABLE_LINK_RE = re.compile(r'HCUP_SummaryTrendTables_T.*\.xlsx', flags=re.IGNORECASE)
TABLE_ID_RE = re.compile(r'_T([0-9]+[a-z]?)', flags=re.IGNORECASE)
TABLE_PREFIX_RE = re.compile(r'^Table\s+[0-9]+[a-z]?\.\s*', flags=re.IGNORECASE)

ALL_TABLES_ARCHIVES = (
    "HCUP_SummaryTrendTables_All.zip",
    "HCUP_SummaryTrendTables.zip",
)

TREND_TABLES_CACHE_KEY = "hcup_trend_tables_list"
TREND_TABLES_TTL = timedelta(hours=24)

TABLE_COLUMNS = ["table_id", "table_name", "file_name"]


def _empty_catalog() -> pd.DataFrame:
    return pd.DataFrame({c: pd.Series(dtype=object) for c in TABLE_COLUMNS})


def _sort_key(table_id: str):
    digits = re.sub(r'[^0-9]', '', table_id)
    return (int(digits) if digits else 0, re.sub(r'[0-9]', '', table_id))


def parse_trend_table_catalog(html: str) -> pd.DataFrame:
    """
    Extract trend-table workbooks from the catalog page.

    Args:
        html: Page HTML

    Returns:
        DataFrame with table_id ('2a'), table_name and file_name, sorted by
        the numeric part of the id, then its letter suffix
    """
    soup = BeautifulSoup(html or "", "html.parser")
    rows = []
    seen = set()
    for anchor in soup.find_all("a", href=True):
        href = anchor["href"].strip()
        if not TABLE_LINK_RE.search(href):
            continue
        file_name = href.rsplit("/", 1)[-1]
        match = TABLE_ID_RE.search(file_name)
        if not match:
            continue
        table_id = match.group(1).lower()
        if table_id in seen:
            continue
        seen.add(table_id)

        text = anchor.get_text(" ", strip=True)
        if not text or text == href:
            table_name = f"Table {table_id.upper()}"
        else:
            table_name = TABLE_PREFIX_RE.sub("", text).strip() or text

        rows.append({"table_id": table_id, "table_name": table_name, "file_name": file_name})

    if not rows:
        return _empty_catalog()

    rows.sort(key=lambda r: _sort_key(r["table_id"]))
    return pd.DataFrame(rows, columns=TABLE_COLUMNS)


def list_trend_tables(
    probe: CatalogProbe,
    cache: Optional[Cache] = None,
    settings: Optional[ResolverSettings] = None,
    force_refresh: bool = False
) -> pd.DataFrame:
    """
    List available trend tables, cached for 24 hours.

    An unreachable page gives an empty listing and a warning.
    """
    settings = settings or ResolverSettings()

    if cache is not None:
        if force_refresh:
            cache.invalidate(TREND_TABLES_CACHE_KEY)
        else:
            entry = cache.get_fresh(TREND_TABLES_CACHE_KEY, TREND_TABLES_TTL)
            if entry is not None:
                try:
                    rows = json.loads(entry.text())
                    logger.debug("Using cached trend table listing")
                    return pd.DataFrame(rows, columns=TABLE_COLUMNS)
                except ValueError:
                    logger.debug("Cached trend table listing is corrupted, re-fetching")

    html = probe.fetch_text(settings.trend_tables_page)
    if html is None:
        logger.warning(
            f"Could not fetch trend tables from HCUP website: {settings.trend_tables_page}"
        )
        return _empty_catalog()

    tables = parse_trend_table_catalog(html)
    logger.info(f"Found {len(tables)} trend tables")
    if cache is not None and len(tables) > 0:
        cache.put(TREND_TABLES_CACHE_KEY, json.dumps(tables.to_dict(orient="records")))
    return tables


def find_all_tables_archive(
    probe: CatalogProbe,
    base_url: str = ResolverSettings.trend_tables_url
) -> Optional[str]:
    """URL of the first 'all tables' ZIP that exists, or None."""
    for name in ALL_TABLES_ARCHIVES:
        url = urljoin(base_url, name)
        if probe.exists(url):
            return url
    logger.debug("No 'all tables' archive found")
    return None


def trend_table_url(
    table_id: str,
    tables: pd.DataFrame,
    base_url: str = ResolverSettings.trend_tables_url
) -> str:
    """
    Workbook URL for a table id.

    Raises:
        ValueError: if the id is not in the listing
    """
    key = str(table_id).strip().lower()
    match = tables[tables["table_id"] == key]
    if match.empty:
        raise ValueError(
            f"Invalid table_id '{table_id}'. Available tables: "
            f"{', '.join(tables['table_id'])}"
        )
    return urljoin(base_url, match["file_name"].iloc[0])


def download_trend_table(
    table_id: str,
    probe: CatalogProbe,
    dest_dir: Optional[Union[str, Path]] = None,
    tables: Optional[pd.DataFrame] = None,
    settings: Optional[ResolverSettings] = None,
    use_cache: bool = True
) -> Path:
    """
    Download one trend-table workbook, or every table with table_id='all'.

    Args:
        table_id: Table id such as '2a', or 'all' for the ZIP archive
        probe: CatalogProbe used to fetch
        dest_dir: Destination directory (settings cache path when None)
        tables: Listing from list_trend_tables (fetched when None)
        settings: ResolverSettings
        use_cache: Reuse a file already in dest_dir

    Returns:
        Path of the downloaded file

    Raises:
        ValueError: for an unknown table id
        CatalogUnreachable: if the download fails or no archive exists
    """
    settings = settings or ResolverSettings()
    directory = Path(dest_dir) if dest_dir is not None else settings.cache_path
    directory.mkdir(parents=True, exist_ok=True)

    if str(table_id).strip().lower() == "all":
        url = find_all_tables_archive(probe, settings.trend_tables_url)
        if url is None:
            raise CatalogUnreachable(
                "The 'all tables' ZIP file is not available on the HCUP website. "
                "Please download individual tables using their table IDs."
            )
        timeout = settings.archive_timeout
    else:
        if tables is None:
            tables = list_trend_tables(probe, settings=settings)
        url = trend_table_url(table_id, tables, settings.trend_tables_url)
        timeout = settings.download_timeout

    target = directory / url.rsplit("/", 1)[-1]
    if use_cache and target.exists():
        logger.info(f"Using cached file: {target}")
        return target

    logger.info(f"Downloading: {url}")
    target.write_bytes(probe.fetch_bytes(url, timeout=timeout))
    logger.info(f"Download complete: {target}")
    return target
