"""
Version resolution for CCSR releases.

HCUP publishes no machine-readable list of releases, so "latest" is found by
trying an ordered list of strategies, first success wins:

1. DirectProbeStrategy - HEAD the artifact names for next/current/previous
   year and minors 1-3, using the family's era naming rule
2. CatalogPageStrategy - scrape the catalog pages for version tokens
3. FallbackStrategy    - synthesize v{current_year}.1 with a warning

Results are cached per family for a freshness window; a cached tag from a
previous calendar year is ignored even inside the window.
"""

import json
import threading
from datetime import timedelta
from typing import Callable, Dict, Iterable, List, Optional, Union
import logging

import pandas as pd
from tqdm import tqdm

from .cache import Cache, Clock, DiskCache, MemoryCache
from .config import ResolverSettings
from .exceptions import NoVersionFound, ResolutionCancelled
from .probe import CatalogProbe, HttpCatalogProbe, extract_versions
from .versions import (
    LATEST,
    Family,
    VersionTag,
    alternate_artifact_name,
    artifact_name,
    latest_of,
    parse_family,
    parse_version,
    sort_newest_first,
    uses_hyphen_separator,
)

logger = logging.getLogger(__name__)

MINORS_TO_PROBE = (1, 2, 3)

VERSIONS_CACHE_KEY = "ccsr_all_versions"


def latest_cache_key(family: Family) -> str:
    return f"ccsr_latest_version_{family.value}"


def _check_cancel(cancel: Optional[threading.Event]) -> None:
    if cancel is not None and cancel.is_set():
        raise ResolutionCancelled("Version resolution cancelled")


class DirectProbeStrategy:
    """
    Tier 1: existence checks against constructed artifact URLs.

    Years are probed newest first (next, current, previous). Any hit in the
    next year is returned immediately since an early release always outranks
    the current year; otherwise every hit is collected and the newest wins.
    """

    name = "direct_probe"

    def __init__(self, probe: CatalogProbe, base_url: str, show_progress: bool = False):
        self.probe = probe
        self.base_url = base_url
        self.show_progress = show_progress

    def candidate_urls(self, family: Family, tag: VersionTag) -> List[str]:
        urls = [self.base_url + artifact_name(family, tag)]
        # Early hyphen-era releases were sometimes still published with '_'
        if uses_hyphen_separator(family, tag.year) and tag.minor == 1:
            urls.append(self.base_url + alternate_artifact_name(family, tag))
        return urls

    def __call__(
        self,
        family: Family,
        current_year: int,
        cancel: Optional[threading.Event] = None
    ) -> Optional[VersionTag]:
        years = (current_year + 1, current_year, current_year - 1)
        candidates = [
            VersionTag(year, minor, family)
            for year in years
            for minor in MINORS_TO_PROBE
        ]

        found: List[VersionTag] = []
        for tag in tqdm(
            candidates,
            desc=f"Probing {family.prefix}",
            unit="url",
            disable=not self.show_progress
        ):
            for url in self.candidate_urls(family, tag):
                _check_cancel(cancel)
                if self.probe.exists(url):
                    logger.debug(f"Found {tag} at {url}")
                    found.append(tag)
                    break
            else:
                continue

            if tag.year > current_year:
                return tag

        return latest_of(found)


class CatalogPageStrategy:
    """Tier 2: collect version tokens from every reachable catalog page."""

    name = "catalog_page"

    def __init__(self, probe: CatalogProbe, pages: Iterable[str]):
        self.probe = probe
        self.pages = list(pages)

    def versions(
        self,
        family: Family,
        cancel: Optional[threading.Event] = None,
        stop_at_first: bool = False
    ) -> List[VersionTag]:
        collected: List[VersionTag] = []
        for page in self.pages:
            _check_cancel(cancel)
            html = self.probe.fetch_text(page)
            if html is None:
                logger.debug(f"Catalog page unreachable: {page}")
                continue
            found = extract_versions(html, family)
            if not found:
                logger.debug(f"No {family.prefix} versions found on {page}")
                continue
            collected.extend(found)
            if stop_at_first:
                break
        return sort_newest_first(collected)

    def __call__(
        self,
        family: Family,
        current_year: int,
        cancel: Optional[threading.Event] = None
    ) -> Optional[VersionTag]:
        return latest_of(self.versions(family, cancel))


class FallbackStrategy:
    """Tier 3: always succeeds with an unverified current-year tag."""

    name = "fallback"

    def __call__(
        self,
        family: Family,
        current_year: int,
        cancel: Optional[threading.Event] = None
    ) -> Optional[VersionTag]:
        tag = VersionTag(current_year, 1, family)
        logger.warning(
            f"Could not determine latest {family.value} version from HCUP website. "
            f"Using fallback version: {tag}. This may not be the actual latest version."
        )
        return tag


Strategy = Callable[[Family, int, Optional[threading.Event]], Optional[VersionTag]]


def first_success(
    strategies: Iterable[Strategy],
    family: Family,
    current_year: int,
    cancel: Optional[threading.Event] = None
) -> Optional[VersionTag]:
    """Run strategies in order and return the first non-None tag."""
    for strategy in strategies:
        _check_cancel(cancel)
        name = getattr(strategy, "name", type(strategy).__name__)
        tag = strategy(family, current_year, cancel)
        if tag is not None:
            logger.info(f"Resolved latest {family.value} version {tag} via {name}")
            return tag
        logger.debug(f"Strategy {name} found no {family.value} version")
    return None


class VersionResolver:
    """
    Resolves 'latest' or explicit version requests to a VersionTag.

    Usage:
        resolver = VersionResolver(HttpCatalogProbe())
        tag = resolver.resolve("diagnosis")             # latest
        tag = resolver.resolve("pr", "v2025-1")         # explicit, no probing
        versions = resolver.list_versions("diagnosis")  # DataFrame

    Args:
        probe: CatalogProbe used for HEAD checks and page fetches
        cache: Cache for resolved versions (in-memory by default)
        clock: Callable returning "now"; defaults to the cache's clock
        settings: ResolverSettings (URLs and freshness windows)
        strategies: Override the default three-tier strategy list
        show_progress: Show a tqdm bar while probing
    """

    def __init__(
        self,
        probe: CatalogProbe,
        cache: Optional[Cache] = None,
        clock: Optional[Clock] = None,
        settings: Optional[ResolverSettings] = None,
        strategies: Optional[List[Strategy]] = None,
        show_progress: bool = False
    ):
        self.probe = probe
        self.cache = cache if cache is not None else MemoryCache(clock)
        self.clock = clock or self.cache.clock
        self.settings = settings or ResolverSettings()
        self.catalog = CatalogPageStrategy(probe, self.settings.catalog_pages)
        if strategies is None:
            strategies = [
                DirectProbeStrategy(probe, self.settings.base_url, show_progress),
                self.catalog,
                FallbackStrategy(),
            ]
        self.strategies = strategies
        self._family_locks: Dict[Family, threading.Lock] = {
            family: threading.Lock() for family in Family
        }
        self._versions_lock = threading.Lock()

    @property
    def latest_ttl(self) -> timedelta:
        return timedelta(hours=self.settings.latest_ttl_hours)

    @property
    def versions_ttl(self) -> timedelta:
        return timedelta(hours=self.settings.versions_ttl_hours)

    def resolve(
        self,
        family: Union[str, Family],
        requested: Union[str, VersionTag] = LATEST,
        force_refresh: bool = False,
        cancel: Optional[threading.Event] = None
    ) -> VersionTag:
        """
        Resolve a version request.

        Explicit tags are only validated; existence is checked when the
        artifact is fetched.

        Raises:
            InvalidFamily: for unknown families
            InvalidVersionFormat: for malformed explicit tags
            ResolutionCancelled: if cancel is set during probing
        """
        fam = parse_family(family)
        if isinstance(requested, str) and requested.strip().lower() == LATEST:
            return self.latest(fam, force_refresh=force_refresh, cancel=cancel)
        return parse_version(requested, fam)

    def latest(
        self,
        family: Union[str, Family],
        force_refresh: bool = False,
        cancel: Optional[threading.Event] = None
    ) -> VersionTag:
        fam = parse_family(family)
        key = latest_cache_key(fam)

        # One probe sequence per family at a time; waiters reuse its result.
        with self._family_locks[fam]:
            if force_refresh:
                self.cache.invalidate(key)
            else:
                cached = self._cached_latest(fam)
                if cached is not None:
                    logger.debug(f"Using cached latest {fam.value} version {cached}")
                    return cached

            current_year = self.clock().year
            tag = first_success(self.strategies, fam, current_year, cancel)
            if tag is None:
                # Custom strategy lists may lack the fallback tier
                tag = FallbackStrategy()(fam, current_year, cancel)

            self.cache.put(key, tag.canonical)
            return tag

    def _cached_latest(self, family: Family) -> Optional[VersionTag]:
        entry = self.cache.get_fresh(latest_cache_key(family), self.latest_ttl)
        if entry is None:
            return None
        try:
            tag = parse_version(entry.text().strip(), family)
        except ValueError:
            logger.debug(f"Ignoring malformed cached version for {family.value}")
            return None
        if tag.year < self.clock().year:
            logger.debug(f"Ignoring cached {tag} from a previous year")
            return None
        return tag

    def list_versions(
        self,
        family: Optional[Union[str, Family]] = None,
        force_refresh: bool = False
    ) -> pd.DataFrame:
        """
        List releases advertised on the catalog pages, newest first.

        Args:
            family: 'diagnosis'/'dx', 'procedure'/'pr', or None / 'all'

        Returns:
            DataFrame with columns 'type' and 'version'

        Raises:
            NoVersionFound: if no catalog page yields any version
        """
        fam = None
        if family is not None and str(family).lower() != "all":
            fam = parse_family(family)

        with self._versions_lock:
            if force_refresh:
                self.cache.invalidate(VERSIONS_CACHE_KEY)
            rows = self._cached_versions()
            if rows is None:
                rows = self._fetch_versions()
                self.cache.put(VERSIONS_CACHE_KEY, json.dumps(rows))

        df = pd.DataFrame(rows, columns=["type", "version"])
        if fam is not None:
            df = df[df["type"] == fam.value].reset_index(drop=True)
        return df

    def _cached_versions(self) -> Optional[List[Dict[str, str]]]:
        entry = self.cache.get_fresh(VERSIONS_CACHE_KEY, self.versions_ttl)
        if entry is None:
            return None
        try:
            rows = json.loads(entry.text())
        except ValueError:
            logger.debug("Cached version list is corrupted, re-fetching")
            return None
        if not isinstance(rows, list) or not all(
            isinstance(r, dict) and "type" in r and "version" in r for r in rows
        ):
            return None
        return rows

    def _fetch_versions(self) -> List[Dict[str, str]]:
        tags: List[VersionTag] = []
        for fam in Family:
            found = self.catalog.versions(fam, stop_at_first=True)
            logger.info(f"Found {len(found)} {fam.value} versions on catalog pages")
            tags.extend(found)

        if not tags:
            raise NoVersionFound(
                "Could not retrieve CCSR versions from HCUP website. "
                "Please check your internet connection and try again."
            )

        # Stable sort keeps diagnosis before procedure within a release
        ordered = sorted(tags, key=lambda t: (t.year, t.minor), reverse=True)
        return [{"type": t.family.value, "version": t.canonical} for t in ordered]


# Global resolver instance (optional convenience)
_default_resolver: Optional[VersionResolver] = None


def build_resolver(
    settings: Optional[ResolverSettings] = None,
    show_progress: bool = False
) -> VersionResolver:
    """Resolver backed by HTTP and the on-disk cache described by settings."""
    settings = settings or ResolverSettings()
    probe = HttpCatalogProbe(
        user_agent=settings.user_agent,
        head_timeout=settings.head_timeout,
        page_timeout=settings.page_timeout,
        download_timeout=settings.download_timeout,
    )
    return VersionResolver(
        probe,
        cache=DiskCache(settings.cache_path),
        settings=settings,
        show_progress=show_progress,
    )


def get_default_resolver() -> VersionResolver:
    """Get or create the process-wide default resolver."""
    global _default_resolver
    if _default_resolver is None:
        _default_resolver = build_resolver()
    return _default_resolver


def resolve_version(
    family: Union[str, Family],
    requested: Union[str, VersionTag] = LATEST,
    resolver: Optional[VersionResolver] = None,
    force_refresh: bool = False
) -> VersionTag:
    """Module-level shortcut for VersionResolver.resolve."""
    resolver = resolver or get_default_resolver()
    return resolver.resolve(family, requested, force_refresh=force_refresh)
